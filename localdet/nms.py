from __future__ import annotations

from typing import List, Sequence

import numpy as np

from .types import Detection


def _iou_with(box: np.ndarray, others: np.ndarray) -> np.ndarray:
    # box (4,), others (M, 4), both xyxy.
    top_left = np.maximum(box[:2], others[:, :2])
    bottom_right = np.minimum(box[2:], others[:, 2:])
    inter = np.prod(np.clip(bottom_right - top_left, 0.0, None), axis=1)
    area = np.prod(box[2:] - box[:2])
    other_areas = np.prod(others[:, 2:] - others[:, :2], axis=1)
    return inter / np.maximum(area + other_areas - inter, 1e-6)


def suppress_overlaps(
    detections: Sequence[Detection],
    iou_threshold: float = 0.45,
    max_detections: int = 300,
) -> List[Detection]:
    """
    Greedy, class-agnostic overlap suppression over decoded detections.

    The decoder never merges boxes; callers that want one box per object run this
    on its output. Survivors come back highest score first; equal scores keep
    decode order.
    """

    if not detections or max_detections < 1:
        return []

    boxes = np.array([d.as_xyxy() for d in detections], dtype=np.float64)
    scores = np.array([d.score for d in detections], dtype=np.float64)

    remaining = np.argsort(-scores, kind="stable")
    kept: List[Detection] = []
    while remaining.size and len(kept) < max_detections:
        best, rest = remaining[0], remaining[1:]
        kept.append(detections[int(best)])
        remaining = rest[_iou_with(boxes[best], boxes[rest]) <= iou_threshold]
    return kept
