from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Mapping, Optional, Sequence

import numpy as np

from .classes import class_name_for
from .errors import UnsupportedOutputShapeError
from .types import Detection, RawOutputTensor


logger = logging.getLogger(__name__)

# Box (4) + objectness (1); class scores follow.
BOX_AND_OBJECTNESS = 5
# Channel count of the transposed single-tensor export.
FLAT_CHANNELS = 84
# [x, y, w, h, confidence, class_id]
FALLBACK_RECORD_SIZE = 6


class OutputLayout(Enum):
    """
    Raw output layouts, in the order they are tested by `classify_layout`:

    - PER_DETECTION_ROWS (1, N, K>5): [cx, cy, w, h, obj, class_scores...] per row
    - CHANNEL_GRID (1, C, H, W): one candidate per grid cell, channels as above
    - CHANNEL_FLAT (1, 84, N): channels 0-3 box, 4 combined confidence
    - FALLBACK: flat 6-value records [x, y, w, h, conf, class_id]
    """

    PER_DETECTION_ROWS = "per_detection_rows"
    CHANNEL_GRID = "channel_grid"
    CHANNEL_FLAT = "channel_flat"
    FALLBACK = "fallback"


def classify_layout(shape: Sequence[int]) -> OutputLayout:
    dims = tuple(int(d) for d in shape)
    if len(dims) == 3 and dims[2] > BOX_AND_OBJECTNESS:
        return OutputLayout.PER_DETECTION_ROWS
    if len(dims) == 4 and dims[1] >= BOX_AND_OBJECTNESS:
        return OutputLayout.CHANNEL_GRID
    if len(dims) == 3 and dims[1] == FLAT_CHANNELS:
        return OutputLayout.CHANNEL_FLAT
    return OutputLayout.FALLBACK


@dataclass
class _Candidates:
    boxes: np.ndarray  # (N, 4) cx, cy, w, h in model-input pixels
    objectness: np.ndarray  # (N,)
    class_prob: np.ndarray  # (N,)
    class_ids: np.ndarray  # (N,)


def _best_class(class_scores: np.ndarray) -> tuple:
    """
    Per-candidate argmax over class slots laid out as (slots, N).
    Ties resolve to the lowest class id.
    """

    class_ids = np.argmax(class_scores, axis=0)
    best = class_scores[class_ids, np.arange(class_scores.shape[1])]
    return best, class_ids


def _no_class_slots(n: int) -> tuple:
    return np.ones((n,), dtype=np.float32), np.zeros((n,), dtype=np.int64)


def _decode_rows(output: RawOutputTensor) -> _Candidates:
    p = output.values.reshape(output.shape)[0]  # (N, K)
    best, class_ids = _best_class(p[:, BOX_AND_OBJECTNESS:].T)
    return _Candidates(boxes=p[:, 0:4], objectness=p[:, 4], class_prob=best, class_ids=class_ids)


def _decode_grid(output: RawOutputTensor) -> _Candidates:
    _, channels, grid_h, grid_w = output.shape
    # (C, H*W); column index = row * W + col, so cells come out row-major.
    g = output.values.reshape(output.shape)[0].reshape(channels, grid_h * grid_w)
    if channels > BOX_AND_OBJECTNESS:
        best, class_ids = _best_class(g[BOX_AND_OBJECTNESS:, :])
    else:
        best, class_ids = _no_class_slots(grid_h * grid_w)
    return _Candidates(boxes=g[0:4, :].T, objectness=g[4, :], class_prob=best, class_ids=class_ids)


def _decode_flat(output: RawOutputTensor) -> _Candidates:
    f = output.values.reshape(output.shape)[0]  # (84, N)
    best, class_ids = _no_class_slots(f.shape[1])
    return _Candidates(boxes=f[0:4, :].T, objectness=f[4, :], class_prob=best, class_ids=class_ids)


def _decode_fallback(output: RawOutputTensor) -> _Candidates:
    size = output.values.size
    n = size // FALLBACK_RECORD_SIZE
    if n == 0:
        raise UnsupportedOutputShapeError(
            f"Output shape {output.shape} holds {size} values, fewer than one {FALLBACK_RECORD_SIZE}-value record"
        )
    if len(output.shape) >= 2 and output.shape[1] < BOX_AND_OBJECTNESS and size % FALLBACK_RECORD_SIZE:
        raise UnsupportedOutputShapeError(
            f"Output shape {output.shape} has {output.shape[1]} channels and does not align "
            f"with {FALLBACK_RECORD_SIZE}-value records"
        )

    logger.warning(
        "Output shape %s matches no known layout; reading it as %d records of %d values",
        output.shape,
        n,
        FALLBACK_RECORD_SIZE,
    )
    r = output.values[: n * FALLBACK_RECORD_SIZE].reshape(n, FALLBACK_RECORD_SIZE)
    # Non-finite ids read as class 0.
    raw_ids = np.nan_to_num(r[:, 5], nan=0.0, posinf=0.0, neginf=0.0)
    class_ids = np.maximum(np.rint(raw_ids), 0).astype(np.int64)
    return _Candidates(
        boxes=r[:, 0:4],
        objectness=r[:, 4],
        class_prob=np.ones((n,), dtype=np.float32),
        class_ids=class_ids,
    )


_DECODERS: Dict[OutputLayout, Callable[[RawOutputTensor], _Candidates]] = {
    OutputLayout.PER_DETECTION_ROWS: _decode_rows,
    OutputLayout.CHANNEL_GRID: _decode_grid,
    OutputLayout.CHANNEL_FLAT: _decode_flat,
    OutputLayout.FALLBACK: _decode_fallback,
}


def decode(
    output: RawOutputTensor,
    orig_w: int,
    orig_h: int,
    model_w: int,
    model_h: int,
    confidence_threshold: float,
    class_names: Optional[Mapping[int, str]] = None,
) -> List[Detection]:
    """
    Turn one raw model output into detections in original-image pixels.

    Every branch scores a candidate as objectness x best class probability and
    drops it when either value is below ``confidence_threshold``. Boxes go from
    center format to top-left corner, then are scaled per axis by
    orig / model size. Overlapping boxes are all kept.

    Raises:
        UnsupportedOutputShapeError: only when the fallback records cannot be parsed.
    """

    if model_w <= 0 or model_h <= 0:
        raise ValueError(f"Model size must be positive, got {model_w}x{model_h}")

    layout = classify_layout(output.shape)
    logger.debug("Decoding output shape %s as %s", output.shape, layout.value)
    if output.values.size == 0 and layout is not OutputLayout.FALLBACK:
        return []
    cand = _DECODERS[layout](output)

    objectness = cand.objectness.astype(np.float32)
    scores = objectness * cand.class_prob.astype(np.float32)
    keep = (objectness >= confidence_threshold) & (scores >= confidence_threshold)
    if not np.any(keep):
        return []

    boxes = cand.boxes[keep].astype(np.float64)
    scores = scores[keep]
    class_ids = cand.class_ids[keep]

    x_scale = orig_w / model_w
    y_scale = orig_h / model_h
    cx, cy, w, h = boxes.T
    x = (cx - w / 2) * x_scale
    y = (cy - h / 2) * y_scale

    return [
        Detection(
            box=(float(bx), float(by), float(bw), float(bh)),
            score=float(score),
            class_id=int(cls_id),
            class_name=class_name_for(int(cls_id), class_names),
        )
        for bx, by, bw, bh, score, cls_id in zip(x, y, w * x_scale, h * y_scale, scores, class_ids)
    ]
