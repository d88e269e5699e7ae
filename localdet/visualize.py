from __future__ import annotations

from typing import Iterable, List, Mapping, Optional, Tuple

import cv2
import numpy as np

from .types import Detection


def filter_for_display(detections: Iterable[Detection], score_threshold: float) -> List[Detection]:
    """
    Detections at or above a display threshold.

    Decoded detections already cleared the decode threshold; a stricter display
    threshold can be applied here without running the model again.
    """

    return [d for d in detections if d.score >= score_threshold]


def format_label(det: Detection, class_names: Optional[Mapping[int, str]] = None) -> str:
    name = class_names.get(det.class_id, det.class_name) if class_names else det.class_name
    return f"{name}: {round(det.score * 100)}%"


def draw_detections(
    image_bgr: np.ndarray,
    detections: Iterable[Detection],
    *,
    score_threshold: float = 0.25,
    class_names: Optional[Mapping[int, str]] = None,
    color: Tuple[int, int, int] = (0, 255, 0),
    box_thickness: int = 3,
    font_scale: float = 0.6,
    font_thickness: int = 1,
) -> np.ndarray:
    """
    Draw boxes + "name: NN%" labels on an OpenCV BGR image and return a copy.

    Args:
        image_bgr: input image in BGR (H, W, 3), original resolution.
        detections: decoded detections (xywh in original image coordinates).
        score_threshold: display threshold; lower-scored detections are not drawn.
    """

    if image_bgr is None or not hasattr(image_bgr, "shape"):
        raise TypeError("image_bgr must be a NumPy array (BGR).")
    if image_bgr.ndim != 3 or image_bgr.shape[2] != 3:
        raise ValueError(f"Expected image shape (H, W, 3), got {getattr(image_bgr, 'shape', None)}")

    out = image_bgr.copy()
    h, w = out.shape[:2]

    for det in filter_for_display(detections, score_threshold):
        x1, y1, x2, y2 = det.as_xyxy()
        x1i = int(np.clip(round(x1), 0, w - 1))
        y1i = int(np.clip(round(y1), 0, h - 1))
        x2i = int(np.clip(round(x2), 0, w - 1))
        y2i = int(np.clip(round(y2), 0, h - 1))
        cv2.rectangle(out, (x1i, y1i), (x2i, y2i), color, thickness=box_thickness)

        label = format_label(det, class_names)
        (tw, th), baseline = cv2.getTextSize(label, cv2.FONT_HERSHEY_SIMPLEX, font_scale, font_thickness)
        # Label above the box if it fits, else inside.
        y_text_top = y1i - th - baseline - 6
        if y_text_top < 0:
            y_text_top = y1i

        x_text_right = min(x1i + tw + 10, w - 1)
        y_text_bottom = min(y_text_top + th + baseline + 6, h - 1)

        cv2.rectangle(out, (x1i, y_text_top), (x_text_right, y_text_bottom), color, thickness=-1)
        cv2.putText(
            out,
            label,
            (min(x1i + 5, w - 1), min(y_text_top + th + 3, h - 1)),
            cv2.FONT_HERSHEY_SIMPLEX,
            font_scale,
            (0, 0, 0),
            thickness=font_thickness,
            lineType=cv2.LINE_AA,
        )

    return out
