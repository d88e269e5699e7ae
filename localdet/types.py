from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import numpy as np

from .errors import UnsupportedOutputShapeError


@dataclass(frozen=True)
class Detection:
    """
    One scored box in original-image pixel coordinates.

    ``box`` is (x, y, width, height) with (x, y) the top-left corner. ``score`` is
    the combined objectness x class-probability score.
    """

    box: Tuple[float, float, float, float]
    score: float
    class_id: int
    class_name: str

    def as_xywh(self) -> Tuple[float, float, float, float]:
        return self.box

    def as_xyxy(self) -> Tuple[float, float, float, float]:
        x, y, w, h = self.box
        return x, y, x + w, y + h


@dataclass(frozen=True)
class PreprocessedTensor:
    """
    Planar (channel-major, then row-major) RGB float32 buffer in [0, 1].

    ``data`` has length 3 * model_height * model_width.
    """

    data: np.ndarray
    model_width: int
    model_height: int
    original_width: int
    original_height: int

    def __post_init__(self) -> None:
        expected = 3 * self.model_height * self.model_width
        if self.data.ndim != 1 or self.data.shape[0] != expected:
            raise ValueError(
                f"Tensor data must be a flat buffer of {expected} values, got shape {self.data.shape}"
            )

    def as_blob(self) -> np.ndarray:
        # NCHW view with a single-element batch, as the model expects.
        return self.data.reshape(1, 3, self.model_height, self.model_width)


@dataclass(frozen=True)
class RawOutputTensor:
    values: np.ndarray
    shape: Tuple[int, ...]

    def __post_init__(self) -> None:
        if not 1 <= len(self.shape) <= 4:
            raise UnsupportedOutputShapeError(f"Output rank must be 1-4, got shape {self.shape}")
        # Zero-length axes are valid: a dynamic-N export that found nothing.
        if any(int(d) < 0 for d in self.shape):
            raise UnsupportedOutputShapeError(f"Output dimensions must not be negative, got shape {self.shape}")
        if int(np.prod(self.shape)) != self.values.size:
            raise UnsupportedOutputShapeError(
                f"Output shape {self.shape} does not match buffer of {self.values.size} values"
            )

    @classmethod
    def from_array(cls, arr: np.ndarray) -> "RawOutputTensor":
        a = np.asarray(arr, dtype=np.float32)
        shape = tuple(int(d) for d in a.shape) or (int(a.size),)
        return cls(values=a.ravel(), shape=shape)
