from __future__ import annotations

from pathlib import Path
from typing import Union

import cv2
import numpy as np

from .errors import ImageLoadError
from .types import PreprocessedTensor


ImageSource = Union[np.ndarray, str, Path, bytes, bytearray]


def load_image(source: ImageSource) -> np.ndarray:
    """
    Decode an image path or encoded bytes with OpenCV.

    Arrays are returned unchanged. Decoding keeps every channel (alpha and 16-bit
    samples included), so the result may be gray, BGR or BGRA.
    """

    if isinstance(source, np.ndarray):
        return source

    if isinstance(source, (bytes, bytearray)):
        buf = np.frombuffer(bytes(source), dtype=np.uint8)
        img = cv2.imdecode(buf, cv2.IMREAD_UNCHANGED) if buf.size else None
        if img is None:
            raise ImageLoadError("Could not decode image bytes")
        return img

    if isinstance(source, (str, Path)):
        path = Path(source)
        if not path.is_file():
            raise ImageLoadError(f"Image not found: {path}")
        # imdecode instead of imread: imread cannot open non-ASCII paths on Windows.
        buf = np.fromfile(str(path), dtype=np.uint8)
        img = cv2.imdecode(buf, cv2.IMREAD_UNCHANGED) if buf.size else None
        if img is None:
            raise ImageLoadError(f"Could not decode image at path: {path}")
        return img

    raise ImageLoadError(f"Unsupported image source type: {type(source).__name__}")


def _to_rgba8(img: np.ndarray, channel_order: str) -> np.ndarray:
    if img.dtype == np.uint16:
        img = (img // 257).astype(np.uint8)
    elif img.dtype in (np.float32, np.float64):
        img = np.clip(np.rint(img * 255.0), 0, 255).astype(np.uint8)
    elif img.dtype != np.uint8:
        raise ImageLoadError(f"Unsupported pixel type: {img.dtype}")

    if img.ndim == 3 and img.shape[2] == 1:
        img = img[:, :, 0]

    img = np.ascontiguousarray(img)
    if img.ndim == 2:
        return cv2.cvtColor(img, cv2.COLOR_GRAY2RGBA)
    if img.ndim != 3 or img.shape[2] not in (3, 4):
        raise ImageLoadError(f"Expected image shape (H, W), (H, W, 3) or (H, W, 4), got {img.shape}")

    bgr = channel_order == "bgr"
    if img.shape[2] == 3:
        return cv2.cvtColor(img, cv2.COLOR_BGR2RGBA if bgr else cv2.COLOR_RGB2RGBA)
    return cv2.cvtColor(img, cv2.COLOR_BGRA2RGBA) if bgr else img


def preprocess(
    image: ImageSource,
    model_width: int = 640,
    model_height: int = 640,
    *,
    channel_order: str = "bgr",
) -> PreprocessedTensor:
    """
    Stretch-resize an image to the model input size and pack it as planar RGB floats.

    The resize does not preserve aspect ratio (no letterbox): the decoder undoes it
    with an independent scale per axis.

    Args:
        image: array, path or encoded bytes
        model_width / model_height: target input size
        channel_order: "bgr" (OpenCV arrays, default) or "rgb" for 3/4-channel arrays
    """

    if model_width <= 0 or model_height <= 0:
        raise ValueError(f"Model size must be positive, got {model_width}x{model_height}")
    if channel_order not in ("bgr", "rgb"):
        raise ValueError(f"channel_order must be 'bgr' or 'rgb', got {channel_order!r}")

    img = load_image(image)
    if img.ndim < 2 or img.shape[0] == 0 or img.shape[1] == 0:
        raise ImageLoadError(f"Image is empty (shape {img.shape})")

    orig_h, orig_w = img.shape[:2]
    rgba = _to_rgba8(img, channel_order)

    if (orig_w, orig_h) != (model_width, model_height):
        rgba = cv2.resize(rgba, (model_width, model_height), interpolation=cv2.INTER_LINEAR)

    # Drop alpha, normalize, HWC -> CHW, flatten
    rgb = rgba[:, :, :3].astype(np.float32) / 255.0
    data = np.ascontiguousarray(np.transpose(rgb, (2, 0, 1))).ravel()

    return PreprocessedTensor(
        data=data,
        model_width=model_width,
        model_height=model_height,
        original_width=int(orig_w),
        original_height=int(orig_h),
    )
