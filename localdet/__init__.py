"""
Local object detection on top of ONNX Runtime.

Image -> planar RGB tensor -> model (on a worker thread) -> decoded, image-space
boxes. The decoder recognises several raw output layouts from the tensor shape alone.
"""

from .types import Detection, PreprocessedTensor, RawOutputTensor
from .errors import (
    DetectionPipelineError,
    ImageLoadError,
    InferenceError,
    ModelLoadError,
    PipelineBusyError,
    SessionNotReadyError,
    UnsupportedOutputShapeError,
)
from .classes import CLASS_NAMES, class_name_for, load_class_names
from .preprocess import load_image, preprocess
from .postprocess import OutputLayout, classify_layout, decode
from .nms import suppress_overlaps
from .messages import Detections, Failure, ModelHandle, ModelReady
from .config import PipelineConfig, load_pipeline_config
from .runtime import (
    DetectionPipeline,
    InferenceOrchestrator,
    SessionState,
    find_project_root,
    load_pipeline,
    resolve_path,
)
from .log import setup_logging
from .visualize import draw_detections, filter_for_display

__all__ = [
    "Detection",
    "PreprocessedTensor",
    "RawOutputTensor",
    "DetectionPipelineError",
    "ImageLoadError",
    "InferenceError",
    "ModelLoadError",
    "PipelineBusyError",
    "SessionNotReadyError",
    "UnsupportedOutputShapeError",
    "CLASS_NAMES",
    "class_name_for",
    "load_class_names",
    "load_image",
    "preprocess",
    "OutputLayout",
    "classify_layout",
    "decode",
    "suppress_overlaps",
    "Detections",
    "Failure",
    "ModelHandle",
    "ModelReady",
    "PipelineConfig",
    "load_pipeline_config",
    "DetectionPipeline",
    "InferenceOrchestrator",
    "SessionState",
    "find_project_root",
    "load_pipeline",
    "resolve_path",
    "setup_logging",
    "draw_detections",
    "filter_for_display",
]
