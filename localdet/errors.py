"""
Error taxonomy for the detection pipeline.

Every error that can cross the worker boundary has a stable ``kind`` (its class
name) so a `Failure` message can be turned back into the same exception type
on the caller side.
"""

from __future__ import annotations

from typing import Dict, Type


class DetectionPipelineError(Exception):
    """Base class for all pipeline errors."""


class ImageLoadError(DetectionPipelineError):
    """Source image is missing, corrupt, empty or in an unsupported pixel format."""


class ModelLoadError(DetectionPipelineError):
    """Model location is unreachable or the model data is malformed."""


class UnsupportedOutputShapeError(DetectionPipelineError):
    """The raw output tensor matches no known layout, not even the fallback records."""


class SessionNotReadyError(DetectionPipelineError):
    """Inference was requested without a ready session."""


class InferenceError(DetectionPipelineError):
    """The model session failed while executing."""


class PipelineBusyError(DetectionPipelineError):
    """The request queue to the worker is full."""


ERROR_KINDS: Dict[str, Type[DetectionPipelineError]] = {
    cls.__name__: cls
    for cls in (
        DetectionPipelineError,
        ImageLoadError,
        ModelLoadError,
        UnsupportedOutputShapeError,
        SessionNotReadyError,
        InferenceError,
        PipelineBusyError,
    )
}


def error_kind(exc: BaseException) -> str:
    for cls in type(exc).__mro__:
        if ERROR_KINDS.get(cls.__name__) is cls:
            return cls.__name__
    # Anything unexpected inside the worker is reported as a session fault.
    return InferenceError.__name__


def error_from_kind(kind: str, message: str) -> DetectionPipelineError:
    cls = ERROR_KINDS.get(kind, DetectionPipelineError)
    return cls(message)
