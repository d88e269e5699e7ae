"""
Messages exchanged between the caller and the inference worker.

Inbound: `LoadModel`, `RunInference` (and the internal `Shutdown`).
Outbound: `ModelReady`, `Detections`, `Failure`.

Every message carries the ``request_id`` it answers, so responses can be matched
to requests and stale results recognised.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Tuple, Union

from .errors import DetectionPipelineError, error_from_kind
from .types import Detection, PreprocessedTensor


@dataclass(frozen=True)
class ModelHandle:
    """
    Caller-side token for a loaded session. The session itself never leaves the worker.
    """

    handle_id: int
    location: str
    input_name: str
    output_name: str
    input_shape: Tuple[Any, ...] = ()
    providers: Tuple[str, ...] = ()

    def declared_input_hw(self) -> Optional[Tuple[int, int]]:
        """(height, width) when the model declares a fixed NCHW input, else None."""

        if len(self.input_shape) != 4:
            return None
        h, w = self.input_shape[2], self.input_shape[3]
        if isinstance(h, int) and isinstance(w, int):
            return h, w
        return None


@dataclass(frozen=True)
class LoadModel:
    request_id: int
    location: Union[str, Path, bytes]


@dataclass(frozen=True)
class RunInference:
    # The tensor is handed over to the worker; the caller must not reuse it.
    request_id: int
    handle_id: int
    tensor: PreprocessedTensor
    confidence_threshold: float


@dataclass(frozen=True)
class Shutdown:
    request_id: int


@dataclass(frozen=True)
class ModelReady:
    request_id: int
    handle: ModelHandle


@dataclass(frozen=True)
class Detections:
    request_id: int
    detections: Tuple[Detection, ...]


@dataclass(frozen=True)
class Failure:
    request_id: int
    kind: str
    message: str

    def to_exception(self) -> DetectionPipelineError:
        return error_from_kind(self.kind, self.message)


Request = Union[LoadModel, RunInference, Shutdown]
Response = Union[ModelReady, Detections, Failure]


def describe_location(location: Optional[Union[str, Path, bytes]]) -> str:
    if isinstance(location, (bytes, bytearray)):
        return f"<{len(location)} bytes>"
    return str(location)
