from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional, Sequence, Tuple, Union

import numpy as np

from ..errors import InferenceError, ModelLoadError
from ..types import RawOutputTensor


logger = logging.getLogger(__name__)

ModelLocation = Union[str, Path, bytes]

PROVIDER_PRIORITY = (
    "CUDAExecutionProvider",
    "CoreMLExecutionProvider",
    "DmlExecutionProvider",
    "OpenVINOExecutionProvider",
    "CPUExecutionProvider",
)

_GRAPH_OPTIMIZATION = {
    "disable": "ORT_DISABLE_ALL",
    "basic": "ORT_ENABLE_BASIC",
    "extended": "ORT_ENABLE_EXTENDED",
    "all": "ORT_ENABLE_ALL",
}


def _import_ort():
    try:
        import onnxruntime as ort  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError(
            "onnxruntime is required for the ONNX backend. Install it with `pip install onnxruntime` "
            "(or `onnxruntime-gpu`)."
        ) from e
    return ort


def default_num_threads() -> int:
    # Capped: more intra-op threads rarely help a single 640x640 image.
    return min(os.cpu_count() or 4, 4)


def is_provider_supported(name: str) -> bool:
    return name in _import_ort().get_available_providers()


def select_providers(preferred: Optional[Sequence[str]] = None) -> List[str]:
    """
    Execution providers for a new session, best first.

    An explicit ``preferred`` list is kept in order, minus providers this
    onnxruntime build does not have. Otherwise available accelerators come
    before the CPU provider.
    """

    available = set(_import_ort().get_available_providers())
    if preferred:
        selected = [p for p in preferred if p in available]
        missing = [p for p in preferred if p not in available]
        if missing:
            logger.warning("Skipping unavailable execution providers: %s", ", ".join(missing))
    else:
        selected = [p for p in PROVIDER_PRIORITY if p in available]
    return selected or ["CPUExecutionProvider"]


@dataclass(frozen=True)
class OnnxRuntimeBackendConfig:
    """
    Configuration for ONNX Runtime inference.

    - providers: ORT execution providers (e.g., ["CUDAExecutionProvider", "CPUExecutionProvider"]);
      None picks the best available
    - input_name/output_name: override auto-selected I/O names if needed
    - num_threads: intra-op threads; None uses `default_num_threads()`
    - graph_optimization: "disable" | "basic" | "extended" | "all"
    """

    providers: Optional[Sequence[str]] = None
    input_name: Optional[str] = None
    output_name: Optional[str] = None
    num_threads: Optional[int] = None
    graph_optimization: str = "all"


class OnnxRuntimeBackend:
    """
    Model session over ONNX Runtime.

    Expects an NCHW float32 blob, typically shaped (1, 3, H, W). Only the first
    declared output is fetched; the input and output names are read from the model.
    """

    def __init__(self, model: ModelLocation, cfg: OnnxRuntimeBackendConfig = OnnxRuntimeBackendConfig()):
        ort = _import_ort()
        self._ort = ort

        if isinstance(model, (bytes, bytearray)):
            if not model:
                raise ModelLoadError("Model data is empty")
            self.model_path: Optional[Path] = None
            source: Any = bytes(model)
        else:
            self.model_path = Path(model)
            if not self.model_path.is_file():
                raise ModelLoadError(f"Model not found: {self.model_path}")
            source = str(self.model_path)

        level_name = _GRAPH_OPTIMIZATION.get(cfg.graph_optimization)
        if level_name is None:
            raise ModelLoadError(f"Unknown graph optimization level: {cfg.graph_optimization!r}")

        sess_opts = ort.SessionOptions()
        sess_opts.graph_optimization_level = getattr(ort.GraphOptimizationLevel, level_name)
        sess_opts.intra_op_num_threads = cfg.num_threads or default_num_threads()
        providers = select_providers(cfg.providers)

        start = time.perf_counter()
        try:
            self.session = ort.InferenceSession(source, sess_options=sess_opts, providers=providers)
            inputs = self.session.get_inputs()
            outputs = self.session.get_outputs()
        except Exception as e:
            raise ModelLoadError(f"Could not load model {self.describe_source()}: {e}") from e
        if not inputs or not outputs:
            raise ModelLoadError(f"Model {self.describe_source()} declares no inputs or no outputs")

        self.input_name = cfg.input_name or inputs[0].name
        # If output_name not provided, pick first output.
        self.output_name = cfg.output_name or outputs[0].name
        self.input_shape: Tuple[Any, ...] = tuple(inputs[0].shape)
        if len(outputs) > 1 and cfg.output_name is None:
            logger.debug("Model declares %d outputs; using the first (%s)", len(outputs), self.output_name)

        logger.info(
            "Model %s ready in %.2fs (providers=%s, input=%s%s, output=%s)",
            self.describe_source(),
            time.perf_counter() - start,
            ",".join(self.providers_in_use),
            self.input_name,
            list(self.input_shape),
            self.output_name,
        )

    def describe_source(self) -> str:
        return str(self.model_path) if self.model_path is not None else "<bytes>"

    @property
    def providers_in_use(self) -> Sequence[str]:
        # ORT returns providers in priority order for this session.
        return tuple(self.session.get_providers())

    @property
    def available_providers(self) -> Sequence[str]:
        return tuple(self._ort.get_available_providers())

    def infer(self, blob: np.ndarray) -> RawOutputTensor:
        try:
            outputs = self.session.run([self.output_name], {self.input_name: blob})
        except Exception as e:
            raise InferenceError(f"Session run failed: {e}") from e
        return RawOutputTensor.from_array(outputs[0])

    def close(self) -> None:
        # ORT frees native resources when the session is garbage collected.
        self.session = None
