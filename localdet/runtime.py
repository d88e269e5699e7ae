from __future__ import annotations

import asyncio
import itertools
import logging
import queue
import threading
from concurrent.futures import Future
from enum import Enum
from functools import partial
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple, Union

import numpy as np

from .backends.onnxruntime_backend import ModelLocation, OnnxRuntimeBackend, OnnxRuntimeBackendConfig
from .classes import load_class_names
from .config import PipelineConfig
from .errors import (
    DetectionPipelineError,
    InferenceError,
    ModelLoadError,
    PipelineBusyError,
    SessionNotReadyError,
    error_kind,
)
from .messages import (
    Detections,
    Failure,
    LoadModel,
    ModelHandle,
    ModelReady,
    Request,
    Response,
    RunInference,
    Shutdown,
    describe_location,
)
from .nms import suppress_overlaps
from .postprocess import decode
from .preprocess import ImageSource, preprocess
from .types import Detection, PreprocessedTensor, RawOutputTensor


logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def find_project_root(
    start: Optional[PathLike] = None,
    markers: Sequence[str] = ("pyproject.toml", "setup.py", ".git", "requirements.txt"),
) -> Path:
    """
    Best-effort project root discovery.

    Lets relative model paths like `models/detector.onnx` work from any working directory
    inside the project.
    """

    p = Path(start) if start is not None else Path.cwd()
    p = p.resolve()

    # If a file is provided, start from its directory.
    if p.is_file():
        p = p.parent

    for parent in (p, *p.parents):
        for m in markers:
            if (parent / m).exists():
                return parent
    return p


def resolve_path(path: PathLike, root: Optional[PathLike] = "auto") -> Path:
    """
    Resolve `path` to an absolute Path.

    - Absolute paths are returned as-is.
    - Relative paths are resolved against:
      - `root` if provided
      - project root (auto) otherwise
    """

    p = Path(path)
    if p.is_absolute():
        return p

    if root == "auto" or root is None:
        base = find_project_root()
    else:
        base = Path(root).resolve()

    return (base / p).resolve()


class SessionState(Enum):
    UNLOADED = "unloaded"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


class ModelSession(Protocol):
    input_name: str
    output_name: str
    input_shape: Tuple[Any, ...]

    @property
    def providers_in_use(self) -> Sequence[str]:
        ...

    def infer(self, blob: np.ndarray) -> RawOutputTensor:
        ...

    def close(self) -> None:
        ...


SessionFactory = Callable[[ModelLocation], ModelSession]


class InferenceWorker:
    """
    Owns the model session and serves requests one at a time, in queue order.

    Every request is answered with exactly one response through ``emit``; errors
    become `Failure` messages instead of escaping the thread.
    """

    def __init__(
        self,
        requests: "queue.Queue[Request]",
        emit: Callable[[Response], None],
        session_factory: SessionFactory,
        class_names: Optional[Mapping[int, str]] = None,
    ):
        self._requests = requests
        self._emit = emit
        self._session_factory = session_factory
        self._class_names = class_names
        self._session: Optional[ModelSession] = None
        self._handle_ids = itertools.count(1)
        self._handle_id: Optional[int] = None
        self.state = SessionState.UNLOADED
        self._thread = threading.Thread(target=self._run, name="localdet-inference-worker", daemon=True)

    def start(self) -> None:
        self._thread.start()

    def join(self, timeout: Optional[float] = None) -> None:
        self._thread.join(timeout)

    def _run(self) -> None:
        logger.debug("Inference worker started")
        while True:
            request = self._requests.get()
            try:
                if isinstance(request, Shutdown):
                    self._teardown()
                    break
                self._emit(self._handle(request))
            finally:
                self._requests.task_done()
        logger.debug("Inference worker stopped")

    def _handle(self, request: Request) -> Response:
        try:
            if isinstance(request, LoadModel):
                return self._load(request)
            if isinstance(request, RunInference):
                return self._infer(request)
            raise TypeError(f"Unknown request: {request!r}")
        except DetectionPipelineError as e:
            return Failure(request_id=request.request_id, kind=error_kind(e), message=str(e))
        except Exception as e:
            # Unexpected faults still have to reach the caller.
            logger.exception("Unexpected error while serving request %d", request.request_id)
            if isinstance(request, RunInference):
                self.state = SessionState.FAILED
            kind = ModelLoadError.__name__ if isinstance(request, LoadModel) else InferenceError.__name__
            return Failure(request_id=request.request_id, kind=kind, message=f"{type(e).__name__}: {e}")

    def _teardown(self) -> None:
        if self._session is not None:
            self._session.close()
        self._session = None
        self._handle_id = None

    def _load(self, request: LoadModel) -> ModelReady:
        self._teardown()
        self.state = SessionState.LOADING
        try:
            session = self._session_factory(request.location)
        except ModelLoadError:
            self.state = SessionState.FAILED
            raise
        except Exception as e:
            self.state = SessionState.FAILED
            raise ModelLoadError(f"Could not load model {describe_location(request.location)}: {e}") from e

        self._session = session
        self._handle_id = next(self._handle_ids)
        self.state = SessionState.READY
        return ModelReady(
            request_id=request.request_id,
            handle=ModelHandle(
                handle_id=self._handle_id,
                location=describe_location(request.location),
                input_name=session.input_name,
                output_name=session.output_name,
                input_shape=tuple(session.input_shape),
                providers=tuple(session.providers_in_use),
            ),
        )

    def _infer(self, request: RunInference) -> Detections:
        if self.state is not SessionState.READY or self._session is None:
            raise SessionNotReadyError(f"Session is {self.state.value}; load a model first")
        if request.handle_id != self._handle_id:
            raise SessionNotReadyError(f"Model handle {request.handle_id} is no longer loaded")

        tensor = request.tensor
        try:
            output = self._session.infer(tensor.as_blob())
        except InferenceError:
            self.state = SessionState.FAILED
            logger.error("Session failed on request %d; reload the model", request.request_id)
            raise

        detections = decode(
            output,
            tensor.original_width,
            tensor.original_height,
            tensor.model_width,
            tensor.model_height,
            request.confidence_threshold,
            class_names=self._class_names,
        )
        logger.debug("Request %d: %d detections", request.request_id, len(detections))
        return Detections(request_id=request.request_id, detections=tuple(detections))


class InferenceOrchestrator:
    """
    Caller-side half of the pipeline.

    `load_model` and `infer` return futures and never block on the model. Requests
    go through one FIFO queue to a single worker thread, so responses arrive in
    request order and at most one inference runs at a time.

    State: UNLOADED -> LOADING -> READY, READY -> FAILED on a session fault. A failed
    load also ends in FAILED. Only a new `load_model` leaves FAILED.
    """

    def __init__(
        self,
        *,
        session_factory: Optional[SessionFactory] = None,
        backend_cfg: OnnxRuntimeBackendConfig = OnnxRuntimeBackendConfig(),
        class_names: Optional[Mapping[int, str]] = None,
        max_pending: int = 32,
        listener: Optional[Callable[[Response], None]] = None,
        root: Optional[PathLike] = "auto",
    ):
        if max_pending < 1:
            raise ValueError("max_pending must be >= 1")
        if session_factory is None:
            session_factory = partial(OnnxRuntimeBackend, cfg=backend_cfg)

        self._root = root
        self._listener = listener
        self._lock = threading.Lock()
        self._request_ids = itertools.count(1)
        self._pending: Dict[int, Future] = {}
        self._state = SessionState.UNLOADED
        self._handle: Optional[ModelHandle] = None
        self._latest_load_id: Optional[int] = None
        self._latest_inference_id: Optional[int] = None
        self._closed = False

        self._requests: "queue.Queue[Request]" = queue.Queue(maxsize=max_pending)
        self._worker = InferenceWorker(self._requests, self._on_response, session_factory, class_names)
        self._worker.start()

    @property
    def state(self) -> SessionState:
        with self._lock:
            return self._state

    @property
    def handle(self) -> Optional[ModelHandle]:
        with self._lock:
            return self._handle

    def is_latest(self, request_id: int) -> bool:
        """True if ``request_id`` is the most recent inference request issued."""

        with self._lock:
            return request_id == self._latest_inference_id

    def load_model(self, location: ModelLocation) -> "Future[ModelHandle]":
        if isinstance(location, (str, Path)):
            location = resolve_path(location, root=self._root)

        future: "Future[ModelHandle]" = Future()
        with self._lock:
            self._check_open()
            request_id = next(self._request_ids)
            if self._enqueue(LoadModel(request_id=request_id, location=location), future):
                self._state = SessionState.LOADING
                self._handle = None
                self._latest_load_id = request_id
        logger.debug("Request %d: load model %s", request_id, describe_location(location))
        return future

    def submit_inference(
        self,
        handle: Optional[ModelHandle],
        tensor: PreprocessedTensor,
        confidence_threshold: float = 0.25,
    ) -> Tuple[int, "Future[List[Detection]]"]:
        """
        Queue one inference and return (request_id, future).

        Compare the id with `is_latest` when the result arrives to drop stale answers.
        """

        if not 0.0 <= confidence_threshold <= 1.0:
            raise ValueError(f"confidence_threshold must be within [0, 1], got {confidence_threshold}")

        future: "Future[List[Detection]]" = Future()
        with self._lock:
            self._check_open()
            request_id = next(self._request_ids)
            self._latest_inference_id = request_id
            if handle is None or self._handle is None or handle.handle_id != self._handle.handle_id:
                future.set_exception(SessionNotReadyError(f"No ready model session (state: {self._state.value})"))
            elif self._state is not SessionState.READY:
                future.set_exception(SessionNotReadyError(f"Session is {self._state.value}; reload the model"))
            else:
                request = RunInference(
                    request_id=request_id,
                    handle_id=handle.handle_id,
                    tensor=tensor,
                    confidence_threshold=confidence_threshold,
                )
                self._enqueue(request, future)
        return request_id, future

    def infer(
        self,
        handle: Optional[ModelHandle],
        tensor: PreprocessedTensor,
        confidence_threshold: float = 0.25,
    ) -> "Future[List[Detection]]":
        return self.submit_inference(handle, tensor, confidence_threshold)[1]

    async def aload_model(self, location: ModelLocation) -> ModelHandle:
        return await asyncio.wrap_future(self.load_model(location))

    async def ainfer(
        self,
        handle: Optional[ModelHandle],
        tensor: PreprocessedTensor,
        confidence_threshold: float = 0.25,
    ) -> List[Detection]:
        return await asyncio.wrap_future(self.infer(handle, tensor, confidence_threshold))

    def close(self, timeout: Optional[float] = None) -> None:
        """Let queued requests finish, tear the session down and stop the worker."""

        with self._lock:
            if self._closed:
                return
            self._closed = True
            request_id = next(self._request_ids)
        self._requests.put(Shutdown(request_id=request_id))
        self._worker.join(timeout)
        with self._lock:
            self._state = SessionState.UNLOADED
            self._handle = None

    def __enter__(self) -> "InferenceOrchestrator":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # ------------------------------------------------------------------ #
    # Helper internal
    # ------------------------------------------------------------------ #
    def _check_open(self) -> None:
        if self._closed:
            raise RuntimeError("Orchestrator is closed")

    def _enqueue(self, request: Request, future: Future) -> bool:
        # Caller holds self._lock.
        self._pending[request.request_id] = future
        try:
            self._requests.put_nowait(request)
        except queue.Full:
            del self._pending[request.request_id]
            future.set_exception(PipelineBusyError(f"Request queue is full ({self._requests.maxsize} pending)"))
            return False
        return True

    def _on_response(self, response: Response) -> None:
        # Runs on the worker thread.
        with self._lock:
            future = self._pending.pop(response.request_id, None)
            is_latest_load = response.request_id == self._latest_load_id
            if isinstance(response, ModelReady) and is_latest_load:
                self._state = SessionState.READY
                self._handle = response.handle
            elif isinstance(response, Failure):
                if (response.kind == ModelLoadError.__name__ and is_latest_load) or response.kind == InferenceError.__name__:
                    self._state = SessionState.FAILED
                    self._handle = None

        # Listener first, so a caller woken by the future sees the message already delivered.
        if self._listener is not None:
            try:
                self._listener(response)
            except Exception:
                logger.exception("Response listener failed on request %d", response.request_id)

        if future is not None:
            if isinstance(response, ModelReady):
                future.set_result(response.handle)
            elif isinstance(response, Detections):
                future.set_result(list(response.detections))
            else:
                future.set_exception(response.to_exception())


class DetectionPipeline:
    """
    Synchronous facade: preprocess -> worker inference -> optional overlap suppression.

    Accepts BGR arrays (OpenCV-style), image paths or encoded bytes and returns
    detections in original image coordinates.
    """

    def __init__(
        self,
        orchestrator: InferenceOrchestrator,
        handle: ModelHandle,
        *,
        model_size: Tuple[int, int] = (640, 640),
        confidence_threshold: float = 0.25,
        iou_threshold: Optional[float] = None,
        max_detections: int = 300,
        timeout: Optional[float] = None,
    ):
        self.orchestrator = orchestrator
        self.handle = handle
        self.model_width, self.model_height = model_size
        self.confidence_threshold = confidence_threshold
        self.iou_threshold = iou_threshold
        self.max_detections = max_detections
        self.timeout = timeout

    def preprocess(self, image: ImageSource) -> PreprocessedTensor:
        return preprocess(image, self.model_width, self.model_height)

    def detect(self, image: ImageSource, confidence_threshold: Optional[float] = None) -> List[Detection]:
        threshold = self.confidence_threshold if confidence_threshold is None else confidence_threshold
        tensor = self.preprocess(image)
        detections = self.orchestrator.infer(self.handle, tensor, threshold).result(self.timeout)
        if self.iou_threshold is not None:
            detections = suppress_overlaps(detections, self.iou_threshold, self.max_detections)
        return detections

    def __call__(self, image: ImageSource) -> List[Detection]:
        return self.detect(image)

    def close(self) -> None:
        self.orchestrator.close()

    def __enter__(self) -> "DetectionPipeline":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


def load_pipeline(
    config: PipelineConfig,
    *,
    root: Optional[PathLike] = "auto",
    session_factory: Optional[SessionFactory] = None,
    listener: Optional[Callable[[Response], None]] = None,
    timeout: Optional[float] = None,
) -> DetectionPipeline:
    """
    Start a worker, load the configured model and wait until it is ready.

    Typical usage:
        cfg = load_pipeline_config(Path("configs/pipeline.json"))
        with load_pipeline(cfg) as pipe:
            detections = pipe(image_bgr)

    Raises:
        ModelLoadError: the model could not be loaded; the worker is stopped again.
    """

    class_names = None
    if config.metadata_path:
        class_names = load_class_names(str(resolve_path(config.metadata_path, root=root)))

    orchestrator = InferenceOrchestrator(
        session_factory=session_factory,
        backend_cfg=OnnxRuntimeBackendConfig(
            providers=config.providers,
            num_threads=config.num_threads,
            graph_optimization=config.graph_optimization,
        ),
        class_names=class_names,
        max_pending=config.max_pending_requests,
        listener=listener,
        root=root,
    )
    try:
        handle = orchestrator.load_model(config.model_path).result(timeout)
    except BaseException:
        orchestrator.close()
        raise

    declared = handle.declared_input_hw()
    if declared is not None and declared != (config.model_height, config.model_width):
        logger.warning(
            "Model declares input %dx%d but pipeline is configured for %dx%d",
            declared[1],
            declared[0],
            config.model_width,
            config.model_height,
        )

    return DetectionPipeline(
        orchestrator,
        handle,
        model_size=(config.model_width, config.model_height),
        confidence_threshold=config.confidence_threshold,
        iou_threshold=config.iou_threshold,
        max_detections=config.max_detections,
        timeout=timeout,
    )
