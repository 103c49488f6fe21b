from __future__ import annotations

import enum
import logging
import os
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np
import onnxruntime as ort
from PIL import Image

from ..errors import EmptyBatchError, ModelLoadError
from ..utils.downloads import ProgressCallback, fetch_bytes, sha256_bytes
from ..utils.images import resize, to_rgb
from .cache import ModelCache
from .compat import needs_ceil_mode_patch, patch_maxpool_ceil_mode

__all__ = [
    "DEFAULT_BASE_URL",
    "PROVIDER_PREFERENCE",
    "PreprocessConfig",
    "ModelSpec",
    "SessionState",
    "ModelSession",
    "model_url",
    "select_providers",
    "build_session_options",
    "checksum_disabled",
]

logger = logging.getLogger(__name__)

# onnxruntime is chatty at WARNING; only surface errors.
ort.set_default_logger_severity(3)

DEFAULT_BASE_URL = "https://github.com/danielgatis/rembg/releases/download/v0.0.0"

PROVIDER_PREFERENCE: Tuple[str, ...] = (
    "TensorrtExecutionProvider",
    "CUDAExecutionProvider",
    "WebGpuExecutionProvider",
    "CoreMLExecutionProvider",
    "DmlExecutionProvider",
    "CPUExecutionProvider",
)

PostprocessFn = Callable[[Sequence[np.ndarray], Tuple[int, int]], List[Image.Image]]


def model_url(name: str) -> str:
    base = os.getenv("CLEANCUT_MODEL_BASE_URL", DEFAULT_BASE_URL).rstrip("/")
    return f"{base}/{name}.onnx"


def checksum_disabled() -> bool:
    return os.getenv("MODEL_CHECKSUM_DISABLED") is not None


def select_providers(available: Optional[Sequence[str]] = None) -> List[str]:
    """
    Order the execution providers this machine offers by preference.

    CPU is always present and always last.
    """
    if available is None:
        available = ort.get_available_providers()
    providers = [name for name in PROVIDER_PREFERENCE if name in available]
    if "CPUExecutionProvider" in providers:
        providers.remove("CPUExecutionProvider")
    providers.append("CPUExecutionProvider")
    return providers


def build_session_options() -> ort.SessionOptions:
    session_options = ort.SessionOptions()
    session_options.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_ALL
    threads = os.getenv("OMP_NUM_THREADS")
    if threads:
        session_options.inter_op_num_threads = int(threads)
        session_options.intra_op_num_threads = int(threads)
    return session_options


@dataclass(frozen=True)
class PreprocessConfig:
    """
    How an image is turned into the model's input tensor.

    Either ``size`` fixes the input resolution, or ``ref_size`` picks one per
    image: the short side is scaled to ``ref_size`` when the image is smaller
    than it (or larger on both sides), and both sides are then floored to a
    multiple of 32.
    """

    mean: Tuple[float, float, float]
    std: Tuple[float, float, float]
    size: Optional[Tuple[int, int]] = None
    ref_size: Optional[int] = None
    scale_by_max: bool = True

    def target_size(self, width: int, height: int) -> Tuple[int, int]:
        if self.size is not None:
            return self.size
        if self.ref_size is None:
            return width, height

        ref = self.ref_size
        if max(height, width) < ref or min(height, width) > ref:
            if width >= height:
                new_h = ref
                new_w = int(width / height * ref)
            else:
                new_w = ref
                new_h = int(height / width * ref)
        else:
            new_h, new_w = height, width

        new_w = max(32, new_w - new_w % 32)
        new_h = max(32, new_h - new_h % 32)
        return new_w, new_h


@dataclass(frozen=True)
class ModelSpec:
    """Everything that distinguishes one model family from another."""

    name: str
    preprocess: PreprocessConfig
    postprocess: PostprocessFn
    url: Optional[str] = None
    sha256: Optional[str] = None

    @property
    def key(self) -> str:
        return f"/models/{self.name}.onnx"

    @property
    def source_url(self) -> str:
        return self.url or model_url(self.name)


class SessionState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


class ModelSession:
    """
    One ONNX model, loaded at most once.

    ``initialize`` is safe to call from several threads: the first caller
    performs the load and every other caller waits on the same future and
    sees the same outcome. Once READY or FAILED the state never changes.
    ``predict``/``predict_batch`` initialize implicitly.
    """

    def __init__(
        self,
        spec: ModelSpec,
        *,
        cache: Optional[ModelCache] = None,
        providers: Optional[Sequence[str]] = None,
        sess_options: Optional[ort.SessionOptions] = None,
        progress_callback: Optional[ProgressCallback] = None,
        fetch: Optional[Callable[..., bytes]] = None,
    ) -> None:
        self.spec = spec
        self.cache = cache if cache is not None else ModelCache()
        self.providers: List[str] = list(providers) if providers else select_providers()
        self.sess_options = sess_options if sess_options is not None else build_session_options()
        self.progress_callback = progress_callback
        self._fetch = fetch if fetch is not None else fetch_bytes

        self._lock = threading.Lock()
        self._future: Optional[Future] = None
        self._state = SessionState.UNINITIALIZED

        self.model_bytes: Optional[bytes] = None
        self.inner_session: Optional[ort.InferenceSession] = None
        self.input_name: Optional[str] = None

    def __repr__(self) -> str:
        return f"ModelSession(name={self.name!r}, state={self._state.value})"

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def state(self) -> SessionState:
        return self._state

    def initialize(self) -> None:
        with self._lock:
            future = self._future
            owner = future is None
            if owner:
                future = Future()
                self._future = future
                self._state = SessionState.LOADING

        if not owner:
            # Attach to the load already in flight (or finished).
            future.result()
            return

        try:
            self._load()
        except ModelLoadError as exc:
            self._state = SessionState.FAILED
            future.set_exception(exc)
            raise
        except Exception as exc:
            error = ModelLoadError(self.name, str(exc))
            self._state = SessionState.FAILED
            future.set_exception(error)
            raise error from exc
        except BaseException as exc:
            # Interrupted mid-load: waiters must not block on the future forever.
            self._state = SessionState.FAILED
            future.set_exception(ModelLoadError(self.name, f"load interrupted ({type(exc).__name__})"))
            raise

        self._state = SessionState.READY
        future.set_result(None)

    def _ensure_initialized(self) -> None:
        if self._state is not SessionState.READY:
            self.initialize()

    def _resolve_bytes(self) -> bytes:
        key = self.spec.key
        data = self.cache.get(key)
        if data is not None:
            logger.info("Using cached model: %s", key)
        else:
            url = self.spec.source_url
            logger.info("Downloading model %s from %s", self.name, url)
            try:
                data = self._fetch(url, self.progress_callback)
            except Exception as exc:
                raise ModelLoadError(self.name, f"download from {url} failed: {exc}") from exc
            self.cache.put(key, data)

        if self.spec.sha256 and not checksum_disabled():
            digest = sha256_bytes(data)
            if digest != self.spec.sha256.lower():
                raise ModelLoadError(
                    self.name, f"checksum mismatch, expected {self.spec.sha256}, got {digest}"
                )
        return data

    def _load(self) -> None:
        data = self._resolve_bytes()

        if needs_ceil_mode_patch(self.providers):
            data, _ = patch_maxpool_ceil_mode(data)

        try:
            session = ort.InferenceSession(
                data,
                sess_options=self.sess_options,
                providers=self.providers,
            )
        except Exception as exc:
            raise ModelLoadError(self.name, f"could not build inference session: {exc}") from exc

        self.model_bytes = data
        self.inner_session = session
        self.input_name = session.get_inputs()[0].name
        logger.info("Model %s loaded (providers: %s)", self.name, ", ".join(session.get_providers()))

    def download_models(self) -> Path:
        """Make sure the model bytes are in the cache without building a session."""
        try:
            self._resolve_bytes()
        except OSError as exc:
            raise ModelLoadError(self.name, str(exc)) from exc
        path = self.cache.path(self.spec.key)
        if not path.is_file():
            raise ModelLoadError(self.name, f"model could not be written to the cache at {path}")
        return path

    def normalize(
        self,
        image: Image.Image,
        mean: Tuple[float, float, float],
        std: Tuple[float, float, float],
        size: Tuple[int, int],
        scale_by_max: bool = True,
    ) -> Dict[str, np.ndarray]:
        if self.input_name is None:
            raise RuntimeError("Session not initialized.")

        im = resize(to_rgb(image), size)
        im_ary = np.asarray(im, dtype=np.float32)
        if scale_by_max:
            im_ary = im_ary / max(float(im_ary.max()), 1e-6)
        else:
            im_ary = im_ary / 255.0

        tmp_img = (im_ary - np.asarray(mean, dtype=np.float32)) / np.asarray(std, dtype=np.float32)
        tmp_img = tmp_img.transpose((2, 0, 1))

        return {self.input_name: np.expand_dims(tmp_img, 0).astype(np.float32)}

    def _prepare(self, image: Image.Image) -> Dict[str, np.ndarray]:
        config = self.spec.preprocess
        size = config.target_size(image.width, image.height)
        return self.normalize(image, config.mean, config.std, size, scale_by_max=config.scale_by_max)

    def _run(self, feeds: Dict[str, np.ndarray]) -> List[np.ndarray]:
        return self.inner_session.run(None, feeds)

    def predict(self, image: Image.Image) -> List[Image.Image]:
        """Return the masks predicted for ``image``, at the image's size."""
        self._ensure_initialized()
        outputs = self._run(self._prepare(image))
        return self.spec.postprocess(outputs, image.size)

    def predict_batch(self, images: Sequence[Image.Image]) -> List[List[Image.Image]]:
        """
        Predict masks for every image; ``result[i]`` belongs to ``images[i]``.

        All images are preprocessed first, then run through the model one by
        one in input order, then decoded.
        """
        images = list(images)
        if not images:
            raise EmptyBatchError("predict_batch received an empty image list.")
        self._ensure_initialized()

        prepared = [(self._prepare(image), image.size) for image in images]

        raw_outputs = []
        for index, (feeds, _) in enumerate(prepared):
            raw_outputs.append(self._run(feeds))
            logger.debug("%s: forward pass %d/%d", self.name, index + 1, len(prepared))

        return [
            self.spec.postprocess(outputs, size)
            for outputs, (_, size) in zip(raw_outputs, prepared)
        ]
