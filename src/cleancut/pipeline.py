from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

import numpy as np
from PIL import Image

from .algorithms import build_estimator
from .algorithms.base import AlphaEstimator
from .errors import UnsupportedInputError
from .matting import MattingEngine, putalpha_cutout
from .postprocess import post_process_mask
from .sessions.base import ModelSession
from .sessions.cache import ModelCache
from .sessions.registry import SESSION_REGISTRY, SessionPool, new_session
from .utils.downloads import ProgressCallback
from .utils.images import concat_vertical, encode_png, from_array, open_image, resize

__all__ = [
    "ReturnType",
    "BatchItem",
    "RemoveOptions",
    "BackgroundRemover",
    "tag_input",
    "remove",
    "download_models",
]

logger = logging.getLogger(__name__)

InputData = Union[bytes, bytearray, memoryview, Image.Image, np.ndarray]
OutputData = Union[bytes, Image.Image, np.ndarray]


class ReturnType(enum.Enum):
    BYTES = "bytes"
    IMAGE = "image"
    ARRAY = "array"


def tag_input(item: Any) -> ReturnType:
    """Classify one input; the tag decides the representation of its output."""
    if isinstance(item, (bytes, bytearray, memoryview)):
        return ReturnType.BYTES
    if isinstance(item, Image.Image):
        return ReturnType.IMAGE
    if isinstance(item, np.ndarray):
        return ReturnType.ARRAY
    raise UnsupportedInputError(
        f"Input type {type(item).__name__} is not supported. "
        "Pass encoded bytes, a PIL image or a numpy array."
    )


@dataclass
class BatchItem:
    data: Any
    return_type: ReturnType
    image: Optional[Image.Image] = None
    masks: List[Image.Image] = field(default_factory=list)
    cutouts: List[Image.Image] = field(default_factory=list)


@dataclass
class RemoveOptions:
    # No default: callers always say whether they want matting.
    alpha_matting: bool
    fg_threshold: int = 240
    bg_threshold: int = 10
    erode_size: int = 10
    only_mask: bool = False
    post_process_mask: bool = False
    force_bytes: bool = False
    model_name: str = "u2net"
    estimator: str = "closed_form"


class BackgroundRemover:
    """
    Runs batches through decode, segmentation, matting and encoding.

    Each phase finishes for the whole batch before the next one starts. The
    remover owns a :class:`SessionPool`; pass ``session`` to reuse an
    existing segmentation session and ``estimator`` to override the matting
    estimator.
    """

    def __init__(
        self,
        options: RemoveOptions,
        sessions: Optional[SessionPool] = None,
        session: Optional[ModelSession] = None,
        estimator: Optional[AlphaEstimator] = None,
    ) -> None:
        self.options = options
        self.sessions = sessions if sessions is not None else SessionPool()
        self._session = session
        self._estimator = estimator
        self._engine: Optional[MattingEngine] = None

    @property
    def session(self) -> ModelSession:
        if self._session is None:
            self._session = self.sessions.get(self.options.model_name)
        return self._session

    @property
    def matting_engine(self) -> MattingEngine:
        if self._engine is None:
            estimator = self._estimator
            if estimator is None:
                estimator = build_estimator(self.options.estimator, self.sessions)
            self._engine = MattingEngine(
                estimator,
                fg_threshold=self.options.fg_threshold,
                bg_threshold=self.options.bg_threshold,
                erode_size=self.options.erode_size,
            )
        return self._engine

    def remove(self, data: Union[InputData, Sequence[InputData]]) -> Union[OutputData, List[OutputData]]:
        is_batch = isinstance(data, (list, tuple))
        inputs = list(data) if is_batch else [data]

        items = self._decode(inputs)
        self._segment(items)
        self._cut_out(items)
        results = self._encode(items)

        return results if is_batch else results[0]

    def _decode(self, inputs: Sequence[Any]) -> List[BatchItem]:
        logger.info("Phase 1: decoding %d input(s)", len(inputs))
        items: List[BatchItem] = []
        for data in inputs:
            tag = tag_input(data)
            items.append(BatchItem(data=data, return_type=tag))

        force_bytes = self.options.force_bytes
        for item in items:
            if item.return_type is ReturnType.BYTES:
                item.image = open_image(bytes(item.data))
            elif item.return_type is ReturnType.IMAGE:
                item.image = item.data
            else:
                item.image = from_array(item.data)
            if force_bytes:
                item.return_type = ReturnType.BYTES
        return items

    def _segment(self, items: List[BatchItem]) -> None:
        logger.info("Phase 2: segmenting %d image(s) with %s", len(items), self.session.name)
        all_masks = self.session.predict_batch([item.image for item in items])
        for item, masks in zip(items, all_masks):
            item.masks = [resize(mask.convert("L"), item.image.size) for mask in masks]

    def _cut_out(self, items: List[BatchItem]) -> None:
        options = self.options
        mode = "mask" if options.only_mask else "alpha matting" if options.alpha_matting else "plain alpha"
        logger.info("Phase 3: compositing %d image(s) (%s)", len(items), mode)

        for index, item in enumerate(items):
            for mask in item.masks:
                if options.post_process_mask:
                    mask = post_process_mask(mask)

                if options.only_mask:
                    cutout = mask
                elif options.alpha_matting:
                    cutout = self.matting_engine.cutout(item.image, mask)
                else:
                    cutout = putalpha_cutout(item.image, mask)
                item.cutouts.append(cutout)
            logger.debug("Composited item %d/%d", index + 1, len(items))

    def _encode(self, items: List[BatchItem]) -> List[OutputData]:
        logger.info("Phase 4: encoding %d result(s)", len(items))
        results: List[OutputData] = []
        for item in items:
            cutout = concat_vertical(item.cutouts) if item.cutouts else item.image
            if item.return_type is ReturnType.IMAGE:
                results.append(cutout)
            elif item.return_type is ReturnType.ARRAY:
                results.append(np.asarray(cutout))
            else:
                results.append(encode_png(cutout))
        return results

    def process_directory(
        self,
        input_dir: Path,
        output_dir: Path,
        overwrite: bool = False,
        batch_size: int = 1,
    ) -> Dict[str, float]:
        input_dir = Path(input_dir)
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        timings: Dict[str, float] = {}

        batch_size = max(1, batch_size)
        batch: List[Path] = []

        def flush(current_batch: List[Path]) -> None:
            if not current_batch:
                return
            batch_start = time.perf_counter()
            payloads = [path.read_bytes() for path in current_batch]
            results = self.remove(payloads)
            batch_end = time.perf_counter()
            per_image = (batch_end - batch_start) / len(current_batch)

            for path, result in zip(current_batch, results):
                destination = output_dir / (path.stem + ".png")
                destination.write_bytes(result)
                timings[str(path)] = per_image

        for image_path in sorted(self._iter_images(input_dir)):
            destination = output_dir / (image_path.stem + ".png")
            if destination.exists() and not overwrite:
                continue
            batch.append(image_path)
            if len(batch) >= batch_size:
                flush(batch)
                batch = []

        if batch:
            flush(batch)

        return timings

    @staticmethod
    def _iter_images(path: Path) -> Iterable[Path]:
        exts = {".jpg", ".jpeg", ".png", ".bmp", ".tiff", ".webp"}
        for file in path.rglob("*"):
            if file.suffix.lower() in exts:
                yield file


def remove(
    data: Union[InputData, Sequence[InputData]],
    *,
    alpha_matting: bool,
    fg_threshold: int = 240,
    bg_threshold: int = 10,
    erode_size: int = 10,
    only_mask: bool = False,
    post_process_mask: bool = False,
    force_bytes: bool = False,
    session: Optional[ModelSession] = None,
    estimator: Optional[AlphaEstimator] = None,
) -> Union[OutputData, List[OutputData]]:
    """
    Remove the background from one image or an ordered batch of images.

    Each input may be encoded bytes, a PIL image or a numpy array, and its
    output has the same representation (PNG bytes for bytes) unless
    ``force_bytes`` is set. A list in gives a list of the same length and
    order out; a single input gives a single output.

    With ``only_mask`` the (optionally post-processed) mask is returned
    whatever the matting settings. Otherwise ``alpha_matting`` selects
    between trimap-based matting and using the mask as alpha directly.
    Without ``session`` a default u2net session is created for this call.
    """
    options = RemoveOptions(
        alpha_matting=alpha_matting,
        fg_threshold=fg_threshold,
        bg_threshold=bg_threshold,
        erode_size=erode_size,
        only_mask=only_mask,
        post_process_mask=post_process_mask,
        force_bytes=force_bytes,
    )
    return BackgroundRemover(options, session=session, estimator=estimator).remove(data)


def download_models(
    names: Sequence[str] = (),
    cache: Optional[ModelCache] = None,
    progress_callback: Optional[ProgressCallback] = None,
) -> Dict[str, Path]:
    """
    Fetch the named models into the cache ahead of first use.

    With no names every registered model is fetched. Returns the cache path
    of each model.
    """
    names = list(names) or list(SESSION_REGISTRY)
    unknown = [name for name in names if name not in SESSION_REGISTRY]
    if unknown:
        raise ValueError(f"Unknown model(s) {unknown}. Choices: {list(SESSION_REGISTRY)}")

    cache = cache if cache is not None else ModelCache()
    paths: Dict[str, Path] = {}
    for name in names:
        logger.info("Downloading model: %s", name)
        session = new_session(name, cache=cache, progress_callback=progress_callback)
        paths[name] = session.download_models()
    return paths
