"""
Background removal for video.

Frames come from, and go back to, a :class:`FrameProcessor`: anything with
``init``, ``next``, ``push`` and ``export_final_video``. The whole frame
sequence is run through :func:`cleancut.pipeline.remove` as one batch.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, List, Optional, Protocol, Union

import cv2
import numpy as np

from .algorithms.base import AlphaEstimator
from .pipeline import remove
from .sessions.base import ModelSession

__all__ = ["PROGRESS_EVERY", "FrameProcessor", "OpenCVFrameProcessor", "remove_video"]

logger = logging.getLogger(__name__)

PROGRESS_EVERY = 10


class FrameProcessor(Protocol):
    def init(self) -> None:
        ...

    def next(self) -> Optional[bytes]:
        ...

    def push(self, frame: bytes) -> None:
        ...

    def export_final_video(self) -> Any:
        ...


class OpenCVFrameProcessor:
    """
    Frame source and sink built on ``cv2.VideoCapture`` / ``cv2.VideoWriter``.

    Frames are exchanged as PNG bytes. The output container has no alpha
    channel, so pushed RGBA frames are composited over ``background``.
    """

    def __init__(
        self,
        input_path: Union[str, Path],
        output_path: Optional[Union[str, Path]] = None,
        fourcc: str = "mp4v",
        fps: Optional[float] = None,
        background: tuple = (0, 0, 0),
    ) -> None:
        self.input_path = Path(input_path)
        if output_path is None:
            output_path = self.input_path.with_name(self.input_path.stem + "_nobg.mp4")
        self.output_path = Path(output_path)
        self.fourcc = fourcc
        self.fps = fps
        self.background = np.asarray(background, dtype=np.float32)

        self._capture: Optional[cv2.VideoCapture] = None
        self._writer: Optional[cv2.VideoWriter] = None
        self._pushed = 0
        self._ready = False

    def init(self) -> None:
        capture = cv2.VideoCapture(str(self.input_path))
        if not capture.isOpened():
            raise RuntimeError(f"Failed to open video: {self.input_path}")
        if self.fps is None:
            fps = capture.get(cv2.CAP_PROP_FPS)
            self.fps = fps if fps and fps > 0 else 30.0
        self._capture = capture
        self._ready = True

    def _require_ready(self) -> None:
        if not self._ready:
            raise RuntimeError("Frame processor not initialized. Call init() first.")

    def next(self) -> Optional[bytes]:
        self._require_ready()
        if self._capture is None:
            return None
        ok, frame = self._capture.read()
        if not ok:
            self._capture.release()
            self._capture = None
            return None
        ok, encoded = cv2.imencode(".png", frame)
        if not ok:
            raise RuntimeError("Failed to encode frame as PNG.")
        return encoded.tobytes()

    def _to_bgr(self, frame: bytes) -> np.ndarray:
        decoded = cv2.imdecode(np.frombuffer(frame, dtype=np.uint8), cv2.IMREAD_UNCHANGED)
        if decoded is None:
            raise ValueError("Pushed frame is not a decodable image.")
        if decoded.ndim == 2:
            return cv2.cvtColor(decoded, cv2.COLOR_GRAY2BGR)
        if decoded.shape[2] == 4:
            alpha = decoded[:, :, 3:4].astype(np.float32) / 255.0
            bgr = decoded[:, :, :3].astype(np.float32)
            background = self.background[::-1]
            return (bgr * alpha + background * (1.0 - alpha)).astype(np.uint8)
        return decoded

    def push(self, frame: bytes) -> None:
        self._require_ready()
        bgr = self._to_bgr(frame)
        if self._writer is None:
            height, width = bgr.shape[:2]
            self.output_path.parent.mkdir(parents=True, exist_ok=True)
            self._writer = cv2.VideoWriter(
                str(self.output_path),
                cv2.VideoWriter_fourcc(*self.fourcc),
                self.fps,
                (width, height),
            )
        self._writer.write(bgr)
        self._pushed += 1

    def export_final_video(self) -> Path:
        if self._pushed == 0 or self._writer is None:
            raise RuntimeError("No frames pushed. Use push() before exporting.")
        self._writer.release()
        self._writer = None
        if self._capture is not None:
            self._capture.release()
            self._capture = None
        return self.output_path


def remove_video(
    source: Union[str, Path, FrameProcessor],
    *,
    alpha_matting: bool,
    fg_threshold: int = 240,
    bg_threshold: int = 10,
    erode_size: int = 10,
    only_mask: bool = False,
    post_process_mask: bool = False,
    session: Optional[ModelSession] = None,
    estimator: Optional[AlphaEstimator] = None,
    on_progress: Optional[Callable[[int, int], None]] = None,
) -> Any:
    """
    Remove the background from every frame of a video.

    All frames are extracted first, processed as one batch, pushed back in
    their original order and exported; the return value is whatever the
    processor's ``export_final_video`` returns (a path for
    :class:`OpenCVFrameProcessor`).

    ``on_progress(current, total)`` fires every ``PROGRESS_EVERY`` frames.
    While extracting, the real total is not known yet and is reported as the
    current count; while assembling, the total is twice the frame count.
    """
    processor: FrameProcessor
    if isinstance(source, (str, Path)):
        processor = OpenCVFrameProcessor(source)
    else:
        processor = source

    processor.init()
    logger.info("remove_video: extracting frames")

    frames: List[bytes] = []
    while True:
        frame = processor.next()
        if frame is None:
            break
        frames.append(frame)
        if on_progress is not None and len(frames) % PROGRESS_EVERY == 0:
            on_progress(len(frames), len(frames))
    logger.info("remove_video: collected %d frame(s)", len(frames))

    processed = remove(
        frames,
        alpha_matting=alpha_matting,
        fg_threshold=fg_threshold,
        bg_threshold=bg_threshold,
        erode_size=erode_size,
        only_mask=only_mask,
        post_process_mask=post_process_mask,
        force_bytes=True,
        session=session,
        estimator=estimator,
    )

    total = len(frames)
    for index, frame in enumerate(processed, start=1):
        processor.push(frame)
        if on_progress is not None and index % PROGRESS_EVERY == 0:
            on_progress(total + index, total * 2)
    logger.info("remove_video: pushed %d frame(s), exporting", len(processed))

    return processor.export_final_video()
