"""
Local background removal toolkit.

Segments images with ONNX models (u2net, u2netp), refines the mask with
trimap-based alpha matting and composites transparent cutouts for single
images, batches and video frames.
"""

from .errors import (
    CleancutError,
    EmptyBatchError,
    MattingEstimationError,
    ModelLoadError,
    UnsupportedInputError,
)
from .pipeline import BackgroundRemover, RemoveOptions, ReturnType, download_models, remove
from .sessions import ModelCache, ModelSession, SessionPool, new_session
from .video import remove_video

__all__ = [
    "BackgroundRemover",
    "RemoveOptions",
    "ReturnType",
    "remove",
    "remove_video",
    "download_models",
    "new_session",
    "ModelSession",
    "ModelCache",
    "SessionPool",
    "CleancutError",
    "ModelLoadError",
    "UnsupportedInputError",
    "MattingEstimationError",
    "EmptyBatchError",
]
