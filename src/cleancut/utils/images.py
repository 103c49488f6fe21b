from __future__ import annotations

import io
from typing import Sequence, Tuple

import numpy as np
from PIL import Image, ImageOps

from .arrays import to_uint8

__all__ = [
    "RESAMPLING",
    "open_image",
    "from_array",
    "to_rgb",
    "resize",
    "concat_vertical",
    "encode_png",
]

# Every resize in the pipeline goes through this filter.
RESAMPLING = Image.LANCZOS


def open_image(data: bytes) -> Image.Image:
    """Decode encoded image bytes and honour EXIF orientation."""
    with Image.open(io.BytesIO(data)) as handle:
        handle.load()
        image = ImageOps.exif_transpose(handle)
    return image


def from_array(array: np.ndarray) -> Image.Image:
    """
    Wrap a numpy buffer as a PIL image.

    ``H x W`` maps to ``L``, ``H x W x 3`` to ``RGB`` and ``H x W x 4`` to
    ``RGBA``. Values are clamped to ``[0, 255]`` before the cast.
    """
    array = np.asarray(array)
    if array.ndim == 3 and array.shape[2] == 1:
        array = array[:, :, 0]
    if not (array.ndim == 2 or (array.ndim == 3 and array.shape[2] in (3, 4))):
        raise ValueError(f"Cannot build an image from array of shape {array.shape}.")
    return Image.fromarray(np.ascontiguousarray(to_uint8(array)))


def to_rgb(image: Image.Image) -> Image.Image:
    if image.mode == "RGB":
        return image
    return image.convert("RGB")


def resize(image: Image.Image, size: Tuple[int, int]) -> Image.Image:
    """Resize to ``(width, height)``; a no-op when the size already matches."""
    if image.size == tuple(size):
        return image
    return image.resize(tuple(size), RESAMPLING)


def concat_vertical(images: Sequence[Image.Image]) -> Image.Image:
    """Stack images top to bottom on a transparent RGBA canvas."""
    images = list(images)
    if not images:
        raise ValueError("No images provided.")
    if len(images) == 1:
        return images[0]
    width = max(image.width for image in images)
    height = sum(image.height for image in images)
    canvas = Image.new("RGBA", (width, height))
    offset = 0
    for image in images:
        canvas.paste(image.convert("RGBA"), (0, offset))
        offset += image.height
    return canvas


def encode_png(image: Image.Image) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()
