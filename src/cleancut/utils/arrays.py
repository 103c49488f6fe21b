from __future__ import annotations

from typing import List

import numpy as np

__all__ = [
    "to_uint8",
    "to_unit_float",
    "min_max_scale",
    "stack_images",
]


def to_uint8(array: np.ndarray) -> np.ndarray:
    """
    Cast to ``uint8`` clamping to ``[0, 255]`` instead of wrapping around.

    NaN becomes 0 and infinities saturate, so degenerate float buffers never
    leak garbage into an encoded image.
    """
    array = np.asarray(array)
    if array.dtype == np.uint8:
        return array
    if array.dtype == np.bool_:
        return array.astype(np.uint8) * 255
    values = np.nan_to_num(array.astype(np.float64), nan=0.0, posinf=255.0, neginf=0.0)
    return np.clip(values, 0, 255).astype(np.uint8)


def to_unit_float(array: np.ndarray) -> np.ndarray:
    """Map an 8-bit buffer to float64 in ``[0, 1]``."""
    return np.asarray(array, dtype=np.float64) / 255.0


def min_max_scale(array: np.ndarray) -> np.ndarray:
    """
    Rescale to ``[0, 1]`` using the buffer's own range.

    A constant buffer has no range and maps to zeros.
    """
    array = np.asarray(array, dtype=np.float32)
    lo = float(array.min())
    hi = float(array.max())
    if hi - lo <= 0:
        return np.zeros_like(array)
    return np.clip((array - lo) / (hi - lo), 0.0, 1.0)


def stack_images(*images: np.ndarray) -> np.ndarray:
    """
    Concatenate ``H x W`` and ``H x W x C`` buffers along the channel axis.

    The usual call is ``stack_images(foreground, alpha)`` which yields an
    ``H x W x 4`` RGBA buffer.
    """
    if not images:
        raise ValueError("At least one image must be provided.")
    height, width = images[0].shape[:2]
    planes: List[np.ndarray] = []
    for image in images:
        if image.shape[:2] != (height, width):
            raise ValueError(
                f"Cannot stack shapes {images[0].shape} and {image.shape}: spatial size differs."
            )
        planes.append(image[:, :, None] if image.ndim == 2 else image)
    return np.concatenate(planes, axis=2)
