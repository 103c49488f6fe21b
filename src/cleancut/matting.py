"""
Trimap construction and alpha-matting composites.

The coarse segmentation mask is split into definite foreground, definite
background and an unknown band. An :class:`~cleancut.algorithms.AlphaEstimator`
solves for alpha (and foreground colour) inside that band, and the result is
composited into an RGBA cutout.
"""

from __future__ import annotations

import logging
from typing import Optional, Tuple

import numpy as np
from PIL import Image
from scipy.ndimage import binary_erosion

from .algorithms.base import AlphaEstimator
from .algorithms.closed_form import ClosedFormEstimator
from .errors import MattingEstimationError
from .utils.arrays import stack_images, to_uint8, to_unit_float
from .utils.images import from_array, to_rgb

__all__ = [
    "TRIMAP_BACKGROUND",
    "TRIMAP_UNKNOWN",
    "TRIMAP_FOREGROUND",
    "erode",
    "build_trimap",
    "composite",
    "putalpha_cutout",
    "alpha_matting_cutout",
    "MattingEngine",
]

logger = logging.getLogger(__name__)

TRIMAP_BACKGROUND = 0
TRIMAP_UNKNOWN = 128
TRIMAP_FOREGROUND = 255


def erode(region: np.ndarray, size: int, border_value: int = 0) -> np.ndarray:
    """
    Binary erosion with a ``size x size`` square.

    A pixel survives only if every pixel under the element is set. Pixels
    outside the image count as ``border_value``. ``size <= 0`` returns the
    region unchanged.
    """
    region = np.asarray(region, dtype=bool)
    if size <= 0:
        return region.copy()
    structure = np.ones((size, size), dtype=bool)
    return binary_erosion(region, structure=structure, border_value=border_value)


def build_trimap(
    mask: np.ndarray,
    fg_threshold: int,
    bg_threshold: int,
    erode_size: int,
) -> np.ndarray:
    """
    Derive a ``uint8`` trimap over ``{0, 128, 255}`` from an 8-bit mask.

    Background erosion treats the border as set so the background still
    shrinks towards the image edge; foreground erosion treats it as unset so
    no foreground is invented there. Background is written first and
    foreground second, so foreground wins where both claim a pixel.
    """
    mask = np.asarray(mask)
    is_foreground = mask > fg_threshold
    is_background = mask < bg_threshold

    is_foreground = erode(is_foreground, erode_size, border_value=0)
    is_background = erode(is_background, erode_size, border_value=1)

    trimap = np.full(mask.shape, TRIMAP_UNKNOWN, dtype=np.uint8)
    trimap[is_background] = TRIMAP_BACKGROUND
    trimap[is_foreground] = TRIMAP_FOREGROUND
    return trimap


def composite(foreground: np.ndarray, alpha: np.ndarray) -> Image.Image:
    """Pack ``[0, 1]`` foreground and alpha into an 8-bit RGBA image."""
    alpha = np.clip(np.nan_to_num(alpha, nan=0.0), 0.0, 1.0)
    cutout = stack_images(foreground, alpha)
    return from_array(to_uint8(cutout * 255))


def putalpha_cutout(image: Image.Image, mask: Image.Image) -> Image.Image:
    """Use ``mask`` directly as the alpha channel of a copy of ``image``."""
    cutout = image.convert("RGBA")
    cutout.putalpha(mask.convert("L"))
    return cutout


def _prepare(
    image: Image.Image,
    mask: Image.Image,
    fg_threshold: int,
    bg_threshold: int,
    erode_size: int,
) -> Tuple[np.ndarray, np.ndarray]:
    if image.size != mask.size:
        raise ValueError(f"Image size {image.size} and mask size {mask.size} differ.")
    img_array = np.asarray(to_rgb(image))
    mask_array = np.asarray(mask.convert("L"))
    trimap = build_trimap(mask_array, fg_threshold, bg_threshold, erode_size)
    return to_unit_float(img_array), to_unit_float(trimap)


def alpha_matting_cutout(
    image: Image.Image,
    mask: Image.Image,
    foreground_threshold: int,
    background_threshold: int,
    erode_structure_size: int,
    estimator: Optional[AlphaEstimator] = None,
) -> Image.Image:
    """
    Cut ``image`` out along ``mask`` with alpha matting.

    Any failure of the estimator, including a matte of the wrong size, is
    raised as :class:`MattingEstimationError`; use :class:`MattingEngine` for
    the variant that falls back to the plain mask.
    """
    estimator = estimator if estimator is not None else ClosedFormEstimator()
    img_normalized, trimap_normalized = _prepare(
        image, mask, foreground_threshold, background_threshold, erode_structure_size
    )
    try:
        alpha, foreground = estimator.estimate(img_normalized, trimap_normalized)
        alpha = np.asarray(alpha)
        foreground = np.asarray(foreground)
        if alpha.shape != trimap_normalized.shape or foreground.shape != img_normalized.shape:
            raise MattingEstimationError(
                f"estimator returned alpha {alpha.shape} and foreground {foreground.shape} "
                f"for an image of shape {img_normalized.shape}"
            )
        return composite(foreground, alpha)
    except MattingEstimationError:
        raise
    except Exception as exc:
        raise MattingEstimationError(f"{estimator.NAME} estimator failed: {exc}") from exc


class MattingEngine:
    """Alpha matting with a per-item fallback to the raw mask."""

    def __init__(
        self,
        estimator: Optional[AlphaEstimator] = None,
        fg_threshold: int = 240,
        bg_threshold: int = 10,
        erode_size: int = 10,
    ) -> None:
        self.estimator = estimator if estimator is not None else ClosedFormEstimator()
        self.fg_threshold = fg_threshold
        self.bg_threshold = bg_threshold
        self.erode_size = erode_size

    def trimap(self, mask: Image.Image) -> np.ndarray:
        return build_trimap(
            np.asarray(mask.convert("L")), self.fg_threshold, self.bg_threshold, self.erode_size
        )

    def cutout(self, image: Image.Image, mask: Image.Image) -> Image.Image:
        try:
            return alpha_matting_cutout(
                image,
                mask,
                self.fg_threshold,
                self.bg_threshold,
                self.erode_size,
                estimator=self.estimator,
            )
        except MattingEstimationError as exc:
            logger.warning(
                "Alpha matting with %s failed (%s); using the mask as alpha.", self.estimator.NAME, exc
            )
            return putalpha_cutout(image, mask)
