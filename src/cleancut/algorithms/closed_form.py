from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

import numpy as np
from pymatting import estimate_alpha_cf, estimate_foreground_ml

from ..errors import MattingEstimationError
from .base import AlphaEstimator

__all__ = ["ClosedFormEstimator"]

logger = logging.getLogger(__name__)


class ClosedFormEstimator(AlphaEstimator):
    """
    Closed-form matting (Levin et al.) through pymatting.

    Alpha comes from ``estimate_alpha_cf`` and the foreground colour from
    ``estimate_foreground_ml``, which solves for it given the image and the
    estimated alpha.

    Trimaps without unknown pixels are already a matte and are returned
    directly. Trimaps missing either definite foreground or definite
    background cannot constrain the solve and raise
    :class:`MattingEstimationError`.
    """

    NAME = "closed_form"
    FOREGROUND_POLICY = "joint"

    def __init__(
        self,
        laplacian_kwargs: Optional[Dict[str, Any]] = None,
        cg_kwargs: Optional[Dict[str, Any]] = None,
        fg_level: float = 0.9,
        bg_level: float = 0.1,
    ) -> None:
        self.laplacian_kwargs = dict(laplacian_kwargs or {})
        self.cg_kwargs = dict(cg_kwargs or {})
        self.fg_level = fg_level
        self.bg_level = bg_level

    def estimate(self, image: np.ndarray, trimap: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        is_fg = trimap >= self.fg_level
        is_bg = trimap <= self.bg_level
        is_known = is_fg | is_bg

        if is_known.all():
            logger.debug("Trimap has no unknown region; using it as the matte.")
            return is_fg.astype(np.float64), image.copy()
        if not is_fg.any() or not is_bg.any():
            raise MattingEstimationError(
                "Trimap needs both definite foreground and definite background pixels "
                f"(foreground: {int(is_fg.sum())}, background: {int(is_bg.sum())})."
            )

        try:
            alpha = estimate_alpha_cf(
                image,
                trimap,
                laplacian_kwargs=self.laplacian_kwargs,
                cg_kwargs=self.cg_kwargs,
            )
            foreground = estimate_foreground_ml(image, alpha)
        except Exception as exc:
            raise MattingEstimationError(f"closed-form matting failed: {exc}") from exc

        return alpha, foreground
