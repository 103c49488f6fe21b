from __future__ import annotations

from typing import Tuple

import numpy as np

from ..errors import MattingEstimationError
from ..sessions.base import ModelSession
from ..utils.images import from_array
from .base import AlphaEstimator, divide_foreground

__all__ = ["ModnetEstimator"]


class ModnetEstimator(AlphaEstimator):
    """
    Alpha from the MODNet portrait matting network.

    The network sees the image only, so the trimap is ignored. Foreground
    colour uses the ``divide`` policy: ``image / alpha`` where alpha exceeds
    ``epsilon``, the original pixel elsewhere. Failures of the secondary
    model, including failing to load it, surface as
    :class:`MattingEstimationError` so the caller can fall back per item.
    """

    NAME = "modnet"
    FOREGROUND_POLICY = "divide"
    USES_TRIMAP = False

    def __init__(self, session: ModelSession, epsilon: float = 0.01) -> None:
        self.session = session
        self.epsilon = epsilon

    def __repr__(self) -> str:
        return f"ModnetEstimator(session={self.session!r})"

    def estimate(self, image: np.ndarray, trimap: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        if image.ndim != 3 or image.shape[2] != 3:
            raise MattingEstimationError(f"Input image must be H x W x 3, got {image.shape}.")

        try:
            matte = self.session.predict(from_array(image * 255.0))[0]
        except Exception as exc:
            raise MattingEstimationError(f"MODNet inference failed: {exc}") from exc

        alpha = np.asarray(matte, dtype=np.float64) / 255.0
        if alpha.shape != image.shape[:2]:
            raise MattingEstimationError(
                f"Matte shape {alpha.shape} does not match image shape {image.shape[:2]}."
            )
        return alpha, divide_foreground(image, alpha, self.epsilon)
