from __future__ import annotations

import abc
from typing import ClassVar, Tuple

import numpy as np

__all__ = ["AlphaEstimator", "divide_foreground"]


def divide_foreground(image: np.ndarray, alpha: np.ndarray, epsilon: float = 0.01) -> np.ndarray:
    """
    Recover foreground colour as ``image / alpha``.

    Where ``alpha <= epsilon`` the original pixel is passed through; the
    result is capped at 1.
    """
    alpha3 = alpha[:, :, None]
    confident = alpha3 > epsilon
    safe_alpha = np.where(confident, alpha3, 1.0)
    foreground = np.where(confident, image / safe_alpha, image)
    return np.minimum(foreground, 1.0)


class AlphaEstimator(abc.ABC):
    """
    Abstract base class for alpha matte estimators.

    ``estimate`` receives an ``H x W x 3`` float image and an ``H x W`` float
    trimap, both in ``[0, 1]``, and returns ``(alpha, foreground)`` with the
    same spatial size. Implementations raise
    :class:`~cleancut.errors.MattingEstimationError` when they cannot produce
    a matte; callers decide how to degrade.

    ``FOREGROUND_POLICY`` documents how the foreground colour is obtained:
    ``"joint"`` when it is solved from the image and alpha together,
    ``"divide"`` for the simplified ``image / alpha`` rule of
    :func:`divide_foreground`.
    """

    NAME: ClassVar[str]
    FOREGROUND_POLICY: ClassVar[str]
    USES_TRIMAP: ClassVar[bool] = True

    @abc.abstractmethod
    def estimate(self, image: np.ndarray, trimap: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"
