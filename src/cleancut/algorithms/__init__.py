from typing import Optional

from ..sessions.registry import SessionPool
from .base import AlphaEstimator, divide_foreground
from .closed_form import ClosedFormEstimator
from .modnet import ModnetEstimator

ESTIMATORS = ("closed_form", "modnet")


def build_estimator(name: str = "closed_form", sessions: Optional[SessionPool] = None) -> AlphaEstimator:
    """Instantiate an estimator by name; ``modnet`` draws its session from ``sessions``."""
    if name == "closed_form":
        return ClosedFormEstimator()
    if name == "modnet":
        pool = sessions if sessions is not None else SessionPool()
        return ModnetEstimator(pool.get("modnet"))
    raise ValueError(f"Unknown estimator '{name}'. Choices: {list(ESTIMATORS)}")


__all__ = [
    "AlphaEstimator",
    "ClosedFormEstimator",
    "ModnetEstimator",
    "ESTIMATORS",
    "build_estimator",
    "divide_foreground",
]
