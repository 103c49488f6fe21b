from .base import ModelSession, ModelSpec, PreprocessConfig, SessionState, select_providers
from .cache import ModelCache
from .registry import SESSION_REGISTRY, SessionPool, new_session

__all__ = [
    "ModelSession",
    "ModelSpec",
    "PreprocessConfig",
    "SessionState",
    "ModelCache",
    "SessionPool",
    "SESSION_REGISTRY",
    "new_session",
    "select_providers",
]
