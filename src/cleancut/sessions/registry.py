from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional

from .base import ModelSession, ModelSpec
from .cache import ModelCache
from .modnet import modnet_spec
from .u2net import u2net_spec, u2netp_spec

__all__ = ["SESSION_REGISTRY", "new_session", "SessionPool"]

logger = logging.getLogger(__name__)

SESSION_REGISTRY: Dict[str, Callable[[], ModelSpec]] = {
    "u2net": u2net_spec,
    "u2netp": u2netp_spec,
    "modnet": modnet_spec,
}


def new_session(model_name: str = "u2net", **kwargs: Any) -> ModelSession:
    """
    Create an uninitialized session for a registered model.

    Keyword arguments are forwarded to :class:`ModelSession` (``cache``,
    ``providers``, ``progress_callback``, ...). The session loads itself on
    first use, or explicitly through ``initialize()``.
    """
    if model_name not in SESSION_REGISTRY:
        raise ValueError(f"Unknown model '{model_name}'. Choices: {list(SESSION_REGISTRY)}")
    return ModelSession(SESSION_REGISTRY[model_name](), **kwargs)


class SessionPool:
    """
    Sessions keyed by model name, created lazily and reused.

    A pool belongs to whoever constructs it (usually a ``BackgroundRemover``);
    dropping the pool drops its sessions.
    """

    def __init__(self, cache: Optional[ModelCache] = None, **session_kwargs: Any) -> None:
        self.cache = cache if cache is not None else ModelCache()
        self._session_kwargs = session_kwargs
        self._sessions: Dict[str, ModelSession] = {}

    def get(self, model_name: str) -> ModelSession:
        session = self._sessions.get(model_name)
        if session is None:
            logger.debug("Creating session for %s", model_name)
            session = new_session(model_name, cache=self.cache, **self._session_kwargs)
            self._sessions[model_name] = session
        return session
