from __future__ import annotations

import logging
import os
import shutil
import time
from datetime import timedelta
from pathlib import Path
from typing import Optional, Union

__all__ = ["DEFAULT_MAX_AGE", "ModelCache", "default_cache_root"]

logger = logging.getLogger(__name__)

DEFAULT_MAX_AGE = timedelta(days=30)


def default_cache_root() -> Path:
    """``$U2NET_HOME``, else ``$XDG_DATA_HOME/.u2net``, else ``~/.u2net``."""
    root = os.getenv("U2NET_HOME") or os.path.join(os.getenv("XDG_DATA_HOME", "~"), ".u2net")
    return Path(root).expanduser()


class ModelCache:
    """
    File-backed store for model bytes keyed by their conventional path.

    Entries older than ``max_age`` (by modification time) are treated as
    misses; the next ``put`` refreshes them. The cache is an ordinary object:
    whoever creates it owns its lifetime, and nothing in the package keeps a
    module-level instance.
    """

    def __init__(
        self,
        root: Optional[Union[str, Path]] = None,
        max_age: timedelta = DEFAULT_MAX_AGE,
    ) -> None:
        self.root = Path(root).expanduser() if root is not None else default_cache_root()
        self.max_age = max_age

    def path(self, key: str) -> Path:
        # Keys look like URL paths ("/models/u2net.onnx"); keep only the file name.
        return self.root / Path(key).name

    def is_fresh(self, key: str) -> bool:
        path = self.path(key)
        if not path.is_file():
            return False
        age = time.time() - path.stat().st_mtime
        return age <= self.max_age.total_seconds()

    def get(self, key: str) -> Optional[bytes]:
        path = self.path(key)
        if not path.is_file():
            return None
        if not self.is_fresh(key):
            logger.info("Cached model expired: %s", path)
            return None
        logger.debug("Cache hit: %s", path)
        return path.read_bytes()

    def put(self, key: str, data: bytes) -> Optional[Path]:
        path = self.path(key)
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_bytes(data)
            tmp_path.replace(path)
        except OSError as exc:
            # A read-only or full disk must not break inference.
            logger.warning("Could not cache %s: %s", path, exc)
            return None
        logger.info("Model cached: %s (%.1f MB)", path, len(data) / 1024 / 1024)
        return path

    def clear(self) -> None:
        if self.root.exists():
            shutil.rmtree(self.root)
            logger.info("Model cache cleared: %s", self.root)
