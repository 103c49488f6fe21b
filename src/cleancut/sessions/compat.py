"""
Byte-level compatibility patches for serialized ONNX graphs.

Some execution providers reject MaxPool nodes with ``ceil_mode=1``. Rather
than parse the protobuf, :func:`patch_maxpool_ceil_mode` looks for the
attribute name and flips the integer that follows it. This is a heuristic
stand-in for a schema-aware graph editor: it only understands the encodings
listed in ``_ONE_ENCODINGS`` and leaves the bytes untouched when the pattern
is absent.
"""

from __future__ import annotations

import logging
from typing import Iterable, Tuple

__all__ = [
    "PATCH_VERSION",
    "CEIL_MODE_INCOMPATIBLE_PROVIDERS",
    "needs_ceil_mode_patch",
    "patch_maxpool_ceil_mode",
]

logger = logging.getLogger(__name__)

# Bump when the search window or accepted encodings change; the tests pin
# offsets for this version.
PATCH_VERSION = 1

CEIL_MODE_INCOMPATIBLE_PROVIDERS = frozenset({"WebGpuExecutionProvider"})

_PATTERN = b"ceil_mode"
_SEARCH_WINDOW = 20
# Protobuf (tag, value) pairs that encode the integer 1 near the attribute name.
_ONE_ENCODINGS = (b"\x08\x01", b"\x10\x01", b"\x18\x01")


def needs_ceil_mode_patch(providers: Iterable[str]) -> bool:
    return any(provider in CEIL_MODE_INCOMPATIBLE_PROVIDERS for provider in providers)


def patch_maxpool_ceil_mode(model_bytes: bytes) -> Tuple[bytes, int]:
    """
    Return ``(patched_bytes, modifications)``.

    For every occurrence of ``ceil_mode`` the first integer-one encoding found
    within the following ``_SEARCH_WINDOW`` bytes has its value byte set to 0.
    """
    data = bytearray(model_bytes)
    modifications = 0
    start = data.find(_PATTERN)
    while start != -1:
        window_start = start + len(_PATTERN)
        window_end = min(window_start + _SEARCH_WINDOW, len(data) - 1)
        for offset in range(window_start, window_end):
            if bytes(data[offset : offset + 2]) in _ONE_ENCODINGS:
                data[offset + 1] = 0x00
                modifications += 1
                logger.debug("Patched MaxPool ceil_mode at byte %d", offset)
                break
        start = data.find(_PATTERN, window_start)

    if modifications:
        logger.info("Patched %d MaxPool ceil_mode attribute(s) (v%d)", modifications, PATCH_VERSION)
        return bytes(data), modifications
    return bytes(model_bytes), 0
