from __future__ import annotations

import hashlib
import os
from typing import Callable, Optional

import requests
from requests import Response
from tqdm import tqdm

ProgressCallback = Callable[[int, int], None]


def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def _read_response(
    response: Response,
    name: str,
    chunk_size: int,
    progress: Optional[ProgressCallback],
) -> bytes:
    response.raise_for_status()
    total = int(response.headers.get("content-length", 0))
    total = total if total > 0 else None
    bar = tqdm(
        total=total,
        unit="B",
        unit_scale=True,
        desc=f"Downloading {name}",
    )

    chunks = []
    loaded = 0
    try:
        for chunk in response.iter_content(chunk_size=chunk_size):
            if not chunk:
                continue
            chunks.append(chunk)
            loaded += len(chunk)
            bar.update(len(chunk))
            # Without a content-length the total is unknown; stay silent.
            if progress is not None and total:
                progress(loaded, total)
    finally:
        bar.close()
        response.close()

    return b"".join(chunks)


def fetch_bytes(
    url: str,
    progress: Optional[ProgressCallback] = None,
    chunk_size: int = 1024 * 1024,
    timeout: float = 60,
) -> bytes:
    """
    Stream a remote file into memory.

    Parameters
    ----------
    url: str
        Remote URL to download.
    progress: Optional[ProgressCallback]
        Called as ``progress(loaded, total)`` after every chunk when the server
        reports a content length.
    chunk_size: int
        Streaming chunk size in bytes. Defaults to 1 MiB.
    timeout: float
        Connect/read timeout in seconds.
    """

    response = requests.get(url, stream=True, timeout=timeout)
    return _read_response(response, os.path.basename(url), chunk_size, progress)
