from __future__ import annotations

import io
import threading
from typing import List, Optional

import numpy as np
import pytest
from PIL import Image

import cleancut.sessions.base as session_base
from cleancut.sessions import ModelCache, ModelSession, new_session


class _Node:
    def __init__(self, name: str, shape: list) -> None:
        self.name = name
        self.shape = shape


class FakeInferenceSession:
    """
    Stand-in for ``onnxruntime.InferenceSession``.

    The "prediction" is the channel mean of the normalized input, so bright
    regions of the image come out as foreground.
    """

    created: List["FakeInferenceSession"] = []

    def __init__(self, model, sess_options=None, providers=None) -> None:
        if model == b"broken":
            raise RuntimeError("invalid protobuf")
        self.model = model
        self.providers = list(providers or ["CPUExecutionProvider"])
        self.feeds: List[np.ndarray] = []
        FakeInferenceSession.created.append(self)

    def get_inputs(self):
        return [_Node("input.1", [1, 3, 320, 320])]

    def get_outputs(self):
        return [_Node("output", [1, 1, 320, 320])]

    def get_providers(self):
        return self.providers

    def run(self, output_names, feeds):
        (tensor,) = feeds.values()
        self.feeds.append(tensor)
        return [tensor.mean(axis=1, keepdims=True)]


class FakeFetch:
    """In-memory model download that reports progress in two chunks."""

    def __init__(self, payload: bytes = b"fake-onnx-model", error: Optional[Exception] = None) -> None:
        self.payload = payload
        self.error = error
        self.calls: List[str] = []
        self.started = threading.Event()
        self.release = threading.Event()
        self.release.set()

    def __call__(self, url, progress=None):
        self.calls.append(url)
        self.started.set()
        self.release.wait(timeout=5)
        if self.error is not None:
            raise self.error
        half = len(self.payload) // 2
        if progress is not None:
            progress(half, len(self.payload))
            progress(len(self.payload), len(self.payload))
        return self.payload


@pytest.fixture
def fake_ort(monkeypatch):
    FakeInferenceSession.created = []
    monkeypatch.setattr(session_base.ort, "InferenceSession", FakeInferenceSession)
    return FakeInferenceSession


@pytest.fixture
def fetch():
    return FakeFetch()


@pytest.fixture
def cache(tmp_path):
    return ModelCache(tmp_path / "models")


@pytest.fixture
def make_session(fake_ort, cache, fetch):
    def factory(name: str = "u2net", **kwargs) -> ModelSession:
        kwargs.setdefault("cache", cache)
        kwargs.setdefault("fetch", fetch)
        kwargs.setdefault("providers", ["CPUExecutionProvider"])
        return new_session(name, **kwargs)

    return factory


@pytest.fixture
def session(make_session):
    return make_session()


def subject_image(width: int = 24, height: int = 16, mode: str = "RGB") -> Image.Image:
    """A white rectangle on a black background."""
    array = np.zeros((height, width, 3), dtype=np.uint8)
    array[height // 4 : 3 * height // 4, width // 4 : 3 * width // 4] = 255
    image = Image.fromarray(array)
    return image.convert(mode) if mode != "RGB" else image


def png_bytes(image: Image.Image) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def image():
    return subject_image()
