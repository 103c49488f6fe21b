import logging
import os
import time
from datetime import timedelta

from cleancut.sessions.cache import ModelCache, default_cache_root
from cleancut.sessions.compat import PATCH_VERSION, needs_ceil_mode_patch, patch_maxpool_ceil_mode


def test_cache_round_trip(tmp_path):
    cache = ModelCache(tmp_path)
    assert cache.get("/models/u2net.onnx") is None
    path = cache.put("/models/u2net.onnx", b"weights")
    assert path == tmp_path / "u2net.onnx"
    assert cache.get("/models/u2net.onnx") == b"weights"
    assert not (tmp_path / "u2net.onnx.tmp").exists()


def test_cache_entries_expire(tmp_path):
    cache = ModelCache(tmp_path, max_age=timedelta(days=30))
    path = cache.put("/models/u2net.onnx", b"weights")
    old = time.time() - timedelta(days=31).total_seconds()
    os.utime(path, (old, old))
    assert cache.get("/models/u2net.onnx") is None
    assert not cache.is_fresh("/models/u2net.onnx")


def test_cache_write_failure_is_logged(tmp_path, caplog):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x")
    cache = ModelCache(blocker)
    with caplog.at_level(logging.WARNING):
        assert cache.put("/models/u2net.onnx", b"weights") is None
    assert "Could not cache" in caplog.text


def test_cache_clear(tmp_path):
    cache = ModelCache(tmp_path / "c")
    cache.put("/models/a.onnx", b"a")
    cache.clear()
    assert cache.get("/models/a.onnx") is None


def test_default_cache_root_honours_env(monkeypatch, tmp_path):
    monkeypatch.setenv("U2NET_HOME", str(tmp_path / "home"))
    assert default_cache_root() == tmp_path / "home"
    monkeypatch.delenv("U2NET_HOME")
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path))
    assert default_cache_root() == tmp_path / ".u2net"


# Fixture graph fragment: two MaxPool attributes. Offsets are pinned for
# PATCH_VERSION 1.
FRAGMENT = (
    b"\x0a\x07MaxPool"          # 0..8
    b"\x12\x09ceil_mode"        # 9..19, name ends at 20
    b"\x20\x02\x18\x01"         # type tag at 20, int value pair at 22
    b"\x0a\x07MaxPool"          # 24..32
    b"\x12\x09ceil_mode"        # 33..43, name ends at 44
    b"\x08\x01"                 # int value pair at 44
)


def test_patch_pins_known_offsets():
    assert PATCH_VERSION == 1
    patched, count = patch_maxpool_ceil_mode(FRAGMENT)
    assert count == 2
    assert patched[22:24] == b"\x18\x00"
    assert patched[44:46] == b"\x08\x00"
    changed = [i for i, (a, b) in enumerate(zip(FRAGMENT, patched)) if a != b]
    assert changed == [23, 45]


def test_patch_is_noop_without_pattern():
    data = b"\x08\x01" * 20 + b"kernel_shape"
    patched, count = patch_maxpool_ceil_mode(data)
    assert count == 0
    assert patched == data


def test_patch_ignores_already_disabled_attribute():
    data = b"\x12\x09ceil_mode\x20\x02\x18\x00" + b"\x00" * 30
    patched, count = patch_maxpool_ceil_mode(data)
    assert count == 0
    assert patched == data


def test_patch_gate_depends_on_provider():
    assert needs_ceil_mode_patch(["WebGpuExecutionProvider", "CPUExecutionProvider"])
    assert not needs_ceil_mode_patch(["CUDAExecutionProvider", "CPUExecutionProvider"])
