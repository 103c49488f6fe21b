import cv2
import numpy as np
import pytest

from cleancut.errors import ModelLoadError
from cleancut.video import OpenCVFrameProcessor, remove_video

from .conftest import FakeFetch, png_bytes, subject_image


class ListFrameProcessor:
    def __init__(self, frames):
        self.frames = list(frames)
        self.events = []
        self.pushed = []

    def init(self):
        self.events.append("init")

    def next(self):
        if not self.frames:
            return None
        self.events.append("next")
        return self.frames.pop(0)

    def push(self, frame):
        self.events.append("push")
        self.pushed.append(frame)

    def export_final_video(self):
        self.events.append("export")
        return "exported"


def test_frames_are_pushed_in_order_then_exported(session):
    sizes = [(10, 8), (12, 8), (14, 8)]
    processor = ListFrameProcessor(png_bytes(subject_image(w, h)) for w, h in sizes)

    result = remove_video(processor, alpha_matting=False, session=session)

    assert result == "exported"
    assert processor.events == ["init"] + ["next"] * 3 + ["push"] * 3 + ["export"]
    decoded = [cv2.imdecode(np.frombuffer(frame, np.uint8), cv2.IMREAD_UNCHANGED) for frame in processor.pushed]
    assert [frame.shape for frame in decoded] == [(8, 10, 4), (8, 12, 4), (8, 14, 4)]


def test_progress_is_reported_every_ten_frames(session):
    frame = png_bytes(subject_image(8, 8))
    processor = ListFrameProcessor([frame] * 20)
    seen = []
    remove_video(processor, alpha_matting=False, session=session, on_progress=lambda c, t: seen.append((c, t)))
    assert seen == [(10, 10), (20, 20), (30, 40), (40, 40)]


def test_failure_skips_export(make_session):
    session = make_session(fetch=FakeFetch(error=ConnectionError("offline")))
    processor = ListFrameProcessor([png_bytes(subject_image())])
    with pytest.raises(ModelLoadError):
        remove_video(processor, alpha_matting=False, session=session)
    assert "push" not in processor.events
    assert "export" not in processor.events


def test_opencv_processor_requires_init(tmp_path):
    processor = OpenCVFrameProcessor(tmp_path / "missing.avi")
    with pytest.raises(RuntimeError):
        processor.next()
    with pytest.raises(RuntimeError):
        processor.export_final_video()
    with pytest.raises(RuntimeError):
        processor.init()


def test_opencv_processor_default_output_path(tmp_path):
    processor = OpenCVFrameProcessor(tmp_path / "clip.avi")
    assert processor.output_path == tmp_path / "clip_nobg.mp4"


def _write_clip(path, frames=3, size=(32, 24)):
    writer = cv2.VideoWriter(str(path), cv2.VideoWriter_fourcc(*"MJPG"), 10.0, size)
    frame = np.asarray(subject_image(*size))[:, :, ::-1]
    for _ in range(frames):
        writer.write(np.ascontiguousarray(frame))
    writer.release()


def test_opencv_round_trip(session, tmp_path):
    source = tmp_path / "clip.avi"
    _write_clip(source)
    processor = OpenCVFrameProcessor(source, tmp_path / "out" / "clip.avi", fourcc="MJPG")

    output = remove_video(processor, alpha_matting=False, session=session)

    assert output == tmp_path / "out" / "clip.avi"
    capture = cv2.VideoCapture(str(output))
    count = 0
    while capture.read()[0]:
        count += 1
    capture.release()
    assert count == 3


def test_pushed_rgba_frames_are_flattened(tmp_path):
    processor = OpenCVFrameProcessor(tmp_path / "in.avi", background=(0, 0, 255))
    rgba = np.zeros((2, 2, 4), dtype=np.uint8)
    ok, encoded = cv2.imencode(".png", rgba)
    assert ok
    bgr = processor._to_bgr(encoded.tobytes())
    assert bgr.shape == (2, 2, 3)
    assert bgr[0, 0].tolist() == [255, 0, 0]
