import io

import cv2
import numpy as np
import pytest

from cone_steering.config import FrameConfig
from cone_steering.pipeline import generate_synthetic_cones
from cone_steering.runtime import ImageSequenceSource, SteeringLog, VideoFrameSource, run, to_bgr
from cone_steering.steering import SteeringState


class ListSource:
    def __init__(self, frames):
        self.samples = list(enumerate(frames))

    def read(self):
        return self.samples.pop(0) if self.samples else None


def test_log_lines_and_header(tmp_path):
    path = tmp_path / "out" / "steering.txt"
    echo = io.StringIO()
    with SteeringLog(path, echo=echo) as sink:
        assert sink.write(1234, 0.1) == "group_06;1234;0.1"
        sink.write(1300, -0.15)

    lines = path.read_text(encoding="utf-8").splitlines()
    assert lines == [
        "group_06;sampleTimeStamp;steeringWheelAngle",
        "group_06;1234;0.1",
        "group_06;1300;-0.15",
    ]
    assert echo.getvalue().splitlines() == lines[1:]


def test_run_carries_state_between_frames():
    frames = [
        generate_synthetic_cones(a_center=(100, 300), b_center=(480, 300)),  # clockwise
        generate_synthetic_cones(a_center=(200, 300)),  # blue only
        generate_synthetic_cones(),  # nothing
    ]
    echo = io.StringIO()
    with SteeringLog(None, echo=echo) as sink:
        state = run(ListSource(frames), sink)

    angles = [float(line.split(";")[2]) for line in echo.getvalue().splitlines()]
    assert len(angles) == 3
    assert angles[1] == pytest.approx(-0.1)
    assert angles[2] == pytest.approx(-0.1)
    assert state == SteeringState(clockwise=True, dropout_count=1, angle=-0.1)


def test_run_stops_at_max_frames():
    frames = [generate_synthetic_cones(a_center=(450, 300))] * 5
    with SteeringLog(None, echo=None) as sink:
        state = run(ListSource(frames), sink, max_frames=2)
    assert state.dropout_count == 2


def test_image_sequence_source(tmp_path):
    paths = []
    for i, b_x in enumerate((140, 160)):
        path = tmp_path / f"frame_{i}.png"
        cv2.imwrite(str(path), generate_synthetic_cones(a_center=(500, 300), b_center=(b_x, 300)))
        paths.append(path)

    source = ImageSequenceSource(paths, FrameConfig(640, 480))
    ts, frame = source.read()
    assert ts == 0 and frame.shape == (480, 640, 3)
    assert source.read()[0] == 1
    assert source.read() is None


def test_image_sequence_rejects_wrong_size(tmp_path):
    path = tmp_path / "small.png"
    cv2.imwrite(str(path), generate_synthetic_cones(width=320, height=240))
    source = ImageSequenceSource([path], FrameConfig(640, 480))
    with pytest.raises(ValueError):
        source.read()


def test_to_bgr_drops_alpha():
    bgra = np.zeros((4, 4, 4), dtype=np.uint8)
    bgra[..., 0] = 255
    bgr = to_bgr(bgra)
    assert bgr.shape == (4, 4, 3)
    assert (bgr[..., 0] == 255).all()


def test_video_file_timestamps_never_go_back(tmp_path):
    path = tmp_path / "clip.avi"
    writer = cv2.VideoWriter(str(path), cv2.VideoWriter_fourcc(*"MJPG"), 30.0, (640, 480))
    if not writer.isOpened():
        pytest.skip("MJPG writer not available in this OpenCV build")
    for a_x in (400, 450, 500, 550):
        writer.write(generate_synthetic_cones(a_center=(a_x, 300)))
    writer.release()

    source = VideoFrameSource(str(path))
    try:
        stamps = [ts for ts, _ in iter(source.read, None)]
    finally:
        source.release()

    assert len(stamps) == 4
    assert stamps == sorted(stamps)
    assert stamps[-1] < 1_000_000


def test_missing_video_file(tmp_path):
    with pytest.raises(RuntimeError):
        VideoFrameSource(str(tmp_path / "missing.avi"))
