"""Frame sources, telemetry sink and the per-frame acquisition loop."""

from __future__ import annotations

import logging
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, TextIO, Tuple, Union

import cv2
import numpy as np

from .config import EstimatorConfig, FrameConfig
from .pipeline import process_frame
from .steering import SteeringState

logger = logging.getLogger(__name__)

Sample = Tuple[int, np.ndarray]


def to_bgr(frame: np.ndarray) -> np.ndarray:
    """Normalise a raw capture to 3-channel BGR."""
    if frame.ndim == 2:
        return cv2.cvtColor(frame, cv2.COLOR_GRAY2BGR)
    if frame.shape[2] == 4:
        return cv2.cvtColor(frame, cv2.COLOR_BGRA2BGR)
    return frame


def _check_size(frame: np.ndarray, expected: Optional[FrameConfig]) -> None:
    if expected is None:
        return
    h, w = frame.shape[:2]
    if (w, h) != (expected.width, expected.height):
        raise ValueError(f"Frame is {w}x{h}, expected {expected.width}x{expected.height}")


class VideoFrameSource:
    """Camera index or video file read through cv2.VideoCapture."""

    def __init__(self, source: Union[int, str], frame_config: Optional[FrameConfig] = None) -> None:
        self.source = source
        self.frame_config = frame_config
        self.cap = cv2.VideoCapture(source)
        if not self.cap.isOpened():
            raise RuntimeError(f"Could not open video source: {source}")
        if frame_config is not None and isinstance(source, int):
            self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, frame_config.width)
            self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, frame_config.height)
        # Files always report their own position; cameras decide on the first frame.
        self.wall_clock: Optional[bool] = None if isinstance(source, int) else False
        logger.info("Opened video source %s", source)

    def read(self) -> Optional[Sample]:
        ret, frame = self.cap.read()
        if not ret:
            return None
        pos_ms = self.cap.get(cv2.CAP_PROP_POS_MSEC)
        if self.wall_clock is None:
            self.wall_clock = pos_ms <= 0
            logger.debug("Timestamps for %s from %s", self.source, "wall clock" if self.wall_clock else "capture position")
        if self.wall_clock:
            timestamp_us = int(time.time() * 1_000_000)
        else:
            timestamp_us = int(pos_ms * 1000)
        frame = to_bgr(frame)
        _check_size(frame, self.frame_config)
        return timestamp_us, frame

    def release(self) -> None:
        self.cap.release()
        logger.info("Released video source %s", self.source)


class ImageSequenceSource:
    """Still images read in order; the timestamp is the image index."""

    def __init__(self, paths: Sequence[Union[str, Path]], frame_config: Optional[FrameConfig] = None) -> None:
        self.paths: List[Path] = [Path(p) for p in paths]
        self.frame_config = frame_config
        self._index = 0

    def read(self) -> Optional[Sample]:
        if self._index >= len(self.paths):
            return None
        path = self.paths[self._index]
        frame = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
        if frame is None:
            raise FileNotFoundError(f"Could not read image: {path}")
        frame = to_bgr(frame)
        _check_size(frame, self.frame_config)
        sample = (self._index, frame)
        self._index += 1
        return sample

    def release(self) -> None:
        pass


class SteeringLog:
    """
    Telemetry sink: one `<group>;<timestamp_us>;<angle>` line per frame.

    Lines go to the log file (truncated on open) and are echoed to `echo`
    (stdout by default, None to disable).
    """

    HEADER = "sampleTimeStamp;steeringWheelAngle"

    def __init__(self, path: Optional[Union[str, Path]], group: str = "group_06", echo: Optional[TextIO] = sys.stdout) -> None:
        self.path = Path(path) if path is not None else None
        self.group = group
        self.echo = echo
        self._file: Optional[TextIO] = None

    def __enter__(self) -> "SteeringLog":
        if self.path is not None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._file = self.path.open("w", encoding="utf-8")
            self._file.write(f"{self.group};{self.HEADER}\n")
        return self

    def __exit__(self, *exc) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    def format(self, timestamp_us: int, angle: float) -> str:
        return f"{self.group};{timestamp_us};{angle:g}"

    def write(self, timestamp_us: int, angle: float) -> str:
        line = self.format(timestamp_us, angle)
        if self._file is not None:
            self._file.write(line + "\n")
            self._file.flush()
        if self.echo is not None:
            print(line, file=self.echo)
        return line


def _overlay_status(image: np.ndarray, timestamp_us: int, group_name: str) -> None:
    now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    text = f"Now {now}; ts: {timestamp_us}; {group_name}"
    cv2.putText(image, text, (10, image.shape[0] - 10), cv2.FONT_HERSHEY_SIMPLEX, 0.5, (255, 255, 255), 1, cv2.LINE_AA)


def iter_frames(source, max_frames: Optional[int] = None) -> Iterator[Sample]:
    count = 0
    while max_frames is None or count < max_frames:
        sample = source.read()
        if sample is None:
            return
        yield sample
        count += 1


def run(
    source,
    sink: SteeringLog,
    config: Optional[EstimatorConfig] = None,
    show: bool = False,
    max_frames: Optional[int] = None,
    state: Optional[SteeringState] = None,
    window: str = "cone_steering",
) -> SteeringState:
    """
    Acquire, estimate and report frame by frame until the source runs dry.

    Frames are processed strictly in arrival order. Returns the steering
    state after the last frame.
    """
    config = config or EstimatorConfig()
    state = state or SteeringState()
    frames = 0
    try:
        for timestamp_us, frame in iter_frames(source, max_frames):
            result = process_frame(frame, state, config)
            state = result.state
            sink.write(timestamp_us, result.angle)
            frames += 1

            if show:
                _overlay_status(result.annotated, timestamp_us, config.runtime.group_name)
                cv2.imshow(window, result.annotated)
                if cv2.waitKey(1) & 0xFF == ord("q"):
                    logger.info("Stopped from the preview window")
                    break
    except KeyboardInterrupt:
        logger.info("Interrupted")
    finally:
        if show:
            cv2.destroyAllWindows()
        logger.info("Processed %d frames, final angle %.4f", frames, state.angle)
    return state
