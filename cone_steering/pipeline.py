from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import cv2
import numpy as np

from .config import Anchor, ColorRange, EstimatorConfig, RegionConfig, SegmentationConfig, TieBreak
from .steering import MarkerCase, SteeringResult, SteeringState, annotate_steering, estimate_steering

Contour = np.ndarray
Point = Tuple[int, int]

BLUE_BOX_COLOR = (255, 0, 0)
YELLOW_BOX_COLOR = (0, 255, 255)

# BGR paint used by the synthetic generator; both sit inside the default HSV ranges.
SYNTHETIC_BLUE = (255, 0, 0)
SYNTHETIC_YELLOW = (0, 210, 255)
SYNTHETIC_BACKGROUND = (90, 90, 90)


@dataclass(frozen=True)
class BoundingBox:
    x: int
    y: int
    width: int
    height: int

    @property
    def area(self) -> int:
        return self.width * self.height

    @property
    def center(self) -> Point:
        return self.x + self.width // 2, self.y + self.height // 2


@dataclass(frozen=True)
class MarkerObservation:
    box: BoundingBox
    point: Point
    bearing: float

    @property
    def x(self) -> int:
        return self.point[0]


@dataclass(frozen=True)
class ConeDetection:
    roi_offset: int
    mask_a: np.ndarray
    mask_b: np.ndarray
    contours_a: List[Contour]
    contours_b: List[Contour]
    markers_a: List[MarkerObservation]
    markers_b: List[MarkerObservation]
    marker_a: Optional[MarkerObservation]
    marker_b: Optional[MarkerObservation]


@dataclass(frozen=True)
class FrameResult:
    angle: float
    state: SteeringState
    annotated: np.ndarray
    detection: ConeDetection
    steering: SteeringResult


def select_region(frame: np.ndarray, region: Optional[RegionConfig] = None) -> Tuple[np.ndarray, int]:
    """Return the band of rows likely to hold cones and its row offset in the frame."""
    region = region or RegionConfig()
    h = frame.shape[0]
    top = int(h * region.top)
    rows = int(h * region.height)
    return frame[top : top + rows, :], top


def color_mask(hsv: np.ndarray, color_range: ColorRange, seg: SegmentationConfig) -> np.ndarray:
    mask = cv2.inRange(hsv, np.array(color_range.lower), np.array(color_range.upper))
    k = int(seg.open_kernel)
    kernel = cv2.getStructuringElement(cv2.MORPH_ELLIPSE, (k, k))
    mask = cv2.morphologyEx(mask, cv2.MORPH_OPEN, kernel)
    b = int(seg.blur_kernel)
    return cv2.GaussianBlur(mask, (b, b), float(seg.blur_sigma))


def segment_colors(roi: np.ndarray, seg: Optional[SegmentationConfig] = None) -> Tuple[np.ndarray, np.ndarray]:
    """Binary masks for marker A (blue) and marker B (yellow) inside the region."""
    seg = seg or SegmentationConfig()
    if roi.size == 0:
        empty = np.zeros(roi.shape[:2], dtype=np.uint8)
        return empty, empty.copy()

    hsv = cv2.cvtColor(roi, cv2.COLOR_BGR2HSV)
    return color_mask(hsv, seg.marker_a, seg), color_mask(hsv, seg.marker_b, seg)


def find_contours(mask: np.ndarray) -> List[Contour]:
    if mask.size == 0:
        return []
    contours, _ = cv2.findContours(mask, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)
    return list(contours)


def locate_markers(
    contours: Sequence[Contour],
    y_offset: int = 0,
    min_area: int = 100,
    anchor: Anchor = Anchor.BOUNDARY,
) -> List[MarkerObservation]:
    """
    Turn contours into marker observations in full-frame coordinates.

    Contours whose bounding box area is not strictly above min_area are
    treated as noise. Every surviving contour yields one observation, in
    contour order. The representative point is either the first raw
    boundary point of the contour or the centre of its bounding box.
    """
    observations: List[MarkerObservation] = []
    for contour in contours:
        if len(contour) == 0:
            continue
        x, y, w, h = cv2.boundingRect(contour)
        if w * h <= min_area:
            continue
        box = BoundingBox(int(x), int(y) + y_offset, int(w), int(h))
        if anchor is Anchor.CENTER:
            point = box.center
        else:
            px, py = contour.reshape(-1, 2)[0]
            point = (int(px), int(py) + y_offset)
        mid_x, mid_y = box.center
        observations.append(MarkerObservation(box=box, point=point, bearing=math.atan2(mid_y, mid_x)))
    return observations


def select_marker(
    observations: Sequence[MarkerObservation],
    policy: TieBreak = TieBreak.FIRST,
    frame_width: Optional[int] = None,
) -> Optional[MarkerObservation]:
    """Pick the observation that represents a marker this frame."""
    if not observations:
        return None
    if policy is TieBreak.FIRST:
        return observations[0]
    if policy is TieBreak.LAST:
        return observations[-1]
    if policy is TieBreak.LARGEST:
        return max(observations, key=lambda o: o.box.area)
    if policy is TieBreak.CLOSEST_TO_CENTER:
        if frame_width is None:
            raise ValueError("closest_to_center needs the frame width")
        mid_x = frame_width / 2
        return min(observations, key=lambda o: abs(o.box.center[0] - mid_x))
    raise ValueError(f"Unknown tie-break policy: {policy}")


def draw_markers(
    image: np.ndarray,
    observations: Sequence[MarkerObservation],
    color=BLUE_BOX_COLOR,
    thickness: int = 3,
) -> np.ndarray:
    for obs in observations:
        b = obs.box
        cv2.rectangle(image, (b.x, b.y), (b.x + b.width - 1, b.y + b.height - 1), color, int(thickness))
    return image


def _check_frame(frame: np.ndarray) -> None:
    if frame is None or frame.ndim != 3 or frame.shape[2] != 3:
        shape = None if frame is None else frame.shape
        raise ValueError(f"Expected a 3-channel BGR frame, got shape {shape}")


def detect_cones(frame: np.ndarray, config: Optional[EstimatorConfig] = None) -> ConeDetection:
    config = config or EstimatorConfig()
    _check_frame(frame)

    roi, offset = select_region(frame, config.region)
    mask_a, mask_b = segment_colors(roi, config.segmentation)
    contours_a = find_contours(mask_a)
    contours_b = find_contours(mask_b)

    m = config.markers
    markers_a = locate_markers(contours_a, offset, m.min_area, m.anchor)
    markers_b = locate_markers(contours_b, offset, m.min_area, m.anchor)
    width = frame.shape[1]

    return ConeDetection(
        roi_offset=offset,
        mask_a=mask_a,
        mask_b=mask_b,
        contours_a=contours_a,
        contours_b=contours_b,
        markers_a=markers_a,
        markers_b=markers_b,
        marker_a=select_marker(markers_a, m.tie_break, width),
        marker_b=select_marker(markers_b, m.tie_break, width),
    )


def process_frame(
    frame: np.ndarray,
    state: Optional[SteeringState] = None,
    config: Optional[EstimatorConfig] = None,
) -> FrameResult:
    """
    Run the full per-frame estimation.

    The caller's frame is left untouched; boxes and the steering overlay are
    drawn on a copy returned as FrameResult.annotated. The returned state is
    what the caller should pass in with the next frame.
    """
    config = config or EstimatorConfig()
    state = state or SteeringState()
    detection = detect_cones(frame, config)

    annotated = frame.copy()
    thickness = config.markers.box_thickness
    draw_markers(annotated, detection.markers_a, BLUE_BOX_COLOR, thickness)
    draw_markers(annotated, detection.markers_b, YELLOW_BOX_COLOR, thickness)

    a_x = detection.marker_a.x if detection.marker_a else None
    b_x = detection.marker_b.x if detection.marker_b else None
    steering = estimate_steering(a_x, b_x, frame.shape[1], state, config.steering)
    if steering.case is MarkerCase.BOTH:
        annotate_steering(annotated, a_x, b_x, steering.angle)

    return FrameResult(
        angle=steering.angle,
        state=steering.state,
        annotated=annotated,
        detection=detection,
        steering=steering,
    )


def generate_synthetic_cones(
    width: int = 640,
    height: int = 480,
    a_center: Optional[Point] = None,
    b_center: Optional[Point] = None,
    cone_size: Tuple[int, int] = (40, 60),
) -> np.ndarray:
    """Gray frame with a blue (A) and/or yellow (B) cone drawn as solid blocks."""
    img = np.full((height, width, 3), SYNTHETIC_BACKGROUND, dtype=np.uint8)
    w, h = cone_size
    for center, color in ((a_center, SYNTHETIC_BLUE), (b_center, SYNTHETIC_YELLOW)):
        if center is None:
            continue
        cx, cy = center
        x0, y0 = cx - w // 2, cy - h // 2
        cv2.rectangle(img, (x0, y0), (x0 + w - 1, y0 + h - 1), color, -1)
    return img
