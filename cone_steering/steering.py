"""Steering angle state machine.

The estimator reduces the horizontal positions of the two boundary markers
(blue = A, yellow = B) to one steering command. Cross-frame memory is an
explicit :class:`SteeringState` value: the caller passes the current state in
and keeps the one that comes back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional

import cv2
import numpy as np

from .config import DropoutMode, SteeringConfig

logger = logging.getLogger(__name__)


class MarkerCase(Enum):
    BOTH = "both"
    ONLY_A = "only_a"
    ONLY_B = "only_b"
    NEITHER = "neither"


@dataclass(frozen=True)
class SteeringState:
    clockwise: bool = False
    dropout_count: int = 0
    angle: float = 0.0


@dataclass(frozen=True)
class SteeringResult:
    angle: float
    state: SteeringState
    case: MarkerCase
    held: bool = False


def classify(a_x: Optional[int], b_x: Optional[int]) -> MarkerCase:
    if a_x is not None and b_x is not None:
        return MarkerCase.BOTH
    if a_x is not None:
        return MarkerCase.ONLY_A
    if b_x is not None:
        return MarkerCase.ONLY_B
    return MarkerCase.NEITHER


def _hold_both(state: SteeringState) -> SteeringResult:
    # Both markers seen but no usable geometry: keep the angle, clear dropout.
    return SteeringResult(state.angle, replace(state, dropout_count=0), MarkerCase.BOTH, held=True)


def _both_present(a_x: int, b_x: int, mid_x: int, state: SteeringState, cfg: SteeringConfig) -> SteeringResult:
    if a_x > mid_x and b_x < mid_x:
        # counter-clockwise: blue on the right, yellow on the left
        d_a = abs(mid_x - b_x)
        d_b = abs(a_x - mid_x)
        magnitude = cfg.gain * abs(d_a - d_b) / mid_x
        angle = magnitude if d_a > d_b else -magnitude
        clockwise = False
    elif a_x < mid_x and b_x > mid_x:
        d_a = abs(mid_x - a_x)
        d_b = abs(b_x - mid_x)
        magnitude = cfg.gain * abs(d_a - d_b) / mid_x
        angle = -magnitude if d_a > d_b else magnitude
        clockwise = True
    else:
        return _hold_both(state)

    new_state = SteeringState(clockwise=clockwise, dropout_count=0, angle=float(angle))
    return SteeringResult(new_state.angle, new_state, MarkerCase.BOTH)


def _only_a(state: SteeringState, cfg: SteeringConfig) -> SteeringResult:
    count = state.dropout_count + 1
    if state.clockwise:
        angle = -cfg.dropout_angle if count > cfg.dropout_threshold else -cfg.fallback_angle
    else:
        angle = cfg.fallback_angle
    new_state = SteeringState(clockwise=state.clockwise, dropout_count=count, angle=float(angle))
    return SteeringResult(new_state.angle, new_state, MarkerCase.ONLY_A)


def _only_b(state: SteeringState, cfg: SteeringConfig) -> SteeringResult:
    count = state.dropout_count
    if cfg.dropout_mode is DropoutMode.SYMMETRIC:
        count += 1
    if state.clockwise:
        angle = -cfg.fallback_angle
    elif cfg.dropout_mode is DropoutMode.SYMMETRIC and count > cfg.dropout_threshold:
        angle = cfg.dropout_angle
    else:
        angle = cfg.fallback_angle
    new_state = SteeringState(clockwise=state.clockwise, dropout_count=count, angle=float(angle))
    return SteeringResult(new_state.angle, new_state, MarkerCase.ONLY_B)


def estimate_steering(
    a_x: Optional[int],
    b_x: Optional[int],
    frame_width: int,
    state: SteeringState,
    config: Optional[SteeringConfig] = None,
) -> SteeringResult:
    """
    Compute this frame's steering angle and the state for the next frame.

    a_x / b_x are the representative x coordinates of the blue and yellow
    markers, or None when the marker was not seen.

    Cases:
      - both seen   : proportional to the imbalance of the two distances to
                      the image centre, direction remembered
      - only blue   : fixed angle from the remembered direction; after more
                      than dropout_threshold frames clockwise it escalates
      - only yellow : fixed angle from the remembered direction
      - neither     : previous angle and state returned unchanged
    """
    cfg = config or SteeringConfig()
    mid_x = int(frame_width) // 2
    case = classify(a_x, b_x)
    if case is MarkerCase.BOTH and mid_x <= 0:
        result = _hold_both(state)
    elif case is MarkerCase.BOTH:
        result = _both_present(int(a_x), int(b_x), mid_x, state, cfg)
    elif case is MarkerCase.ONLY_A:
        result = _only_a(state, cfg)
    elif case is MarkerCase.ONLY_B:
        result = _only_b(state, cfg)
    else:
        result = SteeringResult(state.angle, state, MarkerCase.NEITHER, held=True)

    if result.state.clockwise != state.clockwise:
        logger.debug("turn direction -> %s", "clockwise" if result.state.clockwise else "counter-clockwise")
    logger.debug(
        "%s: angle=%.4f dropout=%d%s",
        case.value,
        result.angle,
        result.state.dropout_count,
        " (held)" if result.held else "",
    )
    return result


def annotate_steering(image: np.ndarray, a_x: int, b_x: int, angle: float) -> np.ndarray:
    text = f"BlueX: {a_x} YellowX: {b_x} GS{angle:.6f}"
    cv2.putText(image, text, (150, 80), cv2.FONT_HERSHEY_SIMPLEX, 0.5, (0, 255, 0), 1, cv2.LINE_AA)
    return image
