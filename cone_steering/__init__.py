"""Cone-based steering estimation (HSV masks → cone markers → steering angle)."""

from .config import EstimatorConfig, load_config
from .pipeline import (
    ConeDetection,
    FrameResult,
    detect_cones,
    generate_synthetic_cones,
    process_frame,
)
from .steering import SteeringState, estimate_steering

__all__ = [
    "ConeDetection",
    "EstimatorConfig",
    "FrameResult",
    "SteeringState",
    "detect_cones",
    "estimate_steering",
    "generate_synthetic_cones",
    "load_config",
    "process_frame",
]
