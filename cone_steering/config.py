"""Calibration and runtime configuration.

Every constant the estimator relies on (colour ranges, area threshold,
steering gain, dropout threshold) lives here with its calibrated default so
that retuning for a different track or lighting is a YAML edit.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, Tuple

import yaml

HSV_LIMITS = (179, 255, 255)


class ConfigError(ValueError):
    """Raised when configuration values are missing, unknown or out of range."""


class TieBreak(str, Enum):
    """Which qualifying contour represents a marker when several survive."""

    FIRST = "first"
    LAST = "last"
    LARGEST = "largest"
    CLOSEST_TO_CENTER = "closest_to_center"


class DropoutMode(str, Enum):
    """Which marker accumulates the dropout counter when it is seen alone."""

    A_ONLY = "a_only"
    SYMMETRIC = "symmetric"


class Anchor(str, Enum):
    """How a marker's representative point is taken from its contour."""

    BOUNDARY = "boundary"
    CENTER = "center"


def _enum(cls, value, name: str):
    if isinstance(value, cls):
        return value
    try:
        return cls(str(value).lower())
    except ValueError:
        choices = "|".join(m.value for m in cls)
        raise ConfigError(f"{name} must be one of {choices}, got {value!r}") from None


def _convert(value, kind, name: str):
    try:
        return kind(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be {kind.__name__}, got {value!r}") from None


def _coerce(obj, name: str, kind):
    """Convert a field of a frozen config in place."""
    value = _convert(getattr(obj, name), kind, name)
    object.__setattr__(obj, name, value)
    return value


@dataclass(frozen=True)
class FrameConfig:
    width: int = 640
    height: int = 480

    def __post_init__(self) -> None:
        if _coerce(self, "width", int) <= 0 or _coerce(self, "height", int) <= 0:
            raise ConfigError(f"frame size must be positive, got {self.width}x{self.height}")


@dataclass(frozen=True)
class RegionConfig:
    """Horizontal band analysed for cones, as fractions of frame height."""

    top: float = 0.4
    height: float = 0.5

    def __post_init__(self) -> None:
        _coerce(self, "top", float)
        _coerce(self, "height", float)
        if not 0.0 <= self.top < 1.0:
            raise ConfigError(f"region top must be in [0, 1), got {self.top}")
        if not 0.0 < self.height <= 1.0 or self.top + self.height > 1.0:
            raise ConfigError(f"region height must fit inside the frame, got top={self.top} height={self.height}")


@dataclass(frozen=True)
class ColorRange:
    """Inclusive HSV range on OpenCV's scale (hue 0-179, sat/val 0-255)."""

    lower: Tuple[int, int, int]
    upper: Tuple[int, int, int]

    def __post_init__(self) -> None:
        try:
            lower = tuple(_convert(v, int, "lower") for v in self.lower)
            upper = tuple(_convert(v, int, "upper") for v in self.upper)
        except TypeError:
            raise ConfigError("colour range bounds must be lists of three integers") from None
        if len(lower) != 3 or len(upper) != 3:
            raise ConfigError("colour range bounds need exactly three values (h, s, v)")
        for lo, hi, limit in zip(lower, upper, HSV_LIMITS):
            if not 0 <= lo <= hi <= limit:
                raise ConfigError(f"invalid colour range {lower} -> {upper}")
        object.__setattr__(self, "lower", lower)
        object.__setattr__(self, "upper", upper)


@dataclass(frozen=True)
class SegmentationConfig:
    marker_a: ColorRange = field(default_factory=lambda: ColorRange((99, 118, 41), (139, 255, 255)))
    marker_b: ColorRange = field(default_factory=lambda: ColorRange((19, 101, 99), (29, 255, 255)))
    open_kernel: int = 5
    blur_kernel: int = 3
    blur_sigma: float = 1.0

    def __post_init__(self) -> None:
        for name in ("open_kernel", "blur_kernel"):
            k = _coerce(self, name, int)
            if k <= 0 or k % 2 == 0:
                raise ConfigError(f"{name} must be a positive odd integer")
        if _coerce(self, "blur_sigma", float) < 0:
            raise ConfigError("blur_sigma must not be negative")


@dataclass(frozen=True)
class MarkerConfig:
    min_area: int = 100
    tie_break: TieBreak = TieBreak.FIRST
    anchor: Anchor = Anchor.BOUNDARY
    box_thickness: int = 3

    def __post_init__(self) -> None:
        if _coerce(self, "min_area", int) < 0:
            raise ConfigError("min_area must not be negative")
        _coerce(self, "box_thickness", int)
        object.__setattr__(self, "tie_break", _enum(TieBreak, self.tie_break, "tie_break"))
        object.__setattr__(self, "anchor", _enum(Anchor, self.anchor, "anchor"))


@dataclass(frozen=True)
class SteeringConfig:
    gain: float = 0.12
    dropout_threshold: int = 30
    fallback_angle: float = 0.1
    dropout_angle: float = 0.15
    dropout_mode: DropoutMode = DropoutMode.A_ONLY

    def __post_init__(self) -> None:
        for name in ("gain", "fallback_angle", "dropout_angle"):
            _coerce(self, name, float)
        if _coerce(self, "dropout_threshold", int) < 0:
            raise ConfigError("dropout_threshold must not be negative")
        object.__setattr__(self, "dropout_mode", _enum(DropoutMode, self.dropout_mode, "dropout_mode"))


@dataclass(frozen=True)
class RuntimeConfig:
    group: str = "group_06"
    group_name: str = "Group 6"

    def __post_init__(self) -> None:
        _coerce(self, "group", str)
        _coerce(self, "group_name", str)


@dataclass(frozen=True)
class EstimatorConfig:
    frame: FrameConfig = field(default_factory=FrameConfig)
    region: RegionConfig = field(default_factory=RegionConfig)
    segmentation: SegmentationConfig = field(default_factory=SegmentationConfig)
    markers: MarkerConfig = field(default_factory=MarkerConfig)
    steering: SteeringConfig = field(default_factory=SteeringConfig)
    runtime: RuntimeConfig = field(default_factory=RuntimeConfig)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "EstimatorConfig":
        """Build a config from a nested mapping, e.g. parsed YAML.

        Missing sections and keys keep their defaults; unknown ones raise.
        """
        sections = {
            "frame": FrameConfig,
            "region": RegionConfig,
            "segmentation": SegmentationConfig,
            "markers": MarkerConfig,
            "steering": SteeringConfig,
            "runtime": RuntimeConfig,
        }
        unknown = set(data) - set(sections)
        if unknown:
            raise ConfigError(f"unknown config sections: {sorted(unknown)}")

        kwargs: Dict[str, Any] = {}
        for name, section_cls in sections.items():
            section = data.get(name) or {}
            if not isinstance(section, Mapping):
                raise ConfigError(f"section '{name}' must be a mapping")
            values = dict(section)
            bad_keys = set(values) - {f.name for f in fields(section_cls)}
            if bad_keys:
                raise ConfigError(f"unknown keys in section '{name}': {sorted(bad_keys)}")
            if name == "segmentation":
                for marker in ("marker_a", "marker_b"):
                    if marker in values:
                        values[marker] = _color_range(values[marker], marker)
            kwargs[name] = section_cls(**values)
        return cls(**kwargs)


def _color_range(value: Any, name: str) -> ColorRange:
    if isinstance(value, ColorRange):
        return value
    try:
        return ColorRange(tuple(value["lower"]), tuple(value["upper"]))
    except (KeyError, TypeError):
        raise ConfigError(f"{name} needs 'lower' and 'upper' lists") from None


def load_config(path) -> EstimatorConfig:
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")
    with config_path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is not None and not isinstance(data, dict):
        raise ConfigError(f"{config_path} must contain a mapping at the top level")
    return EstimatorConfig.from_dict(data or {})
