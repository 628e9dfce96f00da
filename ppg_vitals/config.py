"""
Configuration dataclasses.

Every tunable threshold of the pipeline lives here with its default.  Values
are validated when a config object is built; an invalid value raises
:class:`~ppg_vitals.exceptions.ConfigurationError` so that it never reaches
the processing path.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Type, TypeVar, Union

import yaml

from ppg_vitals.exceptions import ConfigurationError

T = TypeVar("T")

CHANNEL_NAMES = (
    "heart_rate",
    "spo2",
    "blood_pressure",
    "glucose",
    "lipids",
    "hemoglobin",
    "hydration",
    "arrhythmia",
)

PRIORITY_NAMES = ("high", "medium", "low")


def _require(condition: bool, field_name: str, message: str, value: Any = None) -> None:
    if not condition:
        raise ConfigurationError(message, field=field_name, details={"value": value})


def _require_odd_window(name: str, value: int, minimum: int = 1) -> None:
    _require(
        isinstance(value, int) and value >= minimum and value % 2 == 1,
        name,
        f"{name} must be an odd integer >= {minimum}",
        value,
    )


def _require_unit(name: str, value: float) -> None:
    _require(0.0 <= value <= 1.0, name, f"{name} must lie in [0, 1]", value)


# ---------------------------------------------------------------------------
# Component configs
# ---------------------------------------------------------------------------

@dataclass
class ConditionerConfig:
    fast_alpha: float = 0.1
    slow_alpha: float = 0.005
    # |raw - baseline| above this fraction of |baseline| switches to fast tracking
    baseline_threshold_ratio: float = 0.3
    median_window: int = 5
    kalman_window: int = 15
    smoothing_window: int = 3
    epsilon: float = 1e-9

    def __post_init__(self) -> None:
        _require(0.0 < self.slow_alpha < self.fast_alpha <= 1.0, "fast_alpha",
                 "expected 0 < slow_alpha < fast_alpha <= 1",
                 (self.slow_alpha, self.fast_alpha))
        _require(self.baseline_threshold_ratio > 0.0, "baseline_threshold_ratio",
                 "baseline_threshold_ratio must be positive", self.baseline_threshold_ratio)
        _require_odd_window("median_window", self.median_window)
        _require_odd_window("smoothing_window", self.smoothing_window)
        _require(self.kalman_window >= 3, "kalman_window",
                 "kalman_window must be >= 3", self.kalman_window)
        _require(self.epsilon > 0.0, "epsilon", "epsilon must be positive", self.epsilon)


@dataclass
class PeakDetectorConfig:
    lookback: int = 5
    threshold_window: int = 45
    threshold_k: float = 0.2
    min_samples: int = 10
    min_interval_ms: float = 300.0
    max_interval_ms: float = 1500.0
    rr_capacity: int = 20
    base_confidence: float = 0.6
    confidence_step: float = 0.2
    plausible_bpm_low: float = 40.0
    plausible_bpm_high: float = 180.0
    rr_cv_low: float = 0.1
    rr_cv_high: float = 0.3
    # Optional oracle blending
    oracle_window: int = 32
    oracle_weight: float = 0.4
    oracle_suppress_below: float = 0.2

    def __post_init__(self) -> None:
        _require_odd_window("lookback", self.lookback, minimum=3)
        _require(self.lookback <= 7, "lookback", "lookback must be <= 7", self.lookback)
        _require(self.threshold_window >= self.lookback, "threshold_window",
                 "threshold_window must cover the lookback", self.threshold_window)
        _require(self.threshold_k >= 0.0, "threshold_k", "threshold_k must be >= 0", self.threshold_k)
        _require(0.0 < self.min_interval_ms < self.max_interval_ms, "min_interval_ms",
                 "expected 0 < min_interval_ms < max_interval_ms",
                 (self.min_interval_ms, self.max_interval_ms))
        _require(self.rr_capacity >= 3, "rr_capacity", "rr_capacity must be >= 3", self.rr_capacity)
        _require_unit("base_confidence", self.base_confidence)
        _require_unit("oracle_weight", self.oracle_weight)
        _require_unit("oracle_suppress_below", self.oracle_suppress_below)
        _require(self.oracle_window >= self.lookback, "oracle_window",
                 "oracle_window must cover the lookback", self.oracle_window)


@dataclass
class HRVConfig:
    min_intervals: int = 3
    nn_min_ms: float = 300.0
    nn_max_ms: float = 1500.0
    pnn_threshold_ms: float = 50.0

    def __post_init__(self) -> None:
        _require(self.min_intervals >= 2, "min_intervals", "min_intervals must be >= 2",
                 self.min_intervals)
        _require(0.0 < self.nn_min_ms < self.nn_max_ms, "nn_min_ms",
                 "expected 0 < nn_min_ms < nn_max_ms", (self.nn_min_ms, self.nn_max_ms))
        _require(self.pnn_threshold_ms > 0.0, "pnn_threshold_ms",
                 "pnn_threshold_ms must be positive", self.pnn_threshold_ms)


@dataclass
class SpectralConfig:
    window_size: int = 64
    min_hz: float = 0.5
    max_hz: float = 4.0
    oversample: int = 4
    top_k: int = 3
    epsilon: float = 1e-12

    def __post_init__(self) -> None:
        _require(self.window_size >= 16, "window_size", "window_size must be >= 16",
                 self.window_size)
        _require(0.0 < self.min_hz < self.max_hz, "min_hz", "expected 0 < min_hz < max_hz",
                 (self.min_hz, self.max_hz))
        _require(self.oversample >= 1, "oversample", "oversample must be >= 1", self.oversample)
        _require(self.top_k >= 1, "top_k", "top_k must be >= 1", self.top_k)


@dataclass
class QualityConfig:
    window_size: int = 90
    min_samples: int = 30
    amplitude_floor: float = 0.002
    amplitude_good: float = 0.02
    snr_good_db: float = 10.0
    prominence_good: float = 3.0
    amplitude_weight: float = 0.3
    snr_weight: float = 0.3
    periodicity_weight: float = 0.15
    stability_weight: float = 0.25
    ml_weight: float = 0.15

    def __post_init__(self) -> None:
        _require(self.min_samples >= 2, "min_samples", "min_samples must be >= 2", self.min_samples)
        _require(self.window_size >= self.min_samples, "window_size",
                 "window_size must be >= min_samples", self.window_size)
        _require(0.0 <= self.amplitude_floor < self.amplitude_good, "amplitude_floor",
                 "expected 0 <= amplitude_floor < amplitude_good",
                 (self.amplitude_floor, self.amplitude_good))
        _require(self.snr_good_db > 0.0, "snr_good_db", "snr_good_db must be positive",
                 self.snr_good_db)
        _require(self.prominence_good > 1.0, "prominence_good", "prominence_good must be > 1",
                 self.prominence_good)
        weights = (self.amplitude_weight, self.snr_weight, self.periodicity_weight,
                   self.stability_weight, self.ml_weight)
        _require(all(w >= 0.0 for w in weights), "weights", "weights must be >= 0", weights)
        _require(sum(weights[:4]) > 0.0, "weights", "at least one signal weight must be > 0",
                 weights)


@dataclass
class PresenceConfig:
    window_size: int = 30
    weak_amplitude: float = 0.002
    min_raw_value: float = 0.01
    weak_debounce: int = 5
    stable_ratio_min: float = 1.5
    stable_ratio_max: float = 8.0
    possible_quality: float = 20.0
    valid_quality: float = 40.0
    valid_increment: float = 1.0
    valid_decrement: float = 0.5
    valid_threshold: float = 30.0
    valid_cap: float = 90.0
    confirm_duration_ms: float = 2500.0
    stable_quality: float = 70.0
    stable_duration_ms: float = 2000.0
    # Downgrade edges trigger once a counter falls below this share of its entry threshold
    release_ratio: float = 0.5
    epsilon: float = 1e-9

    def __post_init__(self) -> None:
        _require(self.window_size >= 3, "window_size", "window_size must be >= 3", self.window_size)
        _require(self.weak_debounce >= 1, "weak_debounce", "weak_debounce must be >= 1",
                 self.weak_debounce)
        _require(0.0 < self.stable_ratio_min < self.stable_ratio_max, "stable_ratio_min",
                 "expected 0 < stable_ratio_min < stable_ratio_max",
                 (self.stable_ratio_min, self.stable_ratio_max))
        _require(0.0 <= self.possible_quality <= self.valid_quality <= self.stable_quality <= 100.0,
                 "possible_quality",
                 "expected possible_quality <= valid_quality <= stable_quality <= 100",
                 (self.possible_quality, self.valid_quality, self.stable_quality))
        _require(0.0 < self.valid_decrement < self.valid_increment, "valid_decrement",
                 "valid_decrement must be positive and smaller than valid_increment",
                 (self.valid_decrement, self.valid_increment))
        _require(0.0 < self.valid_threshold <= self.valid_cap, "valid_threshold",
                 "expected 0 < valid_threshold <= valid_cap",
                 (self.valid_threshold, self.valid_cap))
        _require(2000.0 <= self.confirm_duration_ms <= 3500.0, "confirm_duration_ms",
                 "confirm_duration_ms must lie in [2000, 3500]", self.confirm_duration_ms)
        _require(self.stable_duration_ms > 0.0, "stable_duration_ms",
                 "stable_duration_ms must be positive", self.stable_duration_ms)
        _require(0.0 < self.release_ratio < 1.0, "release_ratio",
                 "release_ratio must lie in (0, 1)", self.release_ratio)


@dataclass
class ChannelConfig:
    buffer_size: int = 150
    min_confidence: float = 0.5

    def __post_init__(self) -> None:
        _require(self.buffer_size >= 8, "buffer_size", "buffer_size must be >= 8", self.buffer_size)
        _require_unit("min_confidence", self.min_confidence)


@dataclass
class Calibration:
    """
    Per-channel correction derived from an external reference reading.

    ``apply(x) = x * factor + offset``.
    """

    factor: float = 1.0
    offset: float = 0.0

    MIN_FACTOR = 0.5
    MAX_FACTOR = 2.0
    MAX_OFFSET = 100.0

    def __post_init__(self) -> None:
        _require(math.isfinite(self.factor) and self.MIN_FACTOR <= self.factor <= self.MAX_FACTOR,
                 "factor", f"calibration factor must lie in [{self.MIN_FACTOR}, {self.MAX_FACTOR}]",
                 self.factor)
        _require(math.isfinite(self.offset) and abs(self.offset) <= self.MAX_OFFSET,
                 "offset", f"calibration offset must lie in [-{self.MAX_OFFSET}, {self.MAX_OFFSET}]",
                 self.offset)

    def apply(self, value: float) -> float:
        return value * self.factor + self.offset

    @classmethod
    def clamp_factor(cls, factor: float) -> float:
        return min(cls.MAX_FACTOR, max(cls.MIN_FACTOR, factor))


@dataclass
class DispatcherConfig:
    priority_budgets: Dict[str, int] = field(
        default_factory=lambda: {"high": 30, "medium": 10, "low": 5}
    )
    window_size: int = 256
    interval_ms: float = 100.0
    max_pending_per_priority: int = 30
    high_confidence: float = 0.7

    def __post_init__(self) -> None:
        _require(set(self.priority_budgets) == set(PRIORITY_NAMES), "priority_budgets",
                 "priority_budgets needs exactly the keys high, medium, low",
                 sorted(self.priority_budgets))
        _require(all(isinstance(v, int) and v > 0 for v in self.priority_budgets.values()),
                 "priority_budgets", "priority budgets must be positive integers",
                 dict(self.priority_budgets))
        _require(self.window_size >= 32, "window_size", "window_size must be >= 32",
                 self.window_size)
        _require(self.interval_ms > 0.0, "interval_ms", "interval_ms must be positive",
                 self.interval_ms)
        _require(self.max_pending_per_priority >= 1, "max_pending_per_priority",
                 "max_pending_per_priority must be >= 1", self.max_pending_per_priority)
        _require_unit("high_confidence", self.high_confidence)


# ---------------------------------------------------------------------------
# Session config
# ---------------------------------------------------------------------------

def _build(cls: Type[T], data: Optional[Mapping[str, Any]], section: str) -> T:
    if data is None:
        return cls()
    if not isinstance(data, Mapping):
        raise ConfigurationError(f"section '{section}' must be a mapping", field=section)
    known = {f.name for f in fields(cls)}  # type: ignore[arg-type]
    unknown = set(data) - known
    if unknown:
        raise ConfigurationError(
            f"unknown option(s) in '{section}': {', '.join(sorted(unknown))}",
            field=section,
        )
    try:
        return cls(**data)
    except TypeError as exc:
        raise ConfigurationError(str(exc), field=section) from exc


@dataclass
class MonitorConfig:
    fps: float = 30.0
    conditioner: ConditionerConfig = field(default_factory=ConditionerConfig)
    peak_detector: PeakDetectorConfig = field(default_factory=PeakDetectorConfig)
    hrv: HRVConfig = field(default_factory=HRVConfig)
    spectral: SpectralConfig = field(default_factory=SpectralConfig)
    quality: QualityConfig = field(default_factory=QualityConfig)
    presence: PresenceConfig = field(default_factory=PresenceConfig)
    dispatcher: DispatcherConfig = field(default_factory=DispatcherConfig)
    channels: Dict[str, ChannelConfig] = field(default_factory=dict)
    calibration: Dict[str, Calibration] = field(default_factory=dict)

    def __post_init__(self) -> None:
        _require(5.0 <= self.fps <= 240.0, "fps", "fps must lie in [5, 240]", self.fps)
        for name in list(self.channels) + list(self.calibration):
            _require(name in CHANNEL_NAMES, "channels", f"unknown channel '{name}'", name)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MonitorConfig":
        """
        Build a config from nested plain data (e.g. a parsed YAML document).

        Unknown sections or options raise :class:`ConfigurationError`.
        """
        data = dict(data or {})
        sections = {
            "conditioner": ConditionerConfig,
            "peak_detector": PeakDetectorConfig,
            "hrv": HRVConfig,
            "spectral": SpectralConfig,
            "quality": QualityConfig,
            "presence": PresenceConfig,
            "dispatcher": DispatcherConfig,
        }
        unknown = set(data) - set(sections) - {"fps", "channels", "calibration"}
        if unknown:
            raise ConfigurationError(
                f"unknown config section(s): {', '.join(sorted(unknown))}", field="root"
            )
        kwargs: Dict[str, Any] = {
            name: _build(section_cls, data.get(name), name)
            for name, section_cls in sections.items()
        }
        kwargs["channels"] = {
            name: _build(ChannelConfig, opts, f"channels.{name}")
            for name, opts in (data.get("channels") or {}).items()
        }
        kwargs["calibration"] = {
            name: _build(Calibration, opts, f"calibration.{name}")
            for name, opts in (data.get("calibration") or {}).items()
        }
        if "fps" in data:
            try:
                kwargs["fps"] = float(data["fps"])
            except (TypeError, ValueError) as exc:
                raise ConfigurationError("fps must be a number", field="fps",
                                         details={"value": data["fps"]}) from exc
        return cls(**kwargs)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "MonitorConfig":
        """Load a config file; an empty file yields the defaults."""
        try:
            with open(path, "r", encoding="utf-8") as fh:
                data = yaml.safe_load(fh) or {}
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigurationError(f"cannot read config {path}: {exc}", field="path") from exc
        if not isinstance(data, Mapping):
            raise ConfigurationError("config root must be a mapping", field="root")
        return cls.from_dict(data)
