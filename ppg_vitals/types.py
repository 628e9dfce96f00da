"""
Value types exchanged between pipeline stages.

Every stage owns its own buffers; only the immutable values defined here
cross component boundaries.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Deque, Dict, Iterable, Iterator, Optional, Tuple

import numpy as np

# Physiological bounds for a stored RR interval (ms).
RR_MIN_MS = 250.0
RR_MAX_MS = 1500.0

# Text sentinel for a withheld blood-pressure reading.
PRESSURE_SENTINEL = "--/--"


# ---------------------------------------------------------------------------
# Per-sample values
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Sample:
    """One raw intensity reading from the acquisition collaborator."""

    timestamp_ms: float
    raw_value: float


@dataclass(frozen=True)
class ConditionedSample:
    timestamp_ms: float
    raw_value: float
    ac_value: float
    dc_baseline: float
    filtered_value: float


@dataclass(frozen=True)
class Beat:
    """An accepted heartbeat peak."""

    timestamp_ms: float
    peak_value: float
    confidence: float
    rr_interval_ms: Optional[float] = None

    @property
    def instant_bpm(self) -> Optional[float]:
        if not self.rr_interval_ms:
            return None
        return 60000.0 / self.rr_interval_ms


class RRHistory:
    """
    Bounded, insertion-ordered ring of RR intervals.

    Values outside ``[min_ms, max_ms]`` are discarded and never stored.
    """

    def __init__(
        self,
        capacity: int = 20,
        min_ms: float = RR_MIN_MS,
        max_ms: float = RR_MAX_MS,
    ) -> None:
        self.min_ms = min_ms
        self.max_ms = max_ms
        self._intervals: Deque[float] = deque(maxlen=capacity)

    def add(self, rr_ms: float) -> bool:
        """Append *rr_ms*; return ``False`` when it was out of range."""
        if not np.isfinite(rr_ms) or not (self.min_ms <= rr_ms <= self.max_ms):
            return False
        self._intervals.append(float(rr_ms))
        return True

    def values(self) -> Tuple[float, ...]:
        return tuple(self._intervals)

    def last(self, n: int) -> Tuple[float, ...]:
        if n <= 0:
            return ()
        return tuple(self._intervals)[-n:]

    def mean(self) -> float:
        """Mean interval in ms, 0.0 when empty."""
        if not self._intervals:
            return 0.0
        return float(np.mean(self._intervals))

    def clear(self) -> None:
        self._intervals.clear()

    @property
    def capacity(self) -> int:
        return self._intervals.maxlen or 0

    def __len__(self) -> int:
        return len(self._intervals)

    def __iter__(self) -> Iterator[float]:
        return iter(tuple(self._intervals))


# ---------------------------------------------------------------------------
# Quality / presence
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class QualityScore:
    """
    Overall signal quality (0 – 100) with its named subscores (0 – 1).

    ``periodicity`` is the spectral-peak prominence term and ``stability``
    the RR-regularity term.
    """

    total: float = 0.0
    amplitude: float = 0.0
    snr: float = 0.0
    periodicity: float = 0.0
    stability: float = 0.0
    ml: Optional[float] = None

    @classmethod
    def zero(cls) -> "QualityScore":
        return cls()

    def as_dict(self) -> Dict[str, float]:
        out = {
            "total": self.total,
            "amplitude": self.amplitude,
            "snr": self.snr,
            "periodicity": self.periodicity,
            "stability": self.stability,
        }
        if self.ml is not None:
            out["ml"] = self.ml
        return out


class PresenceState(Enum):
    NO_FINGER = 0
    POSSIBLE = 1
    DETECTED = 2
    STABLE = 3

    @property
    def finger_detected(self) -> bool:
        return self in (PresenceState.DETECTED, PresenceState.STABLE)

    def upgraded(self) -> "PresenceState":
        return PresenceState(min(self.value + 1, PresenceState.STABLE.value))

    def downgraded(self) -> "PresenceState":
        return PresenceState(max(self.value - 1, PresenceState.NO_FINGER.value))


@dataclass(frozen=True)
class PresenceStatus:
    state: PresenceState = PresenceState.NO_FINGER
    confidence: float = 0.0
    time_in_state_ms: float = 0.0

    @property
    def finger_detected(self) -> bool:
        return self.state.finger_detected


# ---------------------------------------------------------------------------
# Dispatch / channel values
# ---------------------------------------------------------------------------

class Priority(Enum):
    HIGH = 0
    MEDIUM = 1
    LOW = 2


@dataclass(frozen=True)
class AcWindow:
    """
    Immutable snapshot of recent AC values handed to the channels.

    ``end_index`` is the session sample counter of the newest value, which
    lets a channel append only the samples it has not seen yet.
    """

    values: np.ndarray
    dc_level: float
    fps: float
    timestamp_ms: float
    end_index: int

    @classmethod
    def snapshot(
        cls,
        values: Iterable[float],
        dc_level: float,
        fps: float,
        timestamp_ms: float,
        end_index: int,
    ) -> "AcWindow":
        arr = np.array(list(values), dtype=np.float64)
        arr.setflags(write=False)
        return cls(
            values=arr,
            dc_level=float(dc_level),
            fps=float(fps),
            timestamp_ms=float(timestamp_ms),
            end_index=int(end_index),
        )

    def __len__(self) -> int:
        return len(self.values)


@dataclass(frozen=True)
class ChannelResult:
    """
    A confidence-gated channel estimate.

    Channels return ``None`` instead of a result when they have no estimate;
    a result whose value is zero is a confident zero.
    """

    channel: str
    value: Any
    confidence: float
    quality: Dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class VitalSignsSnapshot:
    """Aggregate of the latest channel results, rebuilt every dispatch cycle."""

    timestamp_ms: float = 0.0
    heart_rate: Optional[float] = None
    average_bpm: Optional[float] = None
    heart_rate_variability: Optional[float] = None
    spo2: Optional[float] = None
    pressure: str = PRESSURE_SENTINEL
    arrhythmia_status: Optional[str] = None
    arrhythmia_count: int = 0
    glucose: Optional[float] = None
    lipids: Optional[Dict[str, float]] = None
    hemoglobin: Optional[float] = None
    hydration: Optional[float] = None
    confidence: Dict[str, float] = field(default_factory=dict)
    overall_confidence: float = 0.0

    def as_dict(self) -> Dict[str, Any]:
        return {
            "timestamp_ms": self.timestamp_ms,
            "heart_rate": self.heart_rate,
            "average_bpm": self.average_bpm,
            "heart_rate_variability": self.heart_rate_variability,
            "spo2": self.spo2,
            "pressure": self.pressure,
            "arrhythmia_status": self.arrhythmia_status,
            "arrhythmia_count": self.arrhythmia_count,
            "glucose": self.glucose,
            "lipids": dict(self.lipids) if self.lipids else None,
            "hemoglobin": self.hemoglobin,
            "hydration": self.hydration,
            "confidence": dict(self.confidence),
            "overall_confidence": self.overall_confidence,
        }
