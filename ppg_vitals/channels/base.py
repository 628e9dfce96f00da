"""
Common machinery for the derived-vitals channels.

A channel owns a bounded ring of AC samples fed from immutable
:class:`~ppg_vitals.types.AcWindow` snapshots, computes a raw estimate with
its own fixed model, smooths it with a confidence-weighted EMA and applies
its calibration before clamping to the physiological range.  Results are
withheld (``None``) below the channel's minimum confidence.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import deque
from typing import Any, ClassVar, Deque, Dict, NamedTuple, Optional, Sequence, Tuple

import numpy as np

from ppg_vitals.config import Calibration, ChannelConfig
from ppg_vitals.exceptions import InsufficientDataError
from ppg_vitals.types import AcWindow, ChannelResult

logger = logging.getLogger(__name__)


class Estimate(NamedTuple):
    values: Tuple[float, ...]
    confidence: float
    metrics: Dict[str, float]


def signal_stability(values: np.ndarray, scale: float = 0.1) -> float:
    """``1 − std / scale`` clamped to 0 – 1."""
    if values.size == 0:
        return 0.0
    return float(1.0 - min(1.0, float(values.std()) / scale))


def unit(value: float) -> float:
    return float(min(1.0, max(0.0, value)))


class Channel(ABC):
    """
    Base class of every AC-buffer channel.

    Subclasses set the class attributes and implement :meth:`_estimate` and
    :meth:`_format`.
    """

    name: ClassVar[str] = ""
    default_buffer_size: ClassVar[int] = 150
    default_min_confidence: ClassVar[float] = 0.5
    # Fraction of the buffer that must be filled before estimating
    min_fill: ClassVar[float] = 0.5
    # One (low, high) pair per output component
    bounds: ClassVar[Tuple[Tuple[float, float], ...]] = ()
    smoothing_rate: ClassVar[float] = 0.3
    calibratable: ClassVar[bool] = True

    def __init__(
        self,
        config: Optional[ChannelConfig] = None,
        calibration: Optional[Calibration] = None,
    ) -> None:
        self.config = config or self.default_config()
        self.calibration = calibration or Calibration()
        self._buffer: Deque[float] = deque(maxlen=self.config.buffer_size)
        self._clear()

    @classmethod
    def default_config(cls) -> ChannelConfig:
        return ChannelConfig(
            buffer_size=cls.default_buffer_size,
            min_confidence=cls.default_min_confidence,
        )

    def _clear(self) -> None:
        self._buffer.clear()
        self._last_index: Optional[int] = None
        self._smoothed: Optional[Tuple[float, ...]] = None
        self._confidence = 0.0
        self._metrics: Dict[str, float] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def process(self, window: AcWindow, rr: Optional[Sequence[float]] = None) -> None:
        """Ingest the unseen tail of *window* and refresh the estimate."""
        if not self._ingest(window):
            return

        values = np.asarray(self._buffer, dtype=np.float64)
        if len(values) < self.min_fill * self.config.buffer_size:
            self._confidence = 0.0
            return

        try:
            estimate = self._estimate(values, window, tuple(rr or ()))
        except InsufficientDataError as exc:
            logger.debug("%s: %s (%s)", self.name, exc.message, exc.details)
            self._confidence = 0.0
            return

        self._confidence = unit(estimate.confidence)
        self._metrics = dict(estimate.metrics)
        self._smooth(estimate.values)

    def get_result(self) -> Optional[ChannelResult]:
        if self._smoothed is None or self._confidence < self.config.min_confidence:
            return None
        return ChannelResult(
            channel=self.name,
            value=self._format(self._output(self._smoothed)),
            confidence=self._confidence,
            quality=self.quality_metrics(),
        )

    def quality_metrics(self) -> Dict[str, float]:
        values = np.asarray(self._buffer, dtype=np.float64)
        metrics = {
            "confidence": self._confidence,
            "signal_stability": signal_stability(values),
            "buffer_fill": len(values) / float(self.config.buffer_size),
        }
        metrics.update(self._metrics)
        return metrics

    @property
    def confidence(self) -> float:
        return self._confidence

    @property
    def raw_estimate(self) -> Optional[Tuple[float, ...]]:
        """Smoothed estimate before calibration and clamping."""
        return self._smoothed

    def reset(self) -> None:
        """Clear buffers and estimates; calibration is kept."""
        self._clear()

    # ------------------------------------------------------------------
    # Subclass hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def _estimate(
        self, values: np.ndarray, window: AcWindow, rr: Tuple[float, ...]
    ) -> Estimate:
        """Raw estimate of the buffered signal; may raise InsufficientDataError."""

    @abstractmethod
    def _format(self, values: Tuple[float, ...]) -> Any:
        """Public representation of the calibrated, clamped values."""

    def _finalise(self, values: Tuple[float, ...]) -> Tuple[float, ...]:
        return tuple(
            float(min(high, max(low, v))) for v, (low, high) in zip(values, self.bounds)
        )

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _ingest(self, window: AcWindow) -> bool:
        if self._last_index is None:
            fresh = len(window)
        else:
            fresh = window.end_index - self._last_index
        if fresh <= 0:
            logger.debug("%s: skipping stale window ending at %d", self.name, window.end_index)
            return False
        take = min(fresh, len(window))
        self._buffer.extend(window.values[len(window) - take:].tolist())
        self._last_index = window.end_index
        return True

    def _smooth(self, values: Tuple[float, ...]) -> None:
        if self._smoothed is None:
            self._smoothed = tuple(float(v) for v in values)
            return
        alpha = self.smoothing_rate * self._confidence
        self._smoothed = tuple(
            alpha * float(new) + (1.0 - alpha) * old
            for new, old in zip(values, self._smoothed)
        )

    def _output(self, smoothed: Tuple[float, ...]) -> Tuple[float, ...]:
        calibrated = tuple(self.calibration.apply(v) for v in smoothed)
        return self._finalise(calibrated)
