"""
Arrhythmia channel.

Consumes only the RR history.  HRV statistics are classified with threshold
rules into one of :data:`STATUSES`; every change to a non-normal status
counts as an arrhythmia event.
"""

from __future__ import annotations

import logging
from typing import Any, ClassVar, Dict, Optional, Sequence, Tuple

from ppg_vitals.config import Calibration, ChannelConfig
from ppg_vitals.hrv import HRVAnalyzer, HRVMetrics
from ppg_vitals.types import AcWindow, ChannelResult

logger = logging.getLogger(__name__)

NORMAL = "normal"
POSSIBLE_ARRHYTHMIA = "possible_arrhythmia"
TACHYCARDIA = "tachycardia"
BRADYCARDIA = "bradycardia"
IRREGULAR = "irregular"
STATUSES = (NORMAL, POSSIBLE_ARRHYTHMIA, TACHYCARDIA, BRADYCARDIA, IRREGULAR)


class ArrhythmiaChannel:
    """
    Rule-based rhythm classifier.

    Parameters
    ----------
    config:
        ``buffer_size`` is the number of RR intervals considered.
    hrv:
        Analyzer used for RMSSD / SDNN / pNN50.
    """

    name: ClassVar[str] = "arrhythmia"
    calibratable: ClassVar[bool] = False

    min_rr_intervals = 10
    min_bpm = 50.0
    max_bpm = 110.0
    rmssd_low = 15.0
    rmssd_high = 100.0
    sdnn_low = 30.0
    pnn50_high = 0.2

    def __init__(
        self,
        config: Optional[ChannelConfig] = None,
        calibration: Optional[Calibration] = None,
        hrv: Optional[HRVAnalyzer] = None,
    ) -> None:
        self.config = config or self.default_config()
        self.calibration = calibration or Calibration()
        self.hrv = hrv or HRVAnalyzer()
        self.reset()

    @classmethod
    def default_config(cls) -> ChannelConfig:
        return ChannelConfig(buffer_size=50, min_confidence=0.6)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def process(self, window: Optional[AcWindow] = None, rr: Optional[Sequence[float]] = None) -> None:
        intervals = tuple(rr or ())[-self.config.buffer_size:]
        if not intervals:
            self._confidence = 0.0
            return
        self._intervals = intervals
        metrics = self.hrv.metrics(intervals)
        self._metrics = metrics
        if len(intervals) < self.min_rr_intervals or not metrics.valid:
            self._confidence = 0.1
            self._status = NORMAL
            return

        status, factor = self.classify(metrics)
        if status != NORMAL and status != self._status:
            self._event_count += 1
            logger.info("Arrhythmia event #%d: %s", self._event_count, status)
        self._status = status

        count_score = min(1.0, len(intervals) / (self.min_rr_intervals * 2.0))
        self._confidence = max(0.0, min(1.0, count_score * factor * 0.9))

    def classify(self, metrics: HRVMetrics) -> Tuple[str, float]:
        """Return ``(status, confidence factor)`` for *metrics*."""
        bpm = 60000.0 / metrics.mean_rr if metrics.mean_rr > 0 else 0.0
        if bpm < self.min_bpm:
            return BRADYCARDIA, 0.8
        if bpm > self.max_bpm:
            return TACHYCARDIA, 0.8
        if metrics.rmssd < self.rmssd_low or metrics.rmssd > self.rmssd_high:
            return POSSIBLE_ARRHYTHMIA, 0.7
        if metrics.sdnn < self.sdnn_low:
            return POSSIBLE_ARRHYTHMIA, 0.6
        if metrics.pnn50 > self.pnn50_high:
            return IRREGULAR, 0.9
        return NORMAL, 1.0

    def get_result(self) -> Optional[ChannelResult]:
        if self._confidence < self.config.min_confidence:
            return None
        return ChannelResult(
            channel=self.name,
            value={
                "status": self._status,
                "rmssd": self._metrics.rmssd,
                "sdnn": self._metrics.sdnn,
                "pnn50": self._metrics.pnn50,
                "event_count": self._event_count,
            },
            confidence=self._confidence,
            quality=self.quality_metrics(),
        )

    def quality_metrics(self) -> Dict[str, float]:
        mean_rr = self._metrics.mean_rr
        consistency = 1.0 - min(1.0, self._metrics.sdnn / mean_rr) if mean_rr > 0 else 0.0
        return {
            "confidence": self._confidence,
            "rhythm_consistency": consistency,
            "rr_count": float(len(self._intervals)),
        }

    @property
    def status(self) -> str:
        return self._status

    @property
    def event_count(self) -> int:
        return self._event_count

    @property
    def confidence(self) -> float:
        return self._confidence

    @property
    def raw_estimate(self) -> Any:
        return None

    def reset(self) -> None:
        self._intervals: Tuple[float, ...] = ()
        self._metrics = HRVMetrics()
        self._status = NORMAL
        self._confidence = 0.0
        self._event_count = 0
