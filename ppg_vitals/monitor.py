"""
Monitoring session.

:class:`VitalSignsMonitor` owns one instance of every pipeline component and
runs the per-sample path synchronously::

    Sample → SignalConditioner → PeakDetector → SpectralAnalyzer
           → QualityScorer → PresenceStateMachine

While a finger is detected, an immutable AC window snapshot is handed to the
:class:`~ppg_vitals.dispatcher.ChannelDispatcher` every
``dispatcher.interval_ms`` of sample time, tagged with the highest priority
seen since the previous hand-off.
"""

from __future__ import annotations

import logging
import math
import threading
from collections import deque
from concurrent.futures import Executor
from dataclasses import dataclass
from typing import Deque, Dict, Optional, Sequence

import numpy as np

from ppg_vitals.channels import build_channels
from ppg_vitals.conditioner import SignalConditioner
from ppg_vitals.config import CHANNEL_NAMES, Calibration, MonitorConfig
from ppg_vitals.dispatcher import ChannelDispatcher
from ppg_vitals.exceptions import ConfigurationError
from ppg_vitals.hrv import HRVAnalyzer
from ppg_vitals.peak_detector import PeakDetector, PeakOracle
from ppg_vitals.presence import PresenceStateMachine
from ppg_vitals.quality import QualityScorer
from ppg_vitals.spectral import SpectralAnalyzer, SpectrumResult
from ppg_vitals.types import (
    AcWindow,
    Beat,
    ConditionedSample,
    PresenceStatus,
    Priority,
    QualityScore,
    Sample,
    VitalSignsSnapshot,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TickResult:
    """Everything the per-sample path produced for one sample."""

    conditioned: ConditionedSample
    beat: Optional[Beat]
    quality: QualityScore
    presence: PresenceStatus
    spectrum: SpectrumResult
    priority: Priority

    @property
    def finger_detected(self) -> bool:
        return self.presence.finger_detected


class VitalSignsMonitor:
    """
    One PPG monitoring session.

    Parameters
    ----------
    config:
        Session configuration; defaults to :class:`MonitorConfig`.
    oracles:
        Optional peak-confidence oracles blended into beat confidence.
    executor:
        Executor for the oracles (a private single-thread pool per oracle
        when omitted).

    Usage::

        with VitalSignsMonitor() as monitor:
            for sample in source:
                tick = monitor.process_sample(sample)
            print(monitor.snapshot())
    """

    def __init__(
        self,
        config: Optional[MonitorConfig] = None,
        oracles: Sequence[PeakOracle] = (),
        executor: Optional[Executor] = None,
    ) -> None:
        self.config = config or MonitorConfig()
        cfg = self.config
        self._lock = threading.RLock()

        self.conditioner = SignalConditioner(cfg.conditioner)
        self.detector = PeakDetector(cfg.peak_detector, oracles, executor)
        self.hrv = HRVAnalyzer(cfg.hrv)
        self.spectral = SpectralAnalyzer(cfg.fps, cfg.spectral)
        self.quality = QualityScorer(cfg.quality)
        self.presence = PresenceStateMachine(cfg.presence)
        self.channels = build_channels(cfg.channels, cfg.calibration)
        self.dispatcher = ChannelDispatcher(
            self.channels,
            cfg.dispatcher,
            hrv=self.hrv,
            amplitude_floor=cfg.quality.amplitude_floor,
            amplitude_good=cfg.quality.amplitude_good,
        )

        self._filtered: Deque[float] = deque(
            maxlen=max(cfg.spectral.window_size, cfg.quality.window_size)
        )
        self._ac: Deque[float] = deque(maxlen=cfg.dispatcher.window_size)
        self._init_session()

        if not oracles:
            logger.info("No peak-confidence oracle configured; using local-maximum detection only.")
        logger.info("Monitor created (fps=%.1f, %d channels)", cfg.fps, len(self.channels))

    def _init_session(self) -> None:
        self._filtered.clear()
        self._ac.clear()
        self._index = 0
        self._next_dispatch_ms: Optional[float] = None
        self._pending_priority: Optional[Priority] = None

    # ------------------------------------------------------------------
    # Per-sample path
    # ------------------------------------------------------------------

    def process_sample(self, sample: Sample) -> TickResult:
        """Run one sample through the real-time path."""
        with self._lock:
            conditioned = self.conditioner.condition(sample)
            beat = self.detector.detect(conditioned)
            self._index += 1
            self._filtered.append(conditioned.filtered_value)
            self._ac.append(conditioned.filtered_value)

            spectrum = self.spectral.spectrum(self._filtered)
            rr = self.detector.rr_history.values()
            quality = self.quality.score(self._filtered, spectrum, rr)
            presence = self.presence.update(conditioned, quality)

            recent = np.asarray(self._filtered, dtype=np.float64)[-self.config.quality.window_size:]
            amplitude = float(np.ptp(recent)) if recent.size else 0.0
            priority = self.dispatcher.classify(beat, amplitude)
            if self._pending_priority is None or priority.value < self._pending_priority.value:
                self._pending_priority = priority

            self._dispatch(conditioned, presence, rr)

            if beat is not None:
                logger.debug("Beat at %.0f ms rr=%s conf=%.2f",
                             beat.timestamp_ms, beat.rr_interval_ms, beat.confidence)
            return TickResult(
                conditioned=conditioned,
                beat=beat,
                quality=quality,
                presence=presence,
                spectrum=spectrum,
                priority=priority,
            )

    def _dispatch(self, conditioned: ConditionedSample, presence: PresenceStatus, rr) -> None:
        now = conditioned.timestamp_ms
        if self._next_dispatch_ms is None:
            self._next_dispatch_ms = now
        if now < self._next_dispatch_ms:
            return
        self._next_dispatch_ms = now + self.config.dispatcher.interval_ms

        if presence.finger_detected and self._pending_priority is not None:
            window = AcWindow.snapshot(
                self._ac,
                dc_level=conditioned.dc_baseline,
                fps=self.config.fps,
                timestamp_ms=now,
                end_index=self._index,
            )
            self.dispatcher.submit(window, rr, self._pending_priority)
        self._pending_priority = None

        if not self.dispatcher.running:
            self.dispatcher.service(now)

    # ------------------------------------------------------------------
    # Outputs
    # ------------------------------------------------------------------

    def snapshot(self) -> VitalSignsSnapshot:
        return self.dispatcher.snapshot()

    @property
    def finger_detected(self) -> bool:
        return self.presence.finger_detected

    @property
    def calibrations(self) -> Dict[str, Calibration]:
        with self._lock:
            return {name: ch.calibration for name, ch in self.channels.items()}

    # ------------------------------------------------------------------
    # Calibration
    # ------------------------------------------------------------------

    def set_calibration(self, channel: str, factor: float = 1.0, offset: float = 0.0) -> Calibration:
        """
        Replace a channel's calibration.

        Raises
        ------
        ConfigurationError
            Unknown or non-calibratable channel, or a factor / offset outside
            the accepted range.
        """
        target = self._calibratable(channel)
        calibration = Calibration(factor=factor, offset=offset)
        with self._lock:
            target.calibration = calibration
        logger.info("Calibration for %s set to factor=%.3f offset=%.3f", channel, factor, offset)
        return calibration

    def calibrate(self, channel: str, reference_value: float) -> Calibration:
        """
        Derive a multiplicative calibration from an external reference reading.

        The factor ``reference / current estimate`` is clamped to the accepted
        range (with a warning) rather than rejected.
        """
        target = self._calibratable(channel)
        with self._lock:
            estimate = target.raw_estimate
        if not estimate or not math.isfinite(estimate[0]) or estimate[0] <= 0.0:
            raise ConfigurationError(
                f"channel '{channel}' has no estimate to calibrate against", field=channel
            )
        if not math.isfinite(reference_value) or reference_value <= 0.0:
            raise ConfigurationError(
                "reference value must be a positive number", field=channel,
                details={"value": reference_value},
            )

        factor = reference_value / estimate[0]
        clamped = Calibration.clamp_factor(factor)
        if clamped != factor:
            logger.warning("Calibration factor %.3f for %s clamped to %.3f", factor, channel, clamped)
        return self.set_calibration(channel, factor=clamped)

    def _calibratable(self, channel: str):
        if channel not in CHANNEL_NAMES:
            raise ConfigurationError(f"unknown channel '{channel}'", field="channel",
                                     details={"value": channel})
        target = self.channels[channel]
        if not target.calibratable:
            raise ConfigurationError(f"channel '{channel}' cannot be calibrated", field=channel)
        return target

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def reset(self) -> None:
        """Clear every component's state atomically; calibrations are kept."""
        with self._lock:
            self.conditioner.reset()
            self.detector.reset()
            self.spectral.reset()
            self.presence.reset()
            self.dispatcher.reset()
            self._init_session()
        logger.info("Monitor reset")

    def close(self) -> None:
        self.dispatcher.stop()
        self.detector.close()

    def __enter__(self) -> "VitalSignsMonitor":
        return self

    def __exit__(self, *_) -> None:
        self.close()
