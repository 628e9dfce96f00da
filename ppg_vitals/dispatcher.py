"""
Priority-aware fan-out of AC windows to the channels.

Each tick the monitor classifies its evidence as HIGH / MEDIUM / LOW and
queues an immutable window snapshot.  :meth:`ChannelDispatcher.service`
drains the queues in priority order under per-second budgets; work over
budget stays queued for the next second.  When a queue is full its oldest
job is superseded by the newest one.  Budget seconds are measured on the
sample clock (window timestamps), whether the queues are serviced inline
or from the background thread.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, Mapping, Optional, Sequence, Tuple

from ppg_vitals.channels import AnyChannel
from ppg_vitals.config import DispatcherConfig
from ppg_vitals.hrv import HRVAnalyzer
from ppg_vitals.types import (
    PRESSURE_SENTINEL,
    AcWindow,
    Beat,
    ChannelResult,
    Priority,
    VitalSignsSnapshot,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DispatchJob:
    window: AcWindow
    rr: Tuple[float, ...]
    priority: Priority


class ChannelDispatcher:
    """
    Budgeted channel scheduler and snapshot builder.

    Parameters
    ----------
    channels:
        Channel instances keyed by name.
    config:
        Priority budgets (jobs per second) and queue bounds.
    amplitude_floor, amplitude_good:
        AC range (normalised intensity) below which a tick is LOW, and above
        which a confident beat makes it HIGH.
    """

    def __init__(
        self,
        channels: Mapping[str, AnyChannel],
        config: Optional[DispatcherConfig] = None,
        hrv: Optional[HRVAnalyzer] = None,
        amplitude_floor: float = 0.002,
        amplitude_good: float = 0.02,
    ) -> None:
        self.channels = dict(channels)
        self.config = config or DispatcherConfig()
        self.hrv = hrv or HRVAnalyzer()
        self.amplitude_floor = amplitude_floor
        self.amplitude_good = amplitude_good

        self._lock = threading.RLock()
        self._queues: Dict[Priority, Deque[DispatchJob]] = {
            p: deque(maxlen=self.config.max_pending_per_priority) for p in Priority
        }
        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()
        self._init_state()
        logger.info("Dispatcher ready with channels: %s", ", ".join(self.channels))

    def _init_state(self) -> None:
        self._used: Dict[Priority, int] = {p: 0 for p in Priority}
        self._budget_start: Optional[float] = None
        self._clock_ms: Optional[float] = None
        self._last_rr: Tuple[float, ...] = ()
        self._snapshot = VitalSignsSnapshot()
        self.superseded = 0
        self.failures = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def classify(self, beat: Optional[Beat], amplitude: float) -> Priority:
        """HIGH for a confident beat on a strong signal, MEDIUM for any evidence, else LOW."""
        if (beat is not None and beat.confidence >= self.config.high_confidence
                and amplitude >= self.amplitude_good):
            return Priority.HIGH
        if beat is not None or amplitude >= self.amplitude_floor:
            return Priority.MEDIUM
        return Priority.LOW

    def submit(self, window: AcWindow, rr: Sequence[float], priority: Priority) -> None:
        job = DispatchJob(window=window, rr=tuple(rr), priority=priority)
        with self._lock:
            queue = self._queues[priority]
            if len(queue) == queue.maxlen:
                self.superseded += 1
                logger.debug("%s queue full, superseding oldest job", priority.name)
            queue.append(job)
            if self._clock_ms is None or window.timestamp_ms > self._clock_ms:
                self._clock_ms = window.timestamp_ms

    def service(self, now_ms: float) -> int:
        """
        Run queued jobs within the current second's budgets.

        Returns the number of jobs processed.  The snapshot is rebuilt on
        every call.
        """
        with self._lock:
            start = self._budget_start
            if start is None or now_ms < start or now_ms - start >= 1000.0:
                self._budget_start = now_ms
                self._used = {p: 0 for p in Priority}

            processed = 0
            for priority in Priority:
                budget = self.config.priority_budgets[priority.name.lower()]
                queue = self._queues[priority]
                while queue and self._used[priority] < budget:
                    job = queue.popleft()
                    self._used[priority] += 1
                    self._run(job)
                    processed += 1

            self._snapshot = self._build_snapshot(now_ms)
            return processed

    def snapshot(self) -> VitalSignsSnapshot:
        with self._lock:
            return self._snapshot

    def pending(self) -> Dict[Priority, int]:
        with self._lock:
            return {p: len(q) for p, q in self._queues.items()}

    def reset(self) -> None:
        """Drop queued work and clear every channel (calibrations are kept)."""
        with self._lock:
            for queue in self._queues.values():
                queue.clear()
            for channel in self.channels.values():
                channel.reset()
            self._init_state()

    # ------------------------------------------------------------------
    # Background cadence
    # ------------------------------------------------------------------

    def start(self, interval_s: Optional[float] = None) -> None:
        """Service the queues from a daemon thread every *interval_s* seconds."""
        if self._thread is not None and self._thread.is_alive():
            return
        interval = interval_s if interval_s is not None else self.config.interval_ms / 1000.0
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._loop, args=(interval,), name="channel-dispatcher", daemon=True
        )
        self._thread.start()
        logger.info("Dispatcher thread started (interval %.3f s)", interval)

    def stop(self, timeout: float = 1.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
            logger.info("Dispatcher thread stopped")

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _loop(self, interval: float) -> None:
        while not self._stop.wait(interval):
            with self._lock:
                now = self._clock_ms
            if now is not None:
                self.service(now)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _run(self, job: DispatchJob) -> None:
        self._last_rr = job.rr
        for name, channel in self.channels.items():
            try:
                channel.process(job.window, job.rr)
            except Exception as exc:  # noqa: BLE001 - one channel must not stall the others
                self.failures += 1
                logger.warning("Channel %s failed on window %d: %s",
                               name, job.window.end_index, exc)

    def _build_snapshot(self, now_ms: float) -> VitalSignsSnapshot:
        results: Dict[str, Optional[ChannelResult]] = {
            name: channel.get_result() for name, channel in self.channels.items()
        }

        def value(name: str):
            result = results.get(name)
            return result.value if result is not None else None

        metrics = self.hrv.metrics(self._last_rr)
        average_bpm = 60000.0 / metrics.mean_rr if metrics.valid else None
        arrhythmia = value("arrhythmia")

        emitted = [r.confidence for r in results.values() if r is not None]
        return VitalSignsSnapshot(
            timestamp_ms=now_ms,
            heart_rate=value("heart_rate"),
            average_bpm=average_bpm,
            heart_rate_variability=metrics.rmssd if metrics.valid else None,
            spo2=value("spo2"),
            pressure=value("blood_pressure") or PRESSURE_SENTINEL,
            arrhythmia_status=arrhythmia["status"] if arrhythmia else None,
            arrhythmia_count=arrhythmia["event_count"] if arrhythmia else 0,
            glucose=value("glucose"),
            lipids=value("lipids"),
            hemoglobin=value("hemoglobin"),
            hydration=value("hydration"),
            confidence={name: channel.confidence for name, channel in self.channels.items()},
            overall_confidence=sum(emitted) / len(emitted) if emitted else 0.0,
        )
