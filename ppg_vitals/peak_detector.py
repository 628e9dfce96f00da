"""
Beat detector.

A beat is accepted when the centre sample of a short lookback window is a
local maximum, rises above an adaptive ``mean + k·std`` threshold of the
recent waveform, and respects the minimum inter-beat distance.  The RR
interval to the previous beat is stored in a bounded :class:`RRHistory`.

Optional peak-confidence oracles (e.g. a neural model) can be attached.  They
are called fire-and-forget on an executor and their latest score is blended
into the *next* candidate: the oracle may suppress a local maximum or shift
its confidence, but it can never produce a beat on its own.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from functools import partial
from typing import Deque, List, Optional, Protocol, Sequence, Tuple, runtime_checkable

import numpy as np

from ppg_vitals.config import PeakDetectorConfig
from ppg_vitals.exceptions import OracleError
from ppg_vitals.types import Beat, ConditionedSample, RRHistory

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Oracle capability
# ---------------------------------------------------------------------------

@runtime_checkable
class PeakOracle(Protocol):
    """
    Optional scorer: probability (0 – 1) that *window* ends on a true peak.

    Implementations must be pure and side-effect free.
    """

    def predict(self, window: np.ndarray) -> float:
        ...


class OracleRunner:
    """
    Runs one :class:`PeakOracle` off the real-time path.

    Only one call is in flight at a time; new windows are skipped while the
    oracle is busy.  Results carry the generation they were submitted in, and
    :meth:`cancel` bumps the generation so late results from a previous
    session are ignored.
    """

    def __init__(self, oracle: PeakOracle, executor: Optional[Executor] = None) -> None:
        self.oracle = oracle
        self.name = type(oracle).__name__
        self._executor = executor
        self._owns_executor = executor is None
        self._lock = threading.Lock()
        self._generation = 0
        self._pending: Optional[Future] = None
        self._score: Optional[float] = None
        self.failures = 0

    def submit(self, window: np.ndarray) -> bool:
        """Queue *window* for scoring; return ``False`` if the oracle is busy."""
        with self._lock:
            if self._pending is not None and not self._pending.done():
                return False
            generation = self._generation
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=1, thread_name_prefix=f"oracle-{self.name}"
                )
            executor = self._executor
        future = executor.submit(self.oracle.predict, window)
        with self._lock:
            if generation == self._generation:
                self._pending = future
        future.add_done_callback(partial(self._on_done, generation))
        return True

    def latest(self) -> Optional[float]:
        with self._lock:
            return self._score

    def cancel(self) -> None:
        """Drop the current score and ignore any in-flight result."""
        with self._lock:
            self._generation += 1
            self._score = None
            if self._pending is not None:
                self._pending.cancel()
            self._pending = None

    def shutdown(self) -> None:
        self.cancel()
        if self._owns_executor and self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None

    def _on_done(self, generation: int, future: Future) -> None:
        if future.cancelled():
            return
        try:
            score = float(future.result())
            if not np.isfinite(score):
                raise OracleError(f"non-finite score {score!r}", oracle=self.name)
        except Exception as exc:  # noqa: BLE001 - oracle failures never reach the caller
            with self._lock:
                self.failures += 1
                if generation == self._generation:
                    self._score = None
            logger.warning("Peak oracle %s failed, using local-maximum only: %s", self.name, exc)
            return
        with self._lock:
            if generation != self._generation:
                logger.debug("Discarding late result from oracle %s", self.name)
                return
            self._score = min(1.0, max(0.0, score))


# ---------------------------------------------------------------------------
# Detector
# ---------------------------------------------------------------------------

class PeakDetector:
    """
    Adaptive local-maximum beat detector with physiological gating.

    Parameters
    ----------
    config:
        Thresholds and windows, see :class:`~ppg_vitals.config.PeakDetectorConfig`.
    oracles:
        Zero or more optional :class:`PeakOracle` scorers.
    executor:
        Executor used to run the oracles.  Each oracle gets a private
        single-thread pool when omitted.
    """

    def __init__(
        self,
        config: Optional[PeakDetectorConfig] = None,
        oracles: Sequence[PeakOracle] = (),
        executor: Optional[Executor] = None,
    ) -> None:
        self.config = config or PeakDetectorConfig()
        cfg = self.config

        self._values: Deque[float] = deque(maxlen=max(cfg.threshold_window, cfg.oracle_window))
        self._times: Deque[float] = deque(maxlen=self._values.maxlen)
        self.rr_history = RRHistory(capacity=cfg.rr_capacity)
        self._last_beat_ms: Optional[float] = None
        self._runners: List[OracleRunner] = [OracleRunner(o, executor) for o in oracles]
        self.suppressed = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def detect(self, sample: ConditionedSample) -> Optional[Beat]:
        """Feed one conditioned sample; return a :class:`Beat` when one is confirmed."""
        self._values.append(sample.filtered_value)
        self._times.append(sample.timestamp_ms)
        try:
            return self._evaluate()
        finally:
            # Scores computed from this window are used from the next tick on.
            self._feed_oracles()

    @property
    def has_oracle(self) -> bool:
        return bool(self._runners)

    @property
    def oracle_failures(self) -> int:
        return sum(r.failures for r in self._runners)

    @property
    def last_beat_ms(self) -> Optional[float]:
        return self._last_beat_ms

    def reset(self) -> None:
        """Clear buffers and RR history; in-flight oracle results are discarded."""
        self._values.clear()
        self._times.clear()
        self.rr_history.clear()
        self._last_beat_ms = None
        self.suppressed = 0
        for runner in self._runners:
            runner.cancel()

    def close(self) -> None:
        for runner in self._runners:
            runner.shutdown()

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _evaluate(self) -> Optional[Beat]:
        cfg = self.config
        n = len(self._values)
        if n < max(cfg.lookback, cfg.min_samples):
            return None

        values = np.asarray(self._values, dtype=np.float64)
        half = cfg.lookback // 2
        centre = n - 1 - half
        candidate = values[centre]
        # Strictly above the earlier half, not below the later half: one
        # sample is picked on a flat top.
        if not (candidate > values[n - cfg.lookback:centre].max()
                and candidate >= values[centre + 1:].max()):
            return None

        recent = values[-cfg.threshold_window:]
        std = float(recent.std())
        if std < 1e-12:
            return None
        if candidate <= float(recent.mean()) + cfg.threshold_k * std:
            return None

        peak_ms = self._times[centre]
        rr: Optional[float] = None
        if self._last_beat_ms is not None:
            interval = peak_ms - self._last_beat_ms
            if interval < cfg.min_interval_ms:
                return None
            if interval <= cfg.max_interval_ms:
                rr = interval

        confidence = self._rule_confidence(rr)
        confidence, accepted = self._blend_oracles(confidence)
        if not accepted:
            self.suppressed += 1
            logger.debug("Oracle suppressed local maximum at %.0f ms", peak_ms)
            return None

        self._last_beat_ms = peak_ms
        if rr is not None and not self.rr_history.add(rr):
            rr = None
        return Beat(
            timestamp_ms=peak_ms,
            peak_value=float(candidate),
            confidence=confidence,
            rr_interval_ms=rr,
        )

    def _rule_confidence(self, rr: Optional[float]) -> float:
        cfg = self.config
        confidence = cfg.base_confidence
        if rr is None:
            return confidence

        bpm = 60000.0 / rr
        if cfg.plausible_bpm_low <= bpm <= cfg.plausible_bpm_high:
            confidence += cfg.confidence_step
        else:
            confidence -= cfg.confidence_step

        recent = np.array(self.rr_history.last(2) + (rr,), dtype=np.float64)
        if len(recent) >= 3:
            cv = float(recent.std() / max(recent.mean(), 1e-9))
            if cv < cfg.rr_cv_low:
                confidence += cfg.confidence_step
            elif cv > cfg.rr_cv_high:
                confidence -= cfg.confidence_step
        return min(1.0, max(0.0, confidence))

    def _blend_oracles(self, confidence: float) -> Tuple[float, bool]:
        scores = [s for s in (r.latest() for r in self._runners) if s is not None]
        if not scores:
            return confidence, True
        cfg = self.config
        score = float(np.mean(scores))
        if score < cfg.oracle_suppress_below:
            return confidence, False
        blended = (1.0 - cfg.oracle_weight) * confidence + cfg.oracle_weight * score
        return min(1.0, max(0.0, blended)), True

    def _feed_oracles(self) -> None:
        if not self._runners or len(self._values) < self.config.oracle_window:
            return
        window = np.array(list(self._values)[-self.config.oracle_window:], dtype=np.float64)
        window.setflags(write=False)
        for runner in self._runners:
            runner.submit(window)
