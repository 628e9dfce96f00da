"""
Finger-on-sensor state machine.

When a finger covers the sensor the conditioned PPG shows a clear pulsatile
component whose range-to-spread ratio sits in a narrow physiological band,
the raw intensity stays away from zero and the quality score rises.  The
machine below turns those per-sample cues into a hysteretic decision::

    NO_FINGER ⇄ POSSIBLE ⇄ DETECTED ⇄ STABLE

Upgrades need sustained evidence (a counter of good samples, minimum time in
state); downgrades are one step at a time and driven by a debounced weak
signal or by the counters decaying.  Counters decay slower than they grow,
so isolated bad samples never flip the state.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Deque, Optional

import numpy as np

from ppg_vitals.config import PresenceConfig
from ppg_vitals.types import ConditionedSample, PresenceState, PresenceStatus, QualityScore

logger = logging.getLogger(__name__)


class PresenceStateMachine:
    """
    Hysteretic finger-presence classifier.

    Parameters
    ----------
    config:
        Thresholds, debounce length and confirmation durations, see
        :class:`~ppg_vitals.config.PresenceConfig`.
    """

    def __init__(self, config: Optional[PresenceConfig] = None) -> None:
        self.config = config or PresenceConfig()
        self._window: Deque[float] = deque(maxlen=self.config.window_size)
        self._init_state()

    def _init_state(self) -> None:
        self._state = PresenceState.NO_FINGER
        self._state_since: Optional[float] = None
        self._last_ts: Optional[float] = None
        self._weak_streak = 0
        self._valid = 0.0
        self._high_ms = 0.0
        self._status = PresenceStatus()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def update(self, sample: ConditionedSample, quality: QualityScore) -> PresenceStatus:
        """Evaluate one tick and return the (possibly new) presence status."""
        cfg = self.config
        now = sample.timestamp_ms
        dt = 0.0 if self._last_ts is None else max(0.0, now - self._last_ts)
        self._last_ts = now
        if self._state_since is None:
            self._state_since = now

        self._window.append(sample.filtered_value)
        window = np.asarray(self._window, dtype=np.float64)
        amplitude = float(np.ptp(window)) if window.size else 0.0

        weak_sample = amplitude < cfg.weak_amplitude or sample.raw_value < cfg.min_raw_value
        self._weak_streak = self._weak_streak + 1 if weak_sample else 0
        weak = self._weak_streak >= cfg.weak_debounce

        stable = self._is_stable(window, amplitude)
        q = quality.total
        good = not weak_sample and stable and q >= cfg.valid_quality

        if good:
            self._valid = min(cfg.valid_cap, self._valid + cfg.valid_increment)
        else:
            self._valid = max(0.0, self._valid - cfg.valid_decrement)

        if self._state.finger_detected:
            if good and q >= cfg.stable_quality:
                self._high_ms = min(2.0 * cfg.stable_duration_ms, self._high_ms + dt)
            else:
                self._high_ms = max(0.0, self._high_ms - 0.5 * dt)

        self._transition(weak, weak_sample, q, now)

        confidence = 0.5 * min(1.0, self._valid / cfg.valid_threshold) + 0.5 * min(1.0, q / 100.0)
        if self._state is PresenceState.NO_FINGER:
            confidence = min(confidence, 0.25)
        self._status = PresenceStatus(
            state=self._state,
            confidence=float(max(0.0, confidence)),
            time_in_state_ms=now - self._state_since,
        )
        return self._status

    @property
    def state(self) -> PresenceState:
        return self._state

    @property
    def status(self) -> PresenceStatus:
        return self._status

    @property
    def finger_detected(self) -> bool:
        return self._state.finger_detected

    @property
    def valid_count(self) -> float:
        return self._valid

    def reset(self) -> None:
        self._window.clear()
        self._init_state()

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _is_stable(self, window: np.ndarray, amplitude: float) -> bool:
        cfg = self.config
        if window.size < 3:
            return False
        std = float(window.std())
        if std <= cfg.epsilon:
            return False
        ratio = amplitude / std
        return cfg.stable_ratio_min <= ratio <= cfg.stable_ratio_max

    def _transition(self, weak: bool, weak_sample: bool, quality: float, now: float) -> None:
        cfg = self.config
        state = self._state
        time_in_state = now - (self._state_since if self._state_since is not None else now)
        target = state

        if weak:
            target = state.downgraded()
        elif state is PresenceState.NO_FINGER:
            if quality >= cfg.possible_quality and not weak_sample:
                target = PresenceState.POSSIBLE
        elif state is PresenceState.POSSIBLE:
            if self._valid >= cfg.valid_threshold and time_in_state >= cfg.confirm_duration_ms:
                target = PresenceState.DETECTED
            elif quality < cfg.possible_quality and self._valid <= 0.0:
                target = PresenceState.NO_FINGER
        elif state is PresenceState.DETECTED:
            if self._high_ms >= cfg.stable_duration_ms:
                target = PresenceState.STABLE
            elif self._valid < cfg.valid_threshold * cfg.release_ratio:
                target = PresenceState.POSSIBLE
        elif state is PresenceState.STABLE:
            if (self._high_ms < cfg.stable_duration_ms * cfg.release_ratio
                    or self._valid < cfg.valid_threshold * cfg.release_ratio):
                target = PresenceState.DETECTED

        if target is state:
            return
        logger.info(
            "Presence %s -> %s (quality=%.0f valid=%.1f)",
            state.name, target.name, quality, self._valid,
        )
        if target is PresenceState.NO_FINGER:
            self._valid = 0.0
            self._high_ms = 0.0
        elif target is PresenceState.DETECTED and state is PresenceState.POSSIBLE:
            self._high_ms = 0.0
        self._state = target
        self._state_since = now
