"""
PPG signal conditioner.

Algorithm
---------
1. Track the DC baseline with dual-rate exponential smoothing: a slow
   coefficient while the raw value stays near the baseline (so the pulsatile
   component is not absorbed) and a fast one when it jumps away (so drift
   and finger re-positioning are followed quickly).
2. AC = raw − baseline.
3. Run the AC value through a three stage cascade:

   a. causal median filter (impulse / single-frame outlier rejection);
   b. adaptive scalar Kalman filter whose process noise follows the recent
      trend energy and whose measurement noise follows the recent
      second-difference variance (white-noise estimate);
   c. triangular-weighted moving average for residual smoothing.

Each stage passes values through unchanged until it has a full window.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Deque, Optional

import numpy as np

from ppg_vitals.config import ConditionerConfig
from ppg_vitals.types import ConditionedSample, Sample

logger = logging.getLogger(__name__)


def triangular_weights(window: int) -> np.ndarray:
    """Normalised weights ``1, 2, …, peak, …, 2, 1`` for an odd *window*."""
    w = np.array([min(i + 1, window - i) for i in range(window)], dtype=np.float64)
    return w / w.sum()


class SignalConditioner:
    """
    Streaming DC-removal and noise filter for one PPG channel.

    Parameters
    ----------
    config:
        Filter coefficients and stage windows.  Defaults follow
        :class:`~ppg_vitals.config.ConditionerConfig`.
    """

    def __init__(self, config: Optional[ConditionerConfig] = None) -> None:
        self.config = config or ConditionerConfig()
        cfg = self.config

        self._weights = triangular_weights(cfg.smoothing_window)
        self._median_buf: Deque[float] = deque(maxlen=cfg.median_window)
        self._kalman_buf: Deque[float] = deque(maxlen=cfg.kalman_window)
        self._smooth_buf: Deque[float] = deque(maxlen=cfg.smoothing_window)

        self._baseline: Optional[float] = None
        self._kf_x: float = 0.0
        self._kf_p: float = 1.0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def condition(self, sample: Sample) -> ConditionedSample:
        """Condition one raw *sample*."""
        raw = float(sample.raw_value)
        baseline = self._update_baseline(raw)
        ac = raw - baseline

        value = self._median(ac)
        value = self._kalman(value)
        value = self._smooth(value)

        return ConditionedSample(
            timestamp_ms=sample.timestamp_ms,
            raw_value=raw,
            ac_value=ac,
            dc_baseline=baseline,
            filtered_value=value,
        )

    @property
    def baseline(self) -> Optional[float]:
        return self._baseline

    @property
    def group_delay(self) -> int:
        """Causal lag (samples) introduced by the windowed stages on smooth input."""
        cfg = self.config
        return (cfg.median_window - 1) // 2 + (cfg.smoothing_window - 1) // 2

    def reset(self) -> None:
        """Forget the baseline and all filter state."""
        self._median_buf.clear()
        self._kalman_buf.clear()
        self._smooth_buf.clear()
        self._baseline = None
        self._kf_x = 0.0
        self._kf_p = 1.0

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _update_baseline(self, raw: float) -> float:
        cfg = self.config
        if self._baseline is None:
            self._baseline = raw
            return raw
        threshold = max(cfg.epsilon, cfg.baseline_threshold_ratio * abs(self._baseline))
        alpha = cfg.fast_alpha if abs(raw - self._baseline) > threshold else cfg.slow_alpha
        self._baseline += alpha * (raw - self._baseline)
        return self._baseline

    def _median(self, value: float) -> float:
        self._median_buf.append(value)
        if len(self._median_buf) < self._median_buf.maxlen:
            return value
        return float(np.median(self._median_buf))

    def _kalman(self, z: float) -> float:
        eps = self.config.epsilon
        self._kalman_buf.append(z)
        if len(self._kalman_buf) < self._kalman_buf.maxlen:
            self._kf_x = z
            self._kf_p = 1.0
            return z

        hist = np.asarray(self._kalman_buf, dtype=np.float64)
        # Second differences of a smooth waveform are tiny; for white noise
        # var(d2) = 6·σ², for the first difference E[d1²] = 2·σ² + trend².
        r = max(eps, float(np.var(np.diff(hist, n=2))) / 6.0)
        q = max(eps, float(np.mean(np.diff(hist) ** 2)) - 2.0 * r)

        p_pred = self._kf_p + q
        gain = p_pred / (p_pred + r)
        self._kf_x += gain * (z - self._kf_x)
        self._kf_p = (1.0 - gain) * p_pred
        return self._kf_x

    def _smooth(self, value: float) -> float:
        self._smooth_buf.append(value)
        if len(self._smooth_buf) < self._smooth_buf.maxlen:
            return value
        return float(np.dot(self._weights, np.asarray(self._smooth_buf)))
