"""
Time-domain heart-rate variability from an RR-interval series.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

import numpy as np

from ppg_vitals.config import HRVConfig


@dataclass(frozen=True)
class HRVMetrics:
    """
    RMSSD / SDNN in ms and pNNx as a fraction (0 – 1).

    ``valid`` is ``False`` when fewer than the required number of NN
    intervals survived filtering; every metric is then 0.
    """

    rmssd: float = 0.0
    sdnn: float = 0.0
    pnnx: float = 0.0
    nn_intervals: Tuple[float, ...] = ()
    mean_rr: float = 0.0
    valid: bool = False

    @property
    def pnn50(self) -> float:
        return self.pnnx


class HRVAnalyzer:
    """Stateless: every call computes metrics from the intervals passed in."""

    def __init__(self, config: Optional[HRVConfig] = None) -> None:
        self.config = config or HRVConfig()

    def nn_intervals(self, rr_intervals: Iterable[float]) -> np.ndarray:
        cfg = self.config
        rr = np.asarray([float(v) for v in rr_intervals], dtype=np.float64)
        if rr.size == 0:
            return rr
        mask = np.isfinite(rr) & (rr >= cfg.nn_min_ms) & (rr <= cfg.nn_max_ms)
        return rr[mask]

    def metrics(self, rr_intervals: Iterable[float]) -> HRVMetrics:
        nn = self.nn_intervals(rr_intervals)
        if nn.size < self.config.min_intervals:
            return HRVMetrics(nn_intervals=tuple(nn.tolist()))

        diffs = np.diff(nn)
        rmssd = float(np.sqrt(np.mean(diffs ** 2)))
        # Population SD, as used on wearables with short windows
        sdnn = float(np.std(nn))
        pnnx = float(np.count_nonzero(np.abs(diffs) > self.config.pnn_threshold_ms)) / diffs.size
        return HRVMetrics(
            rmssd=rmssd,
            sdnn=sdnn,
            pnnx=pnnx,
            nn_intervals=tuple(nn.tolist()),
            mean_rr=float(nn.mean()),
            valid=True,
        )
