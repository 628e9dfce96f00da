"""
Signal-quality score (0 – 100).

The score is a weighted sum of four adequacy terms, each mapped to 0 – 1:

* amplitude    – peak-to-peak range of the filtered window between a floor
                 and a "good" level;
* snr          – spectral SNR relative to a "good" dB value;
* periodicity  – spectral peak prominence (peak / mean power);
* stability    – RR regularity, ``1 − coefficient of variation``;

plus an optional ML-confidence term.  Weights are renormalised over the
terms that are present.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

import numpy as np

from ppg_vitals.config import QualityConfig
from ppg_vitals.spectral import SpectrumResult
from ppg_vitals.types import QualityScore

logger = logging.getLogger(__name__)


def _unit(value: float) -> float:
    return float(min(1.0, max(0.0, value)))


def rr_regularity(rr: Sequence[float]) -> float:
    """``1 − CV`` of *rr* clamped to 0 – 1; 0 with fewer than two intervals."""
    values = np.asarray(rr, dtype=np.float64)
    if values.size < 2:
        return 0.0
    mean = float(values.mean())
    if mean <= 0.0:
        return 0.0
    return _unit(1.0 - float(values.std()) / mean)


class QualityScorer:
    """Combines amplitude, spectral and rhythm evidence into one score."""

    def __init__(self, config: Optional[QualityConfig] = None) -> None:
        self.config = config or QualityConfig()

    def score(
        self,
        buffer: Sequence[float],
        spectrum: Optional[SpectrumResult] = None,
        rr: Sequence[float] = (),
        ml_confidence: Optional[float] = None,
    ) -> QualityScore:
        cfg = self.config
        values = np.asarray(buffer, dtype=np.float64)[-cfg.window_size:]
        if values.size < cfg.min_samples:
            return QualityScore.zero()

        amplitude = float(np.ptp(values))
        if amplitude <= 1e-9:
            return QualityScore.zero()

        amp_term = _unit((amplitude - cfg.amplitude_floor) / (cfg.amplitude_good - cfg.amplitude_floor))
        snr_term = 0.0
        periodicity = 0.0
        if spectrum is not None and not spectrum.empty:
            snr_term = _unit(spectrum.snr_db / cfg.snr_good_db)
            periodicity = _unit((spectrum.prominence - 1.0) / (cfg.prominence_good - 1.0))
        stability = rr_regularity(rr)

        terms = [
            (cfg.amplitude_weight, amp_term),
            (cfg.snr_weight, snr_term),
            (cfg.periodicity_weight, periodicity),
            (cfg.stability_weight, stability),
        ]
        ml = None
        if ml_confidence is not None and np.isfinite(ml_confidence):
            ml = _unit(ml_confidence)
            terms.append((cfg.ml_weight, ml))

        total_weight = sum(w for w, _ in terms)
        total = 100.0 * sum(w * v for w, v in terms) / total_weight
        return QualityScore(
            total=float(total),
            amplitude=amp_term,
            snr=snr_term,
            periodicity=periodicity,
            stability=stability,
            ml=ml,
        )
