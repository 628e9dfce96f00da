"""
Wavelet heart-rate estimator.

Used as an independent cross-check of the beat-to-beat rate: the heart-rate
channel compares the RR-derived BPM with the dominant CWT frequency and
raises or lowers its confidence accordingly.

Algorithm
---------
1. Remove the mean of the window.
2. Continuous Wavelet Transform (Morlet) over log-spaced scales that map to
   the heart-rate band.
3. Split the band into ``n_bands`` sub-bands and pick the one with the most
   power.
4. Find the peak frequency inside that sub-band and refine it with
   parabolic interpolation on the scale index.

References
----------
- Addison P.S., "Wavelet transforms and the ECG: a review."
  Physiol. Meas., 2005.
"""

from __future__ import annotations

import logging
from typing import Sequence, Tuple

import numpy as np
import pywt

logger = logging.getLogger(__name__)


class WaveletAnalyzer:
    """
    Stateless CWT-based BPM estimator.

    Parameters
    ----------
    bpm_low, bpm_high:
        Analysed heart-rate band.
    n_bands:
        Number of sub-bands used to locate the dominant rhythm.
    n_scales:
        Number of CWT scales spanning the band.
    wavelet:
        PyWavelets continuous wavelet name.
    min_seconds:
        Minimum window length before an estimate is attempted.
    """

    def __init__(
        self,
        bpm_low: float = 45.0,
        bpm_high: float = 240.0,
        n_bands: int = 6,
        n_scales: int = 64,
        wavelet: str = "morl",
        min_seconds: float = 2.0,
    ) -> None:
        self.bpm_low = bpm_low
        self.bpm_high = bpm_high
        self.n_bands = n_bands
        self.n_scales = n_scales
        self.wavelet = wavelet
        self.min_seconds = min_seconds

        # Ascending frequencies; scale = fc / (f · dt) is computed per fps
        self.frequencies = np.logspace(
            np.log10(bpm_low / 60.0), np.log10(bpm_high / 60.0), n_scales
        )
        self.band_edges = np.linspace(bpm_low / 60.0, bpm_high / 60.0, n_bands + 1)
        self._center_freq = pywt.central_frequency(wavelet)

    def scales(self, fps: float) -> np.ndarray:
        return self._center_freq * fps / self.frequencies

    def estimate(self, window: Sequence[float], fps: float) -> Tuple[float, float]:
        """
        Return ``(bpm, confidence)`` for *window* sampled at *fps*.

        Confidence is the dominant sub-band's share of total band power.
        ``(0.0, 0.0)`` means no estimate (short or flat window).
        """
        signal = np.asarray(window, dtype=np.float64)
        if signal.size < self.min_seconds * fps:
            return 0.0, 0.0
        signal = signal - signal.mean()
        if float(np.ptp(signal)) <= 1e-12:
            return 0.0, 0.0

        coefficients, _ = pywt.cwt(signal, self.scales(fps), self.wavelet,
                                   sampling_period=1.0 / fps)
        # Average power over time for every scale
        profile = np.mean(np.abs(coefficients) ** 2, axis=1)
        freqs = self.frequencies

        band_powers = np.zeros(self.n_bands)
        for i in range(self.n_bands):
            mask = (freqs >= self.band_edges[i]) & (freqs < self.band_edges[i + 1])
            if mask.any():
                band_powers[i] = profile[mask].sum()
        total = float(band_powers.sum())
        if total <= 0.0:
            return 0.0, 0.0

        dominant = int(np.argmax(band_powers))
        mask = (freqs >= self.band_edges[dominant]) & (freqs < self.band_edges[dominant + 1])
        idx = np.flatnonzero(mask)
        peak = int(idx[np.argmax(profile[idx])])

        # Parabolic refinement in log-frequency, the scales are log-spaced
        log_f = np.log(freqs)
        refined = log_f[peak]
        if 0 < peak < len(profile) - 1:
            alpha, beta, gamma = profile[peak - 1], profile[peak], profile[peak + 1]
            denom = alpha - 2.0 * beta + gamma
            if denom != 0:
                p = float(np.clip(0.5 * (alpha - gamma) / denom, -0.5, 0.5))
                refined += p * (log_f[1] - log_f[0])
        bpm = float(np.exp(refined) * 60.0)

        confidence = float(band_powers[dominant] / total)
        # Power piled against the lower edge is usually residual drift
        if bpm < self.bpm_low + 5.0:
            confidence *= 0.5
        if dominant == 0 and confidence > 0.8:
            confidence *= 0.6

        logger.debug("CWT estimate %.1f BPM (confidence %.2f)", bpm, confidence)
        return bpm, confidence
