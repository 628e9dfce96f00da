"""
Band-limited spectrum of the conditioned PPG.

Algorithm
---------
1. Take the most recent ``window_size`` filtered samples.
2. Apply a Hamming window (``scipy.signal.windows.hamming``) and remove the
   weighted mean.
3. Evaluate a direct DFT only on the heart-rate band (0.5 – 4 Hz by default,
   30 – 240 BPM), on a grid ``oversample`` times denser than the natural
   ``fs / N`` bin spacing.  Magnitude per bin is ``|X| / N``.
4. Find the dominant bin and refine its frequency with parabolic
   interpolation.
5. SNR (dB) compares the peak power with the mean power of the bins outside
   the peak's main lobe.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Optional, Sequence, Tuple

import numpy as np
from scipy.signal import windows

from ppg_vitals.config import SpectralConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SpectrumResult:
    """
    Output of :meth:`SpectralAnalyzer.spectrum`.

    ``stale`` is set when the result was carried over from a previous call
    because the window held too few samples.
    """

    frequencies: np.ndarray = field(default_factory=lambda: np.zeros(0))
    power_spectrum: np.ndarray = field(default_factory=lambda: np.zeros(0))
    dominant_frequency: float = 0.0
    snr_db: float = 0.0
    top_peaks: Tuple[Tuple[float, float], ...] = ()
    stale: bool = False

    @property
    def empty(self) -> bool:
        return self.power_spectrum.size == 0

    @property
    def dominant_bpm(self) -> float:
        return self.dominant_frequency * 60.0

    @property
    def prominence(self) -> float:
        """Peak power divided by mean band power (1.0 for a flat spectrum)."""
        if self.empty:
            return 0.0
        mean_power = float(self.power_spectrum.mean())
        if mean_power <= 0.0:
            return 0.0
        return float(self.power_spectrum.max()) / mean_power


class SpectralAnalyzer:
    """
    Windowed DFT over the physiological heart-rate band.

    Parameters
    ----------
    fps:
        Sampling rate of the incoming window (Hz).
    config:
        Window size, band edges, grid density and ``top_k``.
    """

    def __init__(self, fps: float = 30.0, config: Optional[SpectralConfig] = None) -> None:
        self.fps = float(fps)
        self.config = config or SpectralConfig()
        cfg = self.config

        n = cfg.window_size
        self._window = windows.hamming(n, sym=True)
        step = self.fps / (n * cfg.oversample)
        grid = np.arange(cfg.min_hz, cfg.max_hz + step, step)
        self.frequencies = grid[grid <= cfg.max_hz + 1e-9]
        # Basis e^{-j 2π f t} for every grid frequency, rows = frequencies
        t = np.arange(n) / self.fps
        self._basis = np.exp(-2j * np.pi * np.outer(self.frequencies, t))
        self._step = step
        self._lobe_hz = 2.0 * self.fps / n

        self._last: Optional[SpectrumResult] = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def spectrum(self, window: Sequence[float]) -> SpectrumResult:
        """Return the spectrum of the newest ``window_size`` samples of *window*."""
        cfg = self.config
        values = np.asarray(window, dtype=np.float64)
        if values.size < cfg.window_size:
            if self._last is None:
                return SpectrumResult(stale=True)
            return replace(self._last, stale=True)

        values = values[-cfg.window_size:]
        weighted = values * self._window
        weighted = weighted - self._window * (weighted.sum() / self._window.sum())

        magnitude = np.abs(self._basis @ weighted) / cfg.window_size
        power = magnitude ** 2

        result = self._analyse(power)
        self._last = result
        return result

    @property
    def last(self) -> Optional[SpectrumResult]:
        return self._last

    def reset(self) -> None:
        self._last = None

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _analyse(self, power: np.ndarray) -> SpectrumResult:
        cfg = self.config
        freqs = self.frequencies
        peak_idx = int(np.argmax(power))
        peak_power = float(power[peak_idx])

        if peak_power <= cfg.epsilon:
            # Flat / degenerate window: keep the grid, report nothing
            return SpectrumResult(frequencies=freqs, power_spectrum=power)

        dominant = float(freqs[peak_idx])
        if 0 < peak_idx < len(power) - 1:
            alpha, beta, gamma = power[peak_idx - 1], power[peak_idx], power[peak_idx + 1]
            denom = alpha - 2.0 * beta + gamma
            if abs(denom) > cfg.epsilon:
                p = 0.5 * (alpha - gamma) / denom
                dominant += float(np.clip(p, -0.5, 0.5)) * self._step

        outside = np.abs(freqs - freqs[peak_idx]) > self._lobe_hz
        snr_db = 0.0
        if outside.any():
            noise = float(power[outside].mean())
            snr_db = 10.0 * np.log10(peak_power / max(noise, cfg.epsilon))

        order = np.argsort(power)[::-1][: cfg.top_k]
        top = tuple((float(freqs[i]), float(power[i])) for i in order)

        logger.debug("Spectrum: dominant=%.3f Hz snr=%.1f dB", dominant, snr_db)
        return SpectrumResult(
            frequencies=freqs,
            power_spectrum=power,
            dominant_frequency=dominant,
            snr_db=float(snr_db),
            top_peaks=top,
        )

