"""
Pulse-waveform features shared by the derived-vitals channels.

Pulses are delimited valley → peak → valley using
``scipy.signal.find_peaks`` on the AC buffer and its negation.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np
from scipy.signal import find_peaks, peak_widths

from ppg_vitals.exceptions import InsufficientDataError

MIN_PULSES = 2


@dataclass(frozen=True)
class PulseFeatures:
    """
    Morphology of the pulses found in one AC buffer.

    Times are in ms, ``notch_position`` is the fraction of the pulse length
    at which the dicrotic notch sits (``None`` when no notch was found) and
    ``area_under_curve`` is the mean pulse area normalised by its amplitude
    and length (0.5 for a triangle).
    """

    amplitude: float
    amplitude_cv: float
    amplitude_ratio: float
    perfusion_index: float
    std: float
    rise_time_ms: float
    fall_time_ms: float
    half_width_ms: float
    decay_time_ms: float
    notch_position: Optional[float]
    notch_prominence: float
    area_under_curve: float
    mean_period_ms: float
    period_cv: float
    pulse_count: int

    @property
    def rise_fall_ratio(self) -> float:
        if self.fall_time_ms <= 0.0:
            return 1.0
        return self.rise_time_ms / self.fall_time_ms


def _cv(values: Sequence[float]) -> float:
    arr = np.asarray(values, dtype=np.float64)
    if arr.size < 2 or arr.mean() <= 0.0:
        return 0.0
    return float(arr.std() / arr.mean())


def _find_notch(segment: np.ndarray) -> Optional[int]:
    """First local minimum after the systolic peak (segment starts at the peak)."""
    for j in range(2, len(segment) - 1):
        if segment[j] < segment[j - 1] and segment[j] < segment[j + 1]:
            return j
    return None


def extract_pulse_features(
    values: Sequence[float],
    fps: float,
    dc_level: float,
    min_interval_ms: float = 300.0,
) -> PulseFeatures:
    """
    Extract pulse morphology from an AC buffer sampled at *fps*.

    Raises
    ------
    InsufficientDataError
        When the buffer is flat or holds fewer than two complete pulses.
    """
    x = np.asarray(values, dtype=np.float64)
    ptp = float(np.ptp(x)) if x.size else 0.0
    if ptp <= 1e-9:
        raise InsufficientDataError("flat AC buffer", required=MIN_PULSES, available=0)

    distance = max(1, int(round(min_interval_ms * fps / 1000.0)))
    prominence = 0.25 * ptp
    peaks, _ = find_peaks(x, distance=distance, prominence=prominence)
    valleys, _ = find_peaks(-x, distance=distance, prominence=prominence)

    ms_per_sample = 1000.0 / fps
    rises: List[float] = []
    falls: List[float] = []
    amplitudes: List[float] = []
    areas: List[float] = []
    decays: List[float] = []
    notch_positions: List[float] = []
    notch_proms: List[float] = []
    pulse_peaks: List[int] = []

    for v0, v1 in zip(valleys[:-1], valleys[1:]):
        inside = peaks[(peaks > v0) & (peaks < v1)]
        if inside.size == 0:
            continue
        p = int(inside[np.argmax(x[inside])])
        amp = float(x[p] - x[v0])
        if amp <= 0.0:
            continue
        pulse = x[v0:v1 + 1]
        pulse_peaks.append(p)
        amplitudes.append(amp)
        rises.append((p - v0) * ms_per_sample)
        falls.append((v1 - p) * ms_per_sample)
        areas.append(float(np.mean(np.clip(pulse - x[v0], 0.0, None))) / amp)

        tail = x[p:v1 + 1]
        below = np.flatnonzero(tail <= x[p] - 0.63 * amp)
        decays.append(float(below[0] if below.size else len(tail)) * ms_per_sample)

        j = _find_notch(tail)
        if j is not None:
            notch_positions.append((p - v0 + j) / float(v1 - v0))
            notch_proms.append(float(tail[j:].max() - tail[j]) / amp)

    if len(amplitudes) < MIN_PULSES:
        raise InsufficientDataError(
            "not enough complete pulses", required=MIN_PULSES, available=len(amplitudes)
        )

    widths = peak_widths(x, np.asarray(pulse_peaks), rel_height=0.5)[0]
    periods = np.diff(peaks) * ms_per_sample
    amps = np.asarray(amplitudes)

    return PulseFeatures(
        amplitude=float(amps.mean()),
        amplitude_cv=_cv(amps),
        amplitude_ratio=float(amps.min() / amps.max()),
        perfusion_index=ptp / dc_level if dc_level > 1e-9 else 0.0,
        std=float(x.std()),
        rise_time_ms=float(np.mean(rises)),
        fall_time_ms=float(np.mean(falls)),
        half_width_ms=float(np.mean(widths)) * ms_per_sample,
        decay_time_ms=float(np.mean(decays)),
        notch_position=float(np.mean(notch_positions)) if notch_positions else None,
        notch_prominence=float(np.mean(notch_proms)) if notch_proms else 0.0,
        area_under_curve=float(np.mean(areas)),
        mean_period_ms=float(np.mean(periods)),
        period_cv=_cv(periods),
        pulse_count=len(amplitudes),
    )
