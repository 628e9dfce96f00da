"""
Synthetic PPG generator for demos and tests.

Two waveforms are available: a plain sinusoid and a physiological-looking
pulse built from a systolic and a smaller, later diastolic Gaussian, which
produces a dicrotic notch.
"""

from __future__ import annotations

import time
from typing import Generator, List, Optional

import numpy as np

from ppg_vitals.types import Sample

WAVEFORMS = ("sine", "pulse")


def _pulse_shape(phase: np.ndarray) -> np.ndarray:
    """One cardiac cycle on phase ∈ [0, 1), normalised to a 0 – 1 range."""
    systolic = np.exp(-((phase - 0.25) ** 2) / (2 * 0.07 ** 2))
    diastolic = 0.3 * np.exp(-((phase - 0.55) ** 2) / (2 * 0.08 ** 2))
    wave = systolic + diastolic
    return (wave - wave.min()) / (wave.max() - wave.min())


def synthetic_signal(
    bpm: float = 75.0,
    duration_s: float = 10.0,
    fps: float = 30.0,
    amplitude: float = 0.1,
    dc: float = 0.5,
    waveform: str = "sine",
    noise_std: float = 0.0,
    drift_per_s: float = 0.0,
    seed: Optional[int] = None,
    start_s: float = 0.0,
) -> np.ndarray:
    """
    Raw intensity values (roughly 0 – 1) for *duration_s* seconds.

    *amplitude* is the half peak-to-peak swing around *dc*; *start_s* offsets
    the time axis so consecutive chunks join without a phase jump.
    """
    if waveform not in WAVEFORMS:
        raise ValueError(f"waveform must be one of {WAVEFORMS}, got {waveform!r}")
    n = int(round(duration_s * fps))
    t = start_s + np.arange(n) / fps
    freq = bpm / 60.0
    if waveform == "sine":
        ac = amplitude * np.sin(2 * np.pi * freq * t)
    else:
        # Lookup on a fine grid keeps the shape identical for every beat
        grid = np.linspace(0.0, 1.0, 512, endpoint=False)
        shape = _pulse_shape(grid)
        ac = amplitude * (2.0 * np.interp((freq * t) % 1.0, grid, shape) - 1.0)

    signal = dc + ac + drift_per_s * t
    if noise_std > 0.0:
        rng = np.random.default_rng(seed)
        signal = signal + rng.normal(0.0, noise_std, size=n)
    return signal


def synthetic_samples(fps: float = 30.0, **kwargs) -> List[Sample]:
    """:func:`synthetic_signal` wrapped as timestamped samples."""
    values = synthetic_signal(fps=fps, **kwargs)
    return [Sample(timestamp_ms=i * 1000.0 / fps, raw_value=float(v)) for i, v in enumerate(values)]


class SyntheticSource:
    """
    Endless synthetic sample stream, optionally paced in real time.

    Mirrors the ``samples()`` interface of
    :class:`~ppg_vitals.camera.CameraSource`.
    """

    def __init__(
        self,
        bpm: float = 75.0,
        fps: float = 30.0,
        waveform: str = "pulse",
        noise_std: float = 0.005,
        realtime: bool = True,
        seed: Optional[int] = None,
    ) -> None:
        self.bpm = bpm
        self.fps = fps
        self.waveform = waveform
        self.noise_std = noise_std
        self.realtime = realtime
        self.seed = seed

    def samples(self, duration_s: Optional[float] = None) -> Generator[Sample, None, None]:
        chunk_s = 1.0
        produced = 0
        start = time.monotonic()
        rng_seed = self.seed
        while duration_s is None or produced < duration_s * self.fps:
            values = synthetic_signal(
                bpm=self.bpm,
                duration_s=chunk_s,
                fps=self.fps,
                waveform=self.waveform,
                noise_std=self.noise_std,
                seed=rng_seed,
                start_s=produced / self.fps,
            )
            rng_seed = None if rng_seed is None else rng_seed + 1
            for v in values:
                if duration_s is not None and produced >= duration_s * self.fps:
                    return
                ts = produced * 1000.0 / self.fps
                if self.realtime:
                    delay = start + ts / 1000.0 - time.monotonic()
                    if delay > 0:
                        time.sleep(delay)
                yield Sample(timestamp_ms=ts, raw_value=float(v))
                produced += 1
