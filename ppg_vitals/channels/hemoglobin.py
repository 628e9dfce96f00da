"""Hemoglobin channel (g/dL) from pulse amplitude, width, decay and perfusion."""

from __future__ import annotations

from typing import Tuple

import numpy as np

from ppg_vitals.channels.base import Channel, Estimate
from ppg_vitals.channels.features import extract_pulse_features
from ppg_vitals.types import AcWindow

# Normalisation scales for the waveform terms
AMPLITUDE_SCALE = 0.5
WIDTH_SCALE_MS = 500.0
DECAY_SCALE_MS = 333.0


class HemoglobinChannel(Channel):
    name = "hemoglobin"
    default_buffer_size = 120
    default_min_confidence = 0.5
    bounds = ((8.0, 18.0),)

    def _estimate(self, values: np.ndarray, window: AcWindow, rr: Tuple[float, ...]) -> Estimate:
        features = extract_pulse_features(values, window.fps, window.dc_level)
        amplitude = min(1.0, features.amplitude / AMPLITUDE_SCALE)
        width = min(1.0, features.half_width_ms / WIDTH_SCALE_MS)
        decay = min(1.0, features.decay_time_ms / DECAY_SCALE_MS)
        pi = features.perfusion_index

        hemoglobin = 13.0 + amplitude * 2.5 - width * 1.5 + pi * 1.0 - decay * 0.5

        confidence = 0.5 * (1.0 - min(1.0, features.amplitude_cv)) + 0.5 * min(1.0, pi / 0.05)
        return Estimate(
            values=(hemoglobin,),
            confidence=confidence,
            metrics={"perfusion_index": pi, "amplitude_cv": features.amplitude_cv},
        )

    def _format(self, values: Tuple[float, ...]) -> float:
        return round(values[0], 1)
