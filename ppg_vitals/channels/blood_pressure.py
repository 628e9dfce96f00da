"""
Blood-pressure channel.

Pulse transit time is approximated as a fixed share of the beat period and
combined with perfusion and waveform spread in a linear model.  Output is a
``"SYS/DIA"`` string.
"""

from __future__ import annotations

from typing import Tuple

import numpy as np

from ppg_vitals.channels.base import Channel, Estimate, signal_stability
from ppg_vitals.channels.features import extract_pulse_features
from ppg_vitals.types import AcWindow

PTT_SHARE = 0.3
MIN_PULSE_PRESSURE = 20.0
MAX_PULSE_PRESSURE = 80.0


class BloodPressureChannel(Channel):
    name = "blood_pressure"
    default_buffer_size = 150
    default_min_confidence = 0.45
    min_fill = 0.8
    bounds = ((80.0, 180.0), (50.0, 120.0))
    smoothing_rate = 0.25

    def _estimate(self, values: np.ndarray, window: AcWindow, rr: Tuple[float, ...]) -> Estimate:
        features = extract_pulse_features(values, window.fps, window.dc_level)
        period = float(np.mean(rr)) if rr else features.mean_period_ms
        ptt = PTT_SHARE * period
        pi = features.perfusion_index
        std = features.std

        systolic = 80.0 + 5000.0 / (ptt + 0.01) + pi * 50.0 - std * 100.0
        diastolic = 50.0 + 3000.0 / (ptt + 0.01) + pi * 30.0 - std * 50.0

        confidence = (
            0.4 * signal_stability(values)
            + 0.4 * min(1.0, pi / 0.05)
            + 0.2 * min(1.0, features.pulse_count / 6.0)
        )
        return Estimate(
            values=(systolic, diastolic),
            confidence=confidence,
            metrics={"ptt_ms": ptt, "perfusion_index": pi},
        )

    def _finalise(self, values: Tuple[float, ...]) -> Tuple[float, ...]:
        systolic, diastolic = super()._finalise(values)
        (_, sys_high), _ = self.bounds
        pulse_pressure = systolic - diastolic
        if pulse_pressure < MIN_PULSE_PRESSURE:
            systolic = min(sys_high, diastolic + MIN_PULSE_PRESSURE)
        elif pulse_pressure > MAX_PULSE_PRESSURE:
            systolic = min(sys_high, diastolic + MAX_PULSE_PRESSURE)
        diastolic = min(diastolic, systolic - MIN_PULSE_PRESSURE)
        return systolic, diastolic

    def _format(self, values: Tuple[float, ...]) -> str:
        systolic, diastolic = values
        return f"{int(round(systolic))}/{int(round(diastolic))}"
