"""
SpO2 channel.

A single optical channel has no independent infrared signal, so the ratio
of ratios is approximated: the infrared perfusion is assumed to be a fixed
affine function of the measured one.  The result is indicative only.
"""

from __future__ import annotations

from typing import Tuple

import numpy as np

from ppg_vitals.channels.base import Channel, Estimate, signal_stability
from ppg_vitals.exceptions import InsufficientDataError
from ppg_vitals.types import AcWindow

# Assumed infrared perfusion: IR_SCALE · PI + IR_OFFSET
IR_SCALE = 1.6
IR_OFFSET = 0.002


def ratio_of_ratios(perfusion_index: float) -> float:
    return perfusion_index / (IR_SCALE * perfusion_index + IR_OFFSET)


class SpO2Channel(Channel):
    name = "spo2"
    default_buffer_size = 120
    default_min_confidence = 0.4
    bounds = ((70.0, 100.0),)

    def _estimate(self, values: np.ndarray, window: AcWindow, rr: Tuple[float, ...]) -> Estimate:
        ac = float(np.ptp(values))
        if window.dc_level <= 1e-9 or ac <= 1e-9:
            raise InsufficientDataError("no pulsatile component", required=1, available=0)

        pi = ac / window.dc_level
        r = ratio_of_ratios(pi)
        spo2 = 110.0 - 25.0 * r

        stability = signal_stability(values)
        confidence = 0.6 * stability + 0.4 * min(1.0, pi / 0.05)
        return Estimate(
            values=(spo2,),
            confidence=confidence,
            metrics={"perfusion_index": pi, "ratio": r},
        )

    def _format(self, values: Tuple[float, ...]) -> float:
        return float(round(values[0]))
