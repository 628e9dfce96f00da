"""Glucose channel: linear model over perfusion, amplitude, spread and pulse area."""

from __future__ import annotations

from typing import Tuple

import numpy as np

from ppg_vitals.channels.base import Channel, Estimate, signal_stability
from ppg_vitals.channels.features import extract_pulse_features
from ppg_vitals.exceptions import InsufficientDataError
from ppg_vitals.types import AcWindow

BASELINE_MG_DL = 90.0
PERFUSION_FACTOR = 0.4
AMPLITUDE_FACTOR = 0.1
VARIABILITY_FACTOR = 0.15
AREA_FACTOR = 0.1


class GlucoseChannel(Channel):
    name = "glucose"
    default_buffer_size = 200
    default_min_confidence = 0.5
    min_fill = 0.7
    bounds = ((70.0, 180.0),)

    def _estimate(self, values: np.ndarray, window: AcWindow, rr: Tuple[float, ...]) -> Estimate:
        features = extract_pulse_features(values, window.fps, window.dc_level)
        std = features.std
        if std > 0.2:
            raise InsufficientDataError("AC spread too large for a glucose estimate")

        pi = features.perfusion_index
        variability = std / window.dc_level if window.dc_level > 1e-9 else 0.0

        glucose = BASELINE_MG_DL
        glucose += (pi - 0.05) * PERFUSION_FACTOR * 50.0
        glucose += (features.amplitude - 0.1) * AMPLITUDE_FACTOR * 60.0
        glucose -= (variability - 0.1) * VARIABILITY_FACTOR * 40.0
        glucose += (features.area_under_curve - 0.05) * AREA_FACTOR * 30.0

        confidence = (
            0.4 * signal_stability(values)
            + 0.3 * min(1.0, pi / 0.08)
            + 0.3 * min(1.0, features.amplitude / 0.15)
        )
        return Estimate(
            values=(glucose,),
            confidence=confidence,
            metrics={"perfusion_index": pi, "variability": variability},
        )

    def _format(self, values: Tuple[float, ...]) -> float:
        return float(round(values[0]))
