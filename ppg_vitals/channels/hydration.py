"""Hydration channel (0 – 100 %) from pulse-rate variability, amplitude ratio and notch position."""

from __future__ import annotations

from typing import Tuple

import numpy as np

from ppg_vitals.channels.base import Channel, Estimate
from ppg_vitals.channels.features import extract_pulse_features
from ppg_vitals.types import AcWindow

PRV_WEIGHT = 0.3
AMPLITUDE_WEIGHT = 0.4
NOTCH_WEIGHT = 0.3
DEFAULT_NOTCH_POSITION = 0.5


class HydrationChannel(Channel):
    name = "hydration"
    default_buffer_size = 150
    default_min_confidence = 0.5
    min_fill = 0.6
    bounds = ((0.0, 100.0),)

    def _estimate(self, values: np.ndarray, window: AcWindow, rr: Tuple[float, ...]) -> Estimate:
        features = extract_pulse_features(values, window.fps, window.dc_level)
        # Period CV of 0.2 counts as fully variable
        prv = min(1.0, features.period_cv / 0.2) if features.pulse_count >= 3 else 0.5
        notch = (features.notch_position if features.notch_position is not None
                 else DEFAULT_NOTCH_POSITION)

        score = (
            (1.0 - prv) * PRV_WEIGHT
            + features.amplitude_ratio * AMPLITUDE_WEIGHT
            + (1.0 - notch) * NOTCH_WEIGHT
        )
        confidence = (0.5 * min(1.0, features.pulse_count / 5.0)
                      + 0.5 * (1.0 - min(1.0, features.amplitude_cv)))
        return Estimate(
            values=(score * 100.0,),
            confidence=confidence,
            metrics={"pulse_rate_variability": prv, "amplitude_ratio": features.amplitude_ratio},
        )

    def _format(self, values: Tuple[float, ...]) -> float:
        return float(round(values[0]))
