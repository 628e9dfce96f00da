"""
Lipid channel (total cholesterol and triglycerides, mg/dL).

Hemodynamic features come from the pulse morphology: the dicrotic notch
prominence stands in for the augmentation index and the rise time share of
the period for arterial elasticity.
"""

from __future__ import annotations

from typing import Dict, Tuple

import numpy as np

from ppg_vitals.channels.base import Channel, Estimate, signal_stability
from ppg_vitals.channels.features import PulseFeatures, extract_pulse_features
from ppg_vitals.types import AcWindow

DEFAULT_NOTCH_POSITION = 0.6


def feature_quality(features: PulseFeatures) -> float:
    score = 1.0
    if not 0.5 < features.rise_fall_ratio < 2.5:
        score *= 0.8
    if not 0.1 < features.notch_prominence < 0.8:
        score *= 0.8
    return max(0.1, score)


class LipidChannel(Channel):
    name = "lipids"
    default_buffer_size = 250
    default_min_confidence = 0.6
    min_fill = 0.8
    bounds = ((120.0, 240.0), (40.0, 180.0))

    def _estimate(self, values: np.ndarray, window: AcWindow, rr: Tuple[float, ...]) -> Estimate:
        features = extract_pulse_features(values, window.fps, window.dc_level)
        auc = features.area_under_curve
        augmentation = features.notch_prominence
        rise_fall = features.rise_fall_ratio
        elasticity = features.rise_time_ms / max(features.mean_period_ms, 1e-9)
        notch = (features.notch_position if features.notch_position is not None
                 else DEFAULT_NOTCH_POSITION)

        cholesterol = 160.0 + auc * 35.0 + augmentation * 20.0 - rise_fall * 10.0 - elasticity * 15.0
        triglycerides = 100.0 + augmentation * 18.0 + auc * 15.0 - notch * 8.0 - elasticity * 12.0

        confidence = 0.4 * signal_stability(values, scale=0.15) + 0.6 * feature_quality(features)
        return Estimate(
            values=(cholesterol, triglycerides),
            confidence=confidence,
            metrics={
                "augmentation_index": augmentation,
                "elasticity_index": elasticity,
                "rise_fall_ratio": rise_fall,
            },
        )

    def _format(self, values: Tuple[float, ...]) -> Dict[str, float]:
        cholesterol, triglycerides = values
        return {
            "total_cholesterol": float(round(cholesterol)),
            "triglycerides": float(round(triglycerides)),
        }
