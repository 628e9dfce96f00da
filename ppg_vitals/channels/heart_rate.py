"""Heart-rate channel: RR-derived BPM cross-checked against a wavelet estimate."""

from __future__ import annotations

from typing import Optional, Tuple

import numpy as np

from ppg_vitals.channels.base import Channel, Estimate, signal_stability, unit
from ppg_vitals.channels.features import extract_pulse_features
from ppg_vitals.config import Calibration, ChannelConfig
from ppg_vitals.types import AcWindow
from ppg_vitals.wavelet import WaveletAnalyzer


class HeartRateChannel(Channel):
    """
    BPM from the mean RR interval, or from the buffered pulse period when no
    RR data is available.

    Confidence = 0.5·rhythm consistency + 0.2·beat count + 0.3·agreement
    with the CWT estimate.
    """

    name = "heart_rate"
    default_buffer_size = 150
    default_min_confidence = 0.55
    bounds = ((40.0, 200.0),)

    def __init__(
        self,
        config: Optional[ChannelConfig] = None,
        calibration: Optional[Calibration] = None,
        wavelet: Optional[WaveletAnalyzer] = None,
    ) -> None:
        super().__init__(config, calibration)
        self.wavelet = wavelet or WaveletAnalyzer()

    def _estimate(self, values: np.ndarray, window: AcWindow, rr: Tuple[float, ...]) -> Estimate:
        if len(rr) >= 2:
            intervals = np.asarray(rr, dtype=np.float64)
            mean_rr = float(intervals.mean())
            rhythm = 1.0 - min(1.0, float(intervals.std()) / mean_rr)
            count = len(intervals)
        else:
            features = extract_pulse_features(values, window.fps, window.dc_level)
            mean_rr = features.mean_period_ms
            rhythm = 1.0 - min(1.0, features.period_cv)
            count = features.pulse_count
        bpm = 60000.0 / mean_rr

        cwt_bpm, _ = self.wavelet.estimate(values, window.fps)
        agreement = 0.0
        if cwt_bpm > 0.0:
            agreement = unit(1.0 - abs(bpm - cwt_bpm) / (0.15 * bpm))

        confidence = 0.5 * rhythm + 0.2 * min(1.0, count / 10.0) + 0.3 * agreement
        return Estimate(
            values=(bpm,),
            confidence=confidence,
            metrics={
                "rhythm_consistency": rhythm,
                "cwt_bpm": cwt_bpm,
                "cwt_agreement": agreement,
                "signal_stability": signal_stability(values),
            },
        )

    def _format(self, values: Tuple[float, ...]) -> float:
        return round(values[0], 1)
