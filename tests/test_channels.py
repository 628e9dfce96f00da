"""
Unit tests for pulse features and the derived-vitals channels.
Run with:  pytest tests/
"""

from __future__ import annotations

import re

import numpy as np
import pytest

from ppg_vitals.channels import (
    CHANNEL_CLASSES,
    ArrhythmiaChannel,
    BloodPressureChannel,
    GlucoseChannel,
    HeartRateChannel,
    LipidChannel,
    SpO2Channel,
    build_channels,
)
from ppg_vitals.channels.arrhythmia import BRADYCARDIA, IRREGULAR, NORMAL, POSSIBLE_ARRHYTHMIA, TACHYCARDIA
from ppg_vitals.channels.features import extract_pulse_features
from ppg_vitals.channels.spo2 import ratio_of_ratios
from ppg_vitals.config import CHANNEL_NAMES, Calibration, ChannelConfig
from ppg_vitals.exceptions import InsufficientDataError
from ppg_vitals.hrv import HRVMetrics
from ppg_vitals.synthetic import synthetic_signal
from ppg_vitals.types import AcWindow

FPS = 30.0


def _ac(bpm: float = 75.0, n: int = 256, waveform: str = "sine", amplitude: float = 0.1):
    return synthetic_signal(bpm=bpm, duration_s=n / FPS, fps=FPS, amplitude=amplitude,
                            dc=0.0, waveform=waveform)


def _window(values, dc: float = 0.5, end_index=None) -> AcWindow:
    end = len(values) if end_index is None else end_index
    return AcWindow.snapshot(values, dc_level=dc, fps=FPS, timestamp_ms=end * 1000.0 / FPS,
                             end_index=end)


def _variable_rr(n: int = 20):
    # Slow trend plus beat-to-beat alternation: RMSSD ~25 ms, SDNN ~38 ms, pNN50 = 0
    return [760.0 + 6.0 * i + (12.0 if i % 2 else -12.0) for i in range(n)]


# ---------------------------------------------------------------------------
# Pulse features
# ---------------------------------------------------------------------------

class TestPulseFeatures:

    def test_sine_period_and_perfusion(self):
        f = extract_pulse_features(_ac(), FPS, dc_level=0.5)
        assert f.mean_period_ms == pytest.approx(800.0, rel=0.02)
        assert f.perfusion_index == pytest.approx(0.4, rel=0.02)
        assert f.pulse_count >= 8
        assert f.notch_position is None
        assert f.rise_fall_ratio == pytest.approx(1.0, abs=0.2)
        assert f.amplitude_ratio == pytest.approx(1.0, abs=0.05)

    def test_pulse_waveform_has_dicrotic_notch(self):
        f = extract_pulse_features(_ac(waveform="pulse"), FPS, dc_level=0.5)
        assert f.notch_position is not None
        assert 0.3 < f.notch_position < 0.9
        assert f.notch_prominence > 0.0
        # Fast systolic upstroke
        assert f.rise_time_ms < f.fall_time_ms

    def test_flat_buffer_raises(self):
        with pytest.raises(InsufficientDataError):
            extract_pulse_features(np.zeros(150), FPS, dc_level=0.5)

    def test_single_pulse_raises(self):
        with pytest.raises(InsufficientDataError) as info:
            extract_pulse_features(_ac(n=30), FPS, dc_level=0.5)
        assert info.value.required == 2


# ---------------------------------------------------------------------------
# AC-buffer channels
# ---------------------------------------------------------------------------

class TestChannels:

    def test_registry_covers_every_channel(self):
        assert set(CHANNEL_CLASSES) == set(CHANNEL_NAMES)
        channels = build_channels()
        assert list(channels) == list(CHANNEL_CLASSES)

    def test_defaults(self):
        assert HeartRateChannel().config.buffer_size == 150
        assert HeartRateChannel().config.min_confidence == 0.55
        assert LipidChannel().config.buffer_size == 250
        assert SpO2Channel().config.min_confidence == 0.4
        assert ArrhythmiaChannel().config.buffer_size == 50

    def test_every_channel_reports_within_bounds(self):
        window = _window(_ac())
        for name, channel in build_channels().items():
            if name == "arrhythmia":
                continue
            channel.process(window, [800.0] * 10)
            result = channel.get_result()
            assert result is not None, f"{name} withheld (confidence {channel.confidence:.2f})"
            assert result.channel == name
            estimate = channel._output(channel.raw_estimate)
            for value, (low, high) in zip(estimate, channel.bounds):
                assert low <= value <= high, f"{name}: {value} outside [{low}, {high}]"

    def test_heart_rate_from_rr(self):
        ch = HeartRateChannel()
        ch.process(_window(_ac()), [800.0] * 10)
        result = ch.get_result()
        assert result.value == pytest.approx(75.0)
        assert result.confidence >= 0.7
        assert result.quality["cwt_bpm"] == pytest.approx(75.0, abs=6.0)

    def test_heart_rate_without_rr_uses_pulse_period(self):
        ch = HeartRateChannel()
        ch.process(_window(_ac()), [])
        assert ch.raw_estimate[0] == pytest.approx(75.0, abs=2.0)

    def test_spo2_value(self):
        ch = SpO2Channel()
        ch.process(_window(_ac()))
        result = ch.get_result()
        expected = 110.0 - 25.0 * ratio_of_ratios(0.4)
        assert result.value == pytest.approx(expected, abs=1.0)

    def test_blood_pressure_format_and_pulse_pressure(self):
        ch = BloodPressureChannel()
        ch.process(_window(_ac()), [800.0] * 10)
        value = ch.get_result().value
        assert re.fullmatch(r"\d+/\d+", value)
        systolic, diastolic = (int(v) for v in value.split("/"))
        assert 20 <= systolic - diastolic <= 80

    def test_blood_pressure_pulse_pressure_enforced(self):
        ch = BloodPressureChannel()
        systolic, diastolic = ch._finalise((100.0, 95.0))
        assert systolic - diastolic >= 20.0
        systolic, diastolic = ch._finalise((180.0, 50.0))
        assert systolic - diastolic <= 80.0

    def test_lipids_value_is_mapping(self):
        ch = LipidChannel()
        ch.process(_window(_ac()))
        value = ch.get_result().value
        assert set(value) == {"total_cholesterol", "triglycerides"}
        assert 120.0 <= value["total_cholesterol"] <= 240.0

    def test_glucose_rejects_excessive_spread(self):
        ch = GlucoseChannel()
        ch.process(_window(_ac(amplitude=0.5)))
        assert ch.get_result() is None
        assert ch.confidence == 0.0

    def test_underfilled_buffer_withheld(self):
        ch = HeartRateChannel()
        ch.process(_window(_ac(n=20)), [800.0] * 10)
        assert ch.get_result() is None
        assert ch.confidence == 0.0
        assert ch.quality_metrics()["buffer_fill"] == pytest.approx(20 / 150)

    def test_flat_signal_withheld(self):
        ch = SpO2Channel()
        ch.process(_window(np.zeros(256)))
        assert ch.get_result() is None

    def test_min_confidence_override(self):
        channels = build_channels({"spo2": ChannelConfig(buffer_size=120, min_confidence=0.95)})
        ch = channels["spo2"]
        ch.process(_window(_ac()))
        assert ch.raw_estimate is not None
        assert ch.get_result() is None

    def test_calibration_applied(self):
        ch = HeartRateChannel(calibration=Calibration(factor=1.1))
        ch.process(_window(_ac()), [800.0] * 10)
        assert ch.get_result().value == pytest.approx(82.5)
        assert ch.raw_estimate[0] == pytest.approx(75.0)

    def test_calibrated_value_still_clamped(self):
        ch = HeartRateChannel(calibration=Calibration(factor=2.0, offset=100.0))
        ch.process(_window(_ac()), [800.0] * 10)
        assert ch.get_result().value == 200.0

    def test_reset_keeps_calibration(self):
        ch = HeartRateChannel(calibration=Calibration(factor=1.1))
        ch.process(_window(_ac()), [800.0] * 10)
        ch.reset()
        assert ch.get_result() is None
        assert ch.raw_estimate is None
        assert ch.calibration.factor == 1.1

    def test_estimates_smoothed_between_windows(self):
        values = _ac()
        ch = HeartRateChannel()
        ch.process(_window(values, end_index=256), [800.0] * 10)
        ch.process(_window(values, end_index=266), [1000.0] * 10)
        assert 60.0 < ch.raw_estimate[0] < 75.0

    def test_stale_window_ignored(self):
        values = _ac()
        ch = HeartRateChannel()
        ch.process(_window(values, end_index=300), [800.0] * 10)
        before = ch.raw_estimate
        ch.process(_window(values, end_index=290), [1000.0] * 10)
        assert ch.raw_estimate == before

    def test_quality_metrics_keys(self):
        ch = HeartRateChannel()
        ch.process(_window(_ac()), [800.0] * 10)
        metrics = ch.quality_metrics()
        for key in ("confidence", "signal_stability", "buffer_fill", "rhythm_consistency"):
            assert key in metrics


# ---------------------------------------------------------------------------
# Arrhythmia
# ---------------------------------------------------------------------------

class TestArrhythmiaChannel:

    def test_variable_normal_rhythm(self):
        ch = ArrhythmiaChannel()
        ch.process(None, _variable_rr())
        result = ch.get_result()
        assert result.value["status"] == NORMAL
        assert result.confidence == pytest.approx(0.9)
        assert ch.event_count == 0

    def test_too_few_intervals(self):
        ch = ArrhythmiaChannel()
        ch.process(None, [800.0] * 5)
        assert ch.confidence == pytest.approx(0.1)
        assert ch.get_result() is None
        assert ch.status == NORMAL

    def test_bradycardia_and_tachycardia(self):
        ch = ArrhythmiaChannel()
        ch.process(None, [1300.0] * 20)
        assert ch.get_result().value["status"] == BRADYCARDIA
        ch.process(None, [500.0] * 20)
        assert ch.get_result().value["status"] == TACHYCARDIA

    def test_event_counter_counts_changes(self):
        ch = ArrhythmiaChannel()
        ch.process(None, [1300.0] * 20)
        ch.process(None, [1300.0] * 20)
        assert ch.event_count == 1
        ch.process(None, _variable_rr())
        assert ch.status == NORMAL
        ch.process(None, [500.0] * 20)
        assert ch.event_count == 2
        assert ch.get_result().value["event_count"] == 2

    def test_classification_rules(self):
        ch = ArrhythmiaChannel()
        high_rmssd = HRVMetrics(rmssd=120.0, sdnn=50.0, pnnx=0.1, mean_rr=800.0, valid=True)
        low_sdnn = HRVMetrics(rmssd=25.0, sdnn=20.0, pnnx=0.1, mean_rr=800.0, valid=True)
        irregular = HRVMetrics(rmssd=50.0, sdnn=40.0, pnnx=0.5, mean_rr=800.0, valid=True)
        assert ch.classify(high_rmssd) == (POSSIBLE_ARRHYTHMIA, 0.7)
        assert ch.classify(low_sdnn) == (POSSIBLE_ARRHYTHMIA, 0.6)
        assert ch.classify(irregular) == (IRREGULAR, 0.9)

    def test_confidence_scales_with_interval_count(self):
        ch = ArrhythmiaChannel()
        ch.process(None, [1300.0] * 10)
        assert ch.confidence == pytest.approx(0.5 * 0.8 * 0.9)
        assert ch.get_result() is None

    def test_not_calibratable(self):
        ch = ArrhythmiaChannel()
        assert not ch.calibratable
        assert ch.raw_estimate is None

    def test_reset(self):
        ch = ArrhythmiaChannel()
        ch.process(None, [1300.0] * 20)
        ch.reset()
        assert ch.event_count == 0
        assert ch.get_result() is None
