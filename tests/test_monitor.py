"""
End-to-end tests for VitalSignsMonitor on synthetic signals.
Run with:  pytest tests/
"""

from __future__ import annotations

import logging
from concurrent.futures import Executor, Future

import numpy as np
import pytest

from ppg_vitals import VitalSignsMonitor
from ppg_vitals.config import Calibration, MonitorConfig
from ppg_vitals.exceptions import ConfigurationError
from ppg_vitals.synthetic import synthetic_samples
from ppg_vitals.types import PRESSURE_SENTINEL, PresenceState, Sample


def _run(monitor: VitalSignsMonitor, samples):
    return [monitor.process_sample(s) for s in samples]


def _sine_samples(seconds: float = 10.0, bpm: float = 75.0):
    return synthetic_samples(fps=30.0, bpm=bpm, duration_s=seconds, waveform="sine")


def _summary(ticks, snapshot):
    return (
        [t.beat for t in ticks if t.beat is not None],
        [t.quality.total for t in ticks],
        [t.presence.state for t in ticks],
        snapshot.as_dict(),
    )


class _InlineExecutor(Executor):
    def submit(self, fn, *args, **kwargs):
        future: Future = Future()
        future.set_result(fn(*args, **kwargs))
        return future


class _RejectingOracle:
    def predict(self, window):
        return 0.0


# ---------------------------------------------------------------------------
# Scenario: clean 75 BPM signal
# ---------------------------------------------------------------------------

class TestSteadySignal:

    def test_beats_and_average_rate(self):
        monitor = VitalSignsMonitor()
        ticks = _run(monitor, _sine_samples())
        beats = [t.beat for t in ticks if t.beat is not None]
        assert 11 <= len(beats) <= 13
        rr = [b.rr_interval_ms for b in beats if b.rr_interval_ms is not None]
        assert np.mean(rr) == pytest.approx(800.0, rel=0.05)

        snap = monitor.snapshot()
        assert snap.average_bpm == pytest.approx(75.0, abs=3.0)
        assert snap.heart_rate_variability < 5.0

    def test_finger_detected_after_confirmation(self):
        monitor = VitalSignsMonitor()
        ticks = _run(monitor, _sine_samples())
        detected = [t.conditioned.timestamp_ms for t in ticks if t.finger_detected]
        assert detected, "finger never detected"
        assert detected[0] >= 2500.0
        assert ticks[-1].presence.state in (PresenceState.DETECTED, PresenceState.STABLE)
        assert monitor.finger_detected

    def test_heart_rate_channel_reports(self):
        monitor = VitalSignsMonitor()
        _run(monitor, _sine_samples())
        snap = monitor.snapshot()
        assert snap.heart_rate == pytest.approx(75.0, abs=3.0)
        assert snap.confidence["heart_rate"] >= 0.55
        assert 0.0 < snap.overall_confidence <= 1.0

    def test_quality_rises_with_evidence(self):
        monitor = VitalSignsMonitor()
        ticks = _run(monitor, _sine_samples())
        assert ticks[10].quality.total == 0.0
        assert ticks[-1].quality.total > 70.0

    def test_single_dropout_keeps_detection(self):
        samples = _sine_samples(8.0)
        monitor = VitalSignsMonitor()
        _run(monitor, samples[:200])
        assert monitor.finger_detected

        s = samples[200]
        tick = monitor.process_sample(Sample(timestamp_ms=s.timestamp_ms, raw_value=0.0))
        assert tick.finger_detected
        ticks = _run(monitor, samples[201:])
        assert all(t.finger_detected for t in ticks)


# ---------------------------------------------------------------------------
# No finger
# ---------------------------------------------------------------------------

class TestNoSignal:

    def test_constant_input(self):
        monitor = VitalSignsMonitor()
        samples = [Sample(timestamp_ms=i * 1000.0 / 30.0, raw_value=0.5) for i in range(150)]
        ticks = _run(monitor, samples)
        assert all(t.beat is None for t in ticks)
        assert all(t.quality.total == 0.0 for t in ticks)
        assert all(t.presence.state is PresenceState.NO_FINGER for t in ticks)

        snap = monitor.snapshot()
        assert snap.heart_rate is None
        assert snap.pressure == PRESSURE_SENTINEL
        assert snap.overall_confidence == 0.0

    def test_oracle_suppresses_beats(self):
        with VitalSignsMonitor(oracles=[_RejectingOracle()], executor=_InlineExecutor()) as monitor:
            ticks = _run(monitor, _sine_samples(5.0))
        # Scores exist once the oracle window (32 samples) has filled
        assert all(t.beat is None for t in ticks[40:])
        assert monitor.detector.suppressed > 0


# ---------------------------------------------------------------------------
# Reset
# ---------------------------------------------------------------------------

class TestReset:

    def test_reset_is_idempotent(self):
        samples = _sine_samples(6.0)
        monitor = VitalSignsMonitor()
        first = _summary(_run(monitor, samples), monitor.snapshot())
        monitor.reset()
        second = _summary(_run(monitor, samples), monitor.snapshot())
        fresh_monitor = VitalSignsMonitor()
        fresh = _summary(_run(fresh_monitor, samples), fresh_monitor.snapshot())
        assert first == second == fresh

    def test_reset_clears_outputs(self):
        monitor = VitalSignsMonitor()
        _run(monitor, _sine_samples())
        monitor.reset()
        assert not monitor.finger_detected
        assert monitor.snapshot().heart_rate is None
        assert len(monitor.detector.rr_history) == 0


# ---------------------------------------------------------------------------
# Calibration
# ---------------------------------------------------------------------------

class TestCalibration:

    def test_set_calibration_validates(self):
        monitor = VitalSignsMonitor()
        with pytest.raises(ConfigurationError):
            monitor.set_calibration("heart_rate", factor=5.0)
        with pytest.raises(ConfigurationError):
            monitor.set_calibration("heart_rate", offset=-500.0)
        with pytest.raises(ConfigurationError):
            monitor.set_calibration("cortisol", factor=1.0)
        with pytest.raises(ConfigurationError):
            monitor.set_calibration("arrhythmia", factor=1.0)

    def test_set_calibration_applies(self):
        monitor = VitalSignsMonitor()
        cal = monitor.set_calibration("glucose", factor=1.2, offset=-5.0)
        assert monitor.calibrations["glucose"] == cal
        assert monitor.channels["glucose"].calibration.factor == 1.2

    def test_calibrate_needs_an_estimate(self):
        monitor = VitalSignsMonitor()
        with pytest.raises(ConfigurationError):
            monitor.calibrate("heart_rate", 72.0)

    def test_calibrate_against_reference(self):
        monitor = VitalSignsMonitor()
        _run(monitor, _sine_samples())
        estimate = monitor.channels["heart_rate"].raw_estimate[0]
        cal = monitor.calibrate("heart_rate", estimate * 1.1)
        assert cal.factor == pytest.approx(1.1)

    def test_calibration_factor_clamped(self, caplog):
        monitor = VitalSignsMonitor()
        _run(monitor, _sine_samples())
        with caplog.at_level(logging.WARNING):
            cal = monitor.calibrate("heart_rate", 300.0)
        assert cal.factor == Calibration.MAX_FACTOR
        assert "clamped" in caplog.text

    def test_calibrate_rejects_bad_reference(self):
        monitor = VitalSignsMonitor()
        _run(monitor, _sine_samples())
        with pytest.raises(ConfigurationError):
            monitor.calibrate("heart_rate", -10.0)

    def test_calibration_survives_reset(self):
        monitor = VitalSignsMonitor()
        monitor.set_calibration("spo2", factor=1.05)
        monitor.reset()
        assert monitor.calibrations["spo2"].factor == 1.05

    def test_calibration_from_config(self):
        config = MonitorConfig(calibration={"hemoglobin": Calibration(factor=0.9)})
        monitor = VitalSignsMonitor(config)
        assert monitor.calibrations["hemoglobin"].factor == 0.9
        assert monitor.calibrations["spo2"].factor == 1.0
