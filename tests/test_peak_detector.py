"""
Unit tests for PeakDetector and OracleRunner.
Run with:  pytest tests/
"""

from __future__ import annotations

from concurrent.futures import Executor, Future

import numpy as np
import pytest

from ppg_vitals.config import PeakDetectorConfig
from ppg_vitals.peak_detector import OracleRunner, PeakDetector, PeakOracle
from ppg_vitals.types import ConditionedSample, RR_MAX_MS, RR_MIN_MS


def _samples(values, fps: float = 30.0, start: int = 0):
    return [
        ConditionedSample(
            timestamp_ms=(start + i) * 1000.0 / fps,
            raw_value=0.5 + float(v),
            ac_value=float(v),
            dc_baseline=0.5,
            filtered_value=float(v),
        )
        for i, v in enumerate(values)
    ]


def _sine(freq_hz: float, seconds: float, fps: float = 30.0, amplitude: float = 0.1):
    t = np.arange(int(seconds * fps)) / fps
    return amplitude * np.sin(2 * np.pi * freq_hz * t)


def _beats(detector: PeakDetector, values, fps: float = 30.0):
    out = []
    for s in _samples(values, fps):
        beat = detector.detect(s)
        if beat is not None:
            out.append(beat)
    return out


class _InlineExecutor(Executor):
    """Runs every task synchronously in the caller's thread."""

    def submit(self, fn, *args, **kwargs):
        future: Future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as exc:  # noqa: BLE001
            future.set_exception(exc)
        return future


class _ManualExecutor(Executor):
    """Holds tasks until :meth:`run_all` is called."""

    def __init__(self):
        self.tasks = []

    def submit(self, fn, *args, **kwargs):
        future: Future = Future()
        future.set_running_or_notify_cancel()
        self.tasks.append((future, fn, args))
        return future

    def run_all(self):
        for future, fn, args in self.tasks:
            future.set_result(fn(*args))
        self.tasks = []


class _ConstantOracle:
    def __init__(self, score: float):
        self.score = score
        self.calls = 0

    def predict(self, window: np.ndarray) -> float:
        self.calls += 1
        return self.score


class _FailingOracle:
    def predict(self, window: np.ndarray) -> float:
        raise RuntimeError("model not loaded")


# ---------------------------------------------------------------------------
# Local-maximum detection
# ---------------------------------------------------------------------------

class TestPeakDetector:

    def test_constant_signal_yields_no_beats(self):
        assert _beats(PeakDetector(), np.zeros(300)) == []

    def test_waits_for_min_samples(self):
        d = PeakDetector()
        for s in _samples(_sine(1.0, 0.3)):
            assert d.detect(s) is None

    def test_rr_matches_period(self):
        for freq in (1.0, 1.25, 1.5, 2.0):
            beats = _beats(PeakDetector(), _sine(freq, 20.0))
            rr = [b.rr_interval_ms for b in beats if b.rr_interval_ms is not None]
            assert len(rr) >= 15
            expected = 1000.0 / freq
            error = abs(np.mean(rr) - expected) / expected
            assert error < 0.05, f"{freq} Hz: mean RR off by {error:.1%}"

    def test_first_beat_has_no_rr(self):
        beats = _beats(PeakDetector(), _sine(1.25, 5.0))
        assert beats[0].rr_interval_ms is None
        assert beats[0].instant_bpm is None
        assert beats[1].instant_bpm == pytest.approx(75.0, rel=0.05)

    def test_min_interval_enforced(self):
        # 4 Hz is faster than the 300 ms refractory distance allows
        beats = _beats(PeakDetector(), _sine(4.0, 10.0))
        gaps = np.diff([b.timestamp_ms for b in beats])
        assert len(beats) > 5
        assert gaps.min() >= 300.0

    def test_rr_history_bounded_and_in_range(self):
        rng = np.random.default_rng(0)
        values = np.concatenate([_sine(1.2, 20.0), rng.normal(0.0, 0.05, 900), _sine(0.7, 20.0)])
        d = PeakDetector()
        _beats(d, values)
        rr = d.rr_history.values()
        assert 0 < len(rr) <= d.rr_history.capacity
        assert all(RR_MIN_MS <= v <= RR_MAX_MS for v in rr)

    def test_rr_dropped_after_long_gap(self):
        values = np.concatenate([_sine(1.0, 5.0), np.zeros(90), _sine(1.0, 5.0)])
        beats = _beats(PeakDetector(), values)
        after_gap = [b for b in beats if b.timestamp_ms > 8000.0]
        assert after_gap[0].rr_interval_ms is None
        assert after_gap[1].rr_interval_ms == pytest.approx(1000.0, rel=0.05)

    def test_confidence_rises_with_regular_rhythm(self):
        beats = _beats(PeakDetector(), _sine(1.25, 10.0))
        assert beats[0].confidence == pytest.approx(0.6)
        assert beats[1].confidence == pytest.approx(0.8)
        assert beats[-1].confidence == pytest.approx(1.0)

    def test_implausible_rate_lowers_confidence(self):
        d = PeakDetector(PeakDetectorConfig(min_interval_ms=250.0))
        beats = _beats(d, _sine(200.0 / 60.0, 10.0))
        # Regular rhythm (+step), implausible rate (-step)
        assert beats[-1].confidence == pytest.approx(0.6)

    def test_reset_clears_history(self):
        d = PeakDetector()
        _beats(d, _sine(1.25, 5.0))
        assert len(d.rr_history) > 0
        d.reset()
        assert len(d.rr_history) == 0
        assert d.last_beat_ms is None
        assert _beats(d, _sine(1.25, 5.0))[0].rr_interval_ms is None


# ---------------------------------------------------------------------------
# Oracle blending
# ---------------------------------------------------------------------------

class TestOracleBlending:

    def test_protocol_is_structural(self):
        assert isinstance(_ConstantOracle(0.5), PeakOracle)

    def test_oracle_cannot_create_beats(self):
        d = PeakDetector(oracles=[_ConstantOracle(1.0)], executor=_InlineExecutor())
        assert _beats(d, np.zeros(300)) == []
        assert d.has_oracle

    def test_low_score_suppresses_local_maxima(self):
        d = PeakDetector(oracles=[_ConstantOracle(0.0)], executor=_InlineExecutor())
        beats = _beats(d, _sine(1.25, 10.0))
        # Only beats found before the oracle had a full window survive
        assert all(b.timestamp_ms < 1100.0 for b in beats)
        assert d.suppressed > 5

    def test_score_blended_into_confidence(self):
        d = PeakDetector(oracles=[_ConstantOracle(0.5)], executor=_InlineExecutor())
        beats = _beats(d, _sine(1.25, 10.0))
        # 0.6 * 1.0 + 0.4 * 0.5
        assert beats[-1].confidence == pytest.approx(0.8)

    def test_failing_oracle_falls_back_to_rules(self):
        values = _sine(1.25, 10.0)
        plain = _beats(PeakDetector(), values)
        d = PeakDetector(oracles=[_FailingOracle()], executor=_InlineExecutor())
        with_oracle = _beats(d, values)
        assert [b.timestamp_ms for b in with_oracle] == [b.timestamp_ms for b in plain]
        assert [b.confidence for b in with_oracle] == [b.confidence for b in plain]
        assert d.oracle_failures > 0


class TestOracleRunner:

    def test_result_becomes_latest(self):
        ex = _ManualExecutor()
        runner = OracleRunner(_ConstantOracle(0.9), executor=ex)
        assert runner.submit(np.zeros(32))
        assert runner.latest() is None
        ex.run_all()
        assert runner.latest() == pytest.approx(0.9)

    def test_busy_oracle_skips_windows(self):
        ex = _ManualExecutor()
        runner = OracleRunner(_ConstantOracle(0.9), executor=ex)
        assert runner.submit(np.zeros(32))
        assert not runner.submit(np.zeros(32))
        assert len(ex.tasks) == 1

    def test_late_result_after_cancel_is_ignored(self):
        ex = _ManualExecutor()
        runner = OracleRunner(_ConstantOracle(0.9), executor=ex)
        runner.submit(np.zeros(32))
        runner.cancel()
        ex.run_all()
        assert runner.latest() is None

    def test_non_finite_score_counts_as_failure(self):
        runner = OracleRunner(_ConstantOracle(float("nan")), executor=_InlineExecutor())
        runner.submit(np.zeros(32))
        assert runner.latest() is None
        assert runner.failures == 1

    def test_score_clamped_to_unit_range(self):
        runner = OracleRunner(_ConstantOracle(3.0), executor=_InlineExecutor())
        runner.submit(np.zeros(32))
        assert runner.latest() == 1.0
