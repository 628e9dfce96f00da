"""
Unit tests for the sample sources (camera frame reduction, synthetic
generator) and the command-line helpers.
Run with:  pytest tests/
"""

from __future__ import annotations

import numpy as np
import pytest

from main import format_snapshot, parse_args, parse_references, run
from ppg_vitals.camera import CameraSource, lens_covered, roi_bounds
from ppg_vitals.exceptions import ConfigurationError
from ppg_vitals.synthetic import SyntheticSource, synthetic_samples, synthetic_signal
from ppg_vitals.types import VitalSignsSnapshot


def _make_frame(r, g, b, noise=0) -> np.ndarray:
    """Create a uniform-colour BGR frame with optional noise."""
    rng = np.random.default_rng(42)
    frame = np.zeros((480, 640, 3), dtype=np.uint8)
    frame[:, :, 2] = np.clip(r + rng.integers(-noise, noise + 1, (480, 640)), 0, 255)
    frame[:, :, 1] = np.clip(g + rng.integers(-noise, noise + 1, (480, 640)), 0, 255)
    frame[:, :, 0] = np.clip(b + rng.integers(-noise, noise + 1, (480, 640)), 0, 255)
    return frame


# ---------------------------------------------------------------------------
# Camera frame reduction
# ---------------------------------------------------------------------------

class TestCameraFrames:

    def test_roi_bounds_centred(self):
        assert roi_bounds((480, 640, 3), 0.5) == (120, 360, 160, 480)
        assert roi_bounds((10, 10), 0.01) == (4, 5, 4, 5)

    def test_frame_to_sample_uses_red_mean(self):
        cam = CameraSource(roi_fraction=0.5)
        frame = _make_frame(r=102, g=40, b=30)
        sample = cam.frame_to_sample(frame, timestamp_ms=33.0)
        assert sample.timestamp_ms == 33.0
        assert sample.raw_value == pytest.approx(102 / 255.0)

    def test_frame_to_sample_ignores_border(self):
        cam = CameraSource(roi_fraction=0.5)
        frame = _make_frame(r=100, g=40, b=30)
        frame[:50, :, 2] = 255
        assert cam.frame_to_sample(frame, 0.0).raw_value == pytest.approx(100 / 255.0)

    def test_covered_lens(self):
        cam = CameraSource()
        cam.frame_to_sample(_make_frame(r=80, g=40, b=30, noise=3), 0.0)
        assert cam.covered is True

    def test_bright_scene_not_covered(self):
        assert lens_covered(_make_frame(r=200, g=180, b=160, noise=20)) is False

    def test_read_before_open_raises(self):
        with pytest.raises(RuntimeError):
            CameraSource().read_frame()


# ---------------------------------------------------------------------------
# Synthetic generator
# ---------------------------------------------------------------------------

class TestSynthetic:

    def test_signal_shape_and_range(self):
        x = synthetic_signal(bpm=60.0, duration_s=2.0, fps=30.0, amplitude=0.1, dc=0.5)
        assert x.shape == (60,)
        assert x.max() == pytest.approx(0.6, abs=1e-3)
        assert x.min() == pytest.approx(0.4, abs=1e-3)

    def test_pulse_waveform_range(self):
        x = synthetic_signal(waveform="pulse", duration_s=4.0, amplitude=0.1, dc=0.5)
        assert 0.39 <= x.min() and x.max() <= 0.61

    def test_unknown_waveform(self):
        with pytest.raises(ValueError):
            synthetic_signal(waveform="square")

    def test_noise_is_seeded(self):
        a = synthetic_signal(noise_std=0.01, seed=1)
        b = synthetic_signal(noise_std=0.01, seed=1)
        assert np.array_equal(a, b)

    def test_samples_timestamps(self):
        samples = synthetic_samples(fps=30.0, duration_s=1.0)
        assert len(samples) == 30
        assert samples[1].timestamp_ms == pytest.approx(1000.0 / 30.0)

    def test_source_chunks_join_without_phase_jump(self):
        source = SyntheticSource(bpm=75.0, fps=30.0, waveform="sine", noise_std=0.0, realtime=False)
        streamed = np.array([s.raw_value for s in source.samples(3.0)])
        direct = synthetic_signal(bpm=75.0, duration_s=3.0, fps=30.0, waveform="sine")
        assert streamed.shape == direct.shape
        assert np.allclose(streamed, direct)


# ---------------------------------------------------------------------------
# CLI helpers
# ---------------------------------------------------------------------------

class TestCli:

    def test_parse_references(self):
        assert parse_references(["heart_rate=72", "spo2=97.5"]) == {"heart_rate": 72.0, "spo2": 97.5}

    def test_parse_references_rejects_bad_items(self):
        for item in ("heart_rate", "cortisol=3", "arrhythmia=1", "spo2=high"):
            with pytest.raises(ConfigurationError):
                parse_references([item])

    def test_format_snapshot(self):
        snap = VitalSignsSnapshot(heart_rate=72.4, spo2=97.0, lipids={"total_cholesterol": 180.0})
        line = format_snapshot(snap, finger=True)
        assert "finger=yes" in line
        assert "HR=72.4" in line
        assert "BP=--/--" in line
        assert "chol=180" in line
        assert "tg=--" in line

    def test_bad_reference_exit_code(self):
        assert run(parse_args(["--synthetic", "--reference", "nope"])) == 2

    def test_synthetic_run(self, caplog):
        args = parse_args(["--synthetic", "--fast", "--duration", "6", "--reference", "heart_rate=80"])
        with caplog.at_level("INFO", logger="ppg_vitals"):
            assert run(args) == 0
        assert "Final:" in caplog.text
        assert "Calibration for heart_rate" in caplog.text
