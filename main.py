#!/usr/bin/env python3
"""
PPG vital-signs monitor – main entry point.

Usage
-----
    python main.py [OPTIONS]

Options
-------
    --synthetic          Use the synthetic PPG generator instead of a camera
    --bpm FLOAT          Synthetic heart rate (default: 75)
    --fast               Generate synthetic samples as fast as possible
    --duration FLOAT     Stop after this many seconds (default: run forever)
    --fps INT            Sampling / frame rate (default: from config, 30)
    --config PATH        YAML file with configuration overrides
    --camera-index INT   OpenCV camera index (fallback, default: 0)
    --reference CH=VAL   Calibrate a channel against a reference reading
                         once a first estimate exists (repeatable)
    --verbose            Debug logging

A snapshot line is logged once per second.  Press Ctrl+C to stop.
"""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Dict, Iterator, List

from ppg_vitals.config import CHANNEL_NAMES, MonitorConfig
from ppg_vitals.exceptions import ConfigurationError
from ppg_vitals.monitor import VitalSignsMonitor
from ppg_vitals.types import Sample, VitalSignsSnapshot

logger = logging.getLogger("ppg_vitals")


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="PPG vital-signs monitor (camera or synthetic signal)",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--synthetic", action="store_true",
                        help="Use the synthetic signal generator")
    parser.add_argument("--bpm", type=float, default=75.0,
                        help="Heart rate of the synthetic signal")
    parser.add_argument("--fast", action="store_true",
                        help="Do not pace the synthetic signal in real time")
    parser.add_argument("--duration", type=float, default=None,
                        help="Stop after this many seconds")
    parser.add_argument("--fps", type=int, default=None,
                        help="Sampling / capture frame rate (overrides the config file)")
    parser.add_argument("--config", type=Path, default=None,
                        help="YAML configuration overrides")
    parser.add_argument("--camera-index", type=int, default=0,
                        help="OpenCV VideoCapture index (fallback)")
    parser.add_argument("--reference", action="append", default=[], metavar="CH=VAL",
                        help="Reference reading used to calibrate a channel")
    parser.add_argument("--verbose", action="store_true",
                        help="Enable debug logging")
    return parser.parse_args(argv)


def parse_references(items: List[str]) -> Dict[str, float]:
    references: Dict[str, float] = {}
    for item in items:
        name, sep, value = item.partition("=")
        name = name.strip()
        if not sep or name not in CHANNEL_NAMES or name == "arrhythmia":
            raise ConfigurationError(f"expected CH=VAL with a calibratable channel, got {item!r}",
                                     field="reference")
        try:
            references[name] = float(value)
        except ValueError as exc:
            raise ConfigurationError(f"invalid reference value in {item!r}",
                                     field="reference") from exc
    return references


def format_snapshot(snap: VitalSignsSnapshot, finger: bool) -> str:
    def fmt(value, spec: str = ".0f") -> str:
        return "--" if value is None else format(value, spec)

    lipids = snap.lipids or {}
    return (
        f"finger={'yes' if finger else 'no'}  "
        f"HR={fmt(snap.heart_rate, '.1f')}  avg={fmt(snap.average_bpm, '.1f')}  "
        f"HRV={fmt(snap.heart_rate_variability, '.1f')}ms  SpO2={fmt(snap.spo2)}%  "
        f"BP={snap.pressure}  rhythm={snap.arrhythmia_status or '--'}({snap.arrhythmia_count})  "
        f"glu={fmt(snap.glucose)}  chol={fmt(lipids.get('total_cholesterol'))}  "
        f"tg={fmt(lipids.get('triglycerides'))}  Hb={fmt(snap.hemoglobin, '.1f')}  "
        f"hyd={fmt(snap.hydration)}%  conf={snap.overall_confidence:.2f}"
    )


# ---------------------------------------------------------------------------
# Main loop
# ---------------------------------------------------------------------------

def _samples(args: argparse.Namespace, fps: float) -> Iterator[Sample]:
    if args.synthetic:
        from ppg_vitals.synthetic import SyntheticSource

        source = SyntheticSource(bpm=args.bpm, fps=fps, realtime=not args.fast)
        yield from source.samples(args.duration)
        return

    from ppg_vitals.camera import CameraSource

    with CameraSource(fps=int(fps), camera_index=args.camera_index) as camera:
        for sample in camera.samples():
            if args.duration is not None and sample.timestamp_ms >= args.duration * 1000.0:
                break
            yield sample


def run(args: argparse.Namespace) -> int:
    try:
        config = MonitorConfig.from_yaml(args.config) if args.config else MonitorConfig()
        if args.fps is not None:
            config = replace(config, fps=float(args.fps))
        references = parse_references(args.reference)
    except ConfigurationError as exc:
        logger.error("Invalid configuration: %s", exc.to_dict())
        return 2

    logger.info("Starting vital-signs monitor (%s source).  Press Ctrl+C to quit.",
                "synthetic" if args.synthetic else "camera")

    next_log_ms = 1000.0
    with VitalSignsMonitor(config) as monitor:
        try:
            for sample in _samples(args, config.fps):
                tick = monitor.process_sample(sample)

                for name in list(references):
                    if monitor.channels[name].raw_estimate is not None:
                        monitor.calibrate(name, references.pop(name))

                if sample.timestamp_ms >= next_log_ms:
                    next_log_ms += 1000.0
                    logger.info("%s", format_snapshot(monitor.snapshot(), tick.finger_detected))
        except KeyboardInterrupt:
            logger.info("Interrupted.")
        except ConfigurationError as exc:
            logger.error("Calibration failed: %s", exc.to_dict())
            return 2
        except RuntimeError as exc:
            logger.error("%s", exc)
            return 1

        logger.info("Final: %s", format_snapshot(monitor.snapshot(), monitor.finger_detected))
    return 0


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s – %(message)s",
        datefmt="%H:%M:%S",
    )
    return run(args)


if __name__ == "__main__":
    sys.exit(main())
