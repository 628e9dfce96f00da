"""
Derived-vitals channels.

Every channel exposes ``process(window, rr)``, ``get_result()``,
``quality_metrics()`` and ``reset()``.
"""

from __future__ import annotations

from typing import Dict, Mapping, Optional, Type, Union

from ppg_vitals.channels.arrhythmia import ArrhythmiaChannel
from ppg_vitals.channels.base import Channel
from ppg_vitals.channels.blood_pressure import BloodPressureChannel
from ppg_vitals.channels.glucose import GlucoseChannel
from ppg_vitals.channels.heart_rate import HeartRateChannel
from ppg_vitals.channels.hemoglobin import HemoglobinChannel
from ppg_vitals.channels.hydration import HydrationChannel
from ppg_vitals.channels.lipids import LipidChannel
from ppg_vitals.channels.spo2 import SpO2Channel
from ppg_vitals.config import Calibration, ChannelConfig

AnyChannel = Union[Channel, ArrhythmiaChannel]

CHANNEL_CLASSES: Dict[str, Type] = {
    cls.name: cls
    for cls in (
        HeartRateChannel,
        SpO2Channel,
        BloodPressureChannel,
        GlucoseChannel,
        LipidChannel,
        HemoglobinChannel,
        HydrationChannel,
        ArrhythmiaChannel,
    )
}


def build_channels(
    configs: Optional[Mapping[str, ChannelConfig]] = None,
    calibrations: Optional[Mapping[str, Calibration]] = None,
) -> Dict[str, AnyChannel]:
    """Instantiate one channel per known name, applying per-channel overrides."""
    configs = configs or {}
    calibrations = calibrations or {}
    return {
        name: cls(config=configs.get(name), calibration=calibrations.get(name))
        for name, cls in CHANNEL_CLASSES.items()
    }


__all__ = [
    "AnyChannel",
    "ArrhythmiaChannel",
    "BloodPressureChannel",
    "CHANNEL_CLASSES",
    "Channel",
    "GlucoseChannel",
    "HeartRateChannel",
    "HemoglobinChannel",
    "HydrationChannel",
    "LipidChannel",
    "SpO2Channel",
    "build_channels",
]
