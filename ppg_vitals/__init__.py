"""
PPG Vitals: finger-on-camera photoplethysmography processing.

A single optical intensity sample per camera frame is conditioned, searched
for heartbeats, scored for signal quality, gated by a finger-presence state
machine and fanned out to a set of confidence-gated vital-sign channels.
"""

from ppg_vitals.monitor import TickResult, VitalSignsMonitor
from ppg_vitals.types import (
    Beat,
    ChannelResult,
    ConditionedSample,
    PresenceState,
    Sample,
    VitalSignsSnapshot,
)

__version__ = "0.1.0"

__all__ = [
    "Beat",
    "ChannelResult",
    "ConditionedSample",
    "PresenceState",
    "Sample",
    "TickResult",
    "VitalSignsMonitor",
    "VitalSignsSnapshot",
]
