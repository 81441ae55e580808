"""Data models for decoded measurements and device state."""

from .measurement import (
    OVERFLOW,
    DeviceIdentity,
    IswMeasurement,
    MpmMeasurement,
)
from .state import MeterState
