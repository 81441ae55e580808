"""Decoded measurement records for both meters."""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Union

# The ISW 8001 prints this instead of a number when a reading is out of range
OVERFLOW = "overflow"

# A function reading: a number, or the device's text verbatim (e.g. "overflow")
Reading = Union[float, str]


@dataclass
class IswMeasurement:
    """One decoded ISW 8001 line. Every field is optional."""

    function: str | None = None  # W, VAR, PF, DCV, ACV, DCA, ACA
    value: Reading | None = None
    unit: str | None = None
    voltage_range: str | None = None
    voltage: float | None = None
    current_range: str | None = None
    current: float | None = None
    raw: str = ""
    timestamp: float | None = None

    @property
    def is_overflow(self) -> bool:
        return self.value == OVERFLOW

    @property
    def has_value(self) -> bool:
        return self.value is not None

    def to_dict(self) -> dict:
        return {
            "function": self.function,
            "value": self.value,
            "unit": self.unit,
            "voltage_range": self.voltage_range,
            "voltage": self.voltage,
            "current_range": self.current_range,
            "current": self.current,
            "raw": self.raw,
            "timestamp": self.timestamp,
        }


@dataclass
class MpmMeasurement:
    """One decoded MPM-1010 frame.

    A quantity is ``None`` when the frame was cut short before its four
    bytes arrived, never zero.
    """

    voltage: float | None = None  # V
    current: float | None = None  # mA
    power: float | None = None  # W
    power_factor: float | None = None
    frequency: float | None = None  # Hz
    timestamp: float | None = None  # when the frame's marker arrived
    partial: bool = False

    UNITS: ClassVar[dict[str, str]] = {
        "voltage": "V",
        "current": "mA",
        "power": "W",
        "power_factor": "",
        "frequency": "Hz",
    }

    def to_dict(self) -> dict:
        return {
            "voltage": self.voltage,
            "current": self.current,
            "power": self.power,
            "power_factor": self.power_factor,
            "frequency": self.frequency,
            "timestamp": self.timestamp,
            "partial": self.partial,
        }


@dataclass
class DeviceIdentity:
    """Identification strings reported by a meter."""

    name: str
    version: str | None = None

    def to_dict(self) -> dict:
        return {"name": self.name, "version": self.version}
