"""Last-known ISW 8001 settings, tracked from the traffic the driver sees."""

from __future__ import annotations

from dataclasses import dataclass

from .measurement import IswMeasurement


@dataclass
class MeterState:
    """Function and range settings as last reported by the meter.

    Settings changed on the front panel are only picked up with the next
    line the meter sends, so this may lag behind the device.
    """

    function: str | None = None
    voltage_range: str | None = None
    current_range: str | None = None
    auto_range: bool | None = None
    auto_mode: bool = False
    updated_at: float | None = None

    def update(self, measurement: IswMeasurement) -> None:
        """Merge the settings carried by a decoded line."""
        if measurement.function is not None:
            self.function = measurement.function
        if measurement.voltage_range is not None:
            self.voltage_range = measurement.voltage_range
        if measurement.current_range is not None:
            self.current_range = measurement.current_range
        if measurement.timestamp is not None:
            self.updated_at = measurement.timestamp

    def to_dict(self) -> dict:
        return {
            "function": self.function,
            "voltage_range": self.voltage_range,
            "current_range": self.current_range,
            "auto_range": self.auto_range,
            "auto_mode": self.auto_mode,
            "updated_at": self.updated_at,
        }
