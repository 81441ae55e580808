"""Device drivers: one per meter protocol."""

from __future__ import annotations

from typing import Callable

from ..config import isw8001_config, mpm1010_config
from ..transport.serial_connection import SerialConfig
from .base import MeterDriver
from .isw8001 import ISW8001Driver
from .mpm1010 import MPM1010Driver

# Device key -> (driver class, default serial settings factory)
DRIVERS: dict[str, tuple[type[MeterDriver], Callable[..., SerialConfig]]] = {
    "isw8001": (ISW8001Driver, isw8001_config),
    "mpm1010": (MPM1010Driver, mpm1010_config),
}
