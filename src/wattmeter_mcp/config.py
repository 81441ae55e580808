"""Environment-driven defaults for serial ports and logging."""

from __future__ import annotations

import os

from .transport.serial_connection import SerialConfig

# Serial ports ("COM3" on Windows, "/dev/ttyUSB0" or "/dev/tty.usbserial-*" elsewhere)
ISW8001_PORT = os.getenv("ISW8001_PORT", "/dev/ttyUSB0")
ISW8001_BAUD = int(os.getenv("ISW8001_BAUD", "9600"))  # device supports 1200 or 9600
MPM1010_PORT = os.getenv("MPM1010_PORT", ISW8001_PORT)
MPM1010_BAUD = int(os.getenv("MPM1010_BAUD", "9600"))

# Time the meters need after the port opens before they accept commands
INIT_DELAY_MS = int(os.getenv("WATTMETER_INIT_DELAY_MS", "500"))

LOG_LEVEL = "DEBUG" if os.getenv("DEBUG") else os.getenv("WATTMETER_LOG_LEVEL", "INFO").upper()


def isw8001_config(port: str | None = None, baudrate: int | None = None) -> SerialConfig:
    """Serial settings for the ISW 8001 (8N1, software flow control)."""
    return SerialConfig(
        port=port or ISW8001_PORT,
        baudrate=baudrate or ISW8001_BAUD,
        xonxoff=True,
        init_delay_ms=INIT_DELAY_MS,
    )


def mpm1010_config(port: str | None = None, baudrate: int | None = None) -> SerialConfig:
    """Serial settings for the MPM-1010 (8N1, no flow control).

    XON/XOFF must stay off: measurement bytes 0x11 and 0x13 are legitimate
    digits ("1." and "3.") and would be swallowed by the UART.
    """
    return SerialConfig(
        port=port or MPM1010_PORT,
        baudrate=baudrate or MPM1010_BAUD,
        xonxoff=False,
        init_delay_ms=INIT_DELAY_MS,
    )
