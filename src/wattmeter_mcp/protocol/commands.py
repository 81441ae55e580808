"""Command vocabulary and builders for both meters.

The ISW 8001 takes case-insensitive ASCII commands terminated by CR.
Queries (ending in ``?``) are answered with one CR-terminated line;
setters are never acknowledged.

The MPM-1010 understands a single request byte, ``?``, answered with a
marker-prefixed measurement frame.
"""

from __future__ import annotations

from enum import Enum

TERMINATOR = b"\r"


class Command(str, Enum):
    """ISW 8001 commands."""

    IDENTIFY = "*IDN?"
    VERSION = "VERSION?"
    VALUE = "VAL?"
    STATUS_AND_VALUE = "VAS?"
    STATUS = "STATUS?"
    AUTO_MODE_ON = "MA1"
    AUTO_MODE_OFF = "MA0"
    AUTO_RANGE = "AUTORANGE"
    MANUAL_RANGE = "MANUAL"


# Functions selectable over serial. Power factor can only be chosen on the
# front panel.
FUNCTIONS = ("WATT", "VAR", "VOLT", "AMP")

RANGE_NUMBERS = (1, 2, 3)

MPM_REQUEST = b"?"


def encode_command(command: str) -> bytes:
    """Encode an ISW 8001 command for the wire."""
    return command.encode("ascii") + TERMINATOR


def is_query(command: str) -> bool:
    return command.strip().endswith("?")


def build_set_function(function: str) -> str:
    """Build a measurement-function command.

    Args:
        function: One of WATT, VAR, VOLT, AMP (any case).
    """
    name = function.strip().upper()
    if name not in FUNCTIONS:
        raise ValueError(
            f"Invalid function '{function}'. Must be one of: {', '.join(FUNCTIONS)}"
        )
    return name


def build_set_voltage_range(range_no: int) -> str:
    """Build a voltage-range command.

    Args:
        range_no: 1 (50V), 2 (150V) or 3 (500V).
    """
    if range_no not in RANGE_NUMBERS:
        raise ValueError(
            f"Invalid voltage range {range_no}. Must be 1 (50V), 2 (150V), or 3 (500V)"
        )
    return f"SET:U{range_no}"


def build_set_current_range(range_no: int) -> str:
    """Build a current-range command.

    Args:
        range_no: 1 (160mA), 2 (1.6A) or 3 (16A).
    """
    if range_no not in RANGE_NUMBERS:
        raise ValueError(
            f"Invalid current range {range_no}. Must be 1 (160mA), 2 (1.6A), or 3 (16A)"
        )
    return f"SET:I{range_no}"
