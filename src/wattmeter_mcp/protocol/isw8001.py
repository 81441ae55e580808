"""ISW 8001 line decoding.

A measurement line carries the range tags, voltage and current, and the
reading of the active function::

    U1=0.01E+0 I1=0.0E-3   W=-0.000E+0

``VAS?`` answers with bare range indicators instead::

    U3 I1 W=200.0E+0

Tokens are matched case-sensitively. Anything unrecognised is skipped:
the manual is incomplete, and device quirks are not errors.
"""

from __future__ import annotations

import logging
import math

from ..models.measurement import IswMeasurement

logger = logging.getLogger(__name__)

# Measurement function tag -> unit. The device sends VAR in capitals.
UNIT_MAP: dict[str, str] = {
    "W": "W",
    "VAR": "VAr",
    "PF": "",
    "DCV": "V",
    "ACV": "V",
    "DCA": "A",
    "ACA": "A",
}

VOLTAGE_RANGES: dict[str, str] = {
    "U1": "50V",
    "U2": "150V",
    "U3": "500V",
}

CURRENT_RANGES: dict[str, str] = {
    "I1": "160mA",
    "I2": "1.6A",
    "I3": "16A",
    "Ix": "External",
}

_RANGE_CODES = {
    label: code
    for table in (VOLTAGE_RANGES, CURRENT_RANGES)
    for code, label in table.items()
}


def voltage_range_label(tag: str) -> str:
    return VOLTAGE_RANGES.get(tag[:2], tag)


def current_range_label(tag: str) -> str:
    return CURRENT_RANGES.get(tag[:2], tag)


def range_code(label: str) -> str:
    """Map a range label back to its tag, e.g. ``"500V"`` -> ``"U3"``.

    Labels that did not come from the lookup tables are raw tags already
    and are returned unchanged.
    """
    return _RANGE_CODES.get(label, label)


def _to_float(text: str) -> float | None:
    """Parse a device number; "nan", "inf" and the like stay text."""
    if "_" in text:
        return None
    try:
        number = float(text)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def parse_measurement(line: str, timestamp: float | None = None) -> IswMeasurement:
    """Decode one cleaned line.

    Args:
        line: A line with flow-control bytes and the CR already removed.
        timestamp: Monotonic time the line was received, if known.

    Returns:
        An ``IswMeasurement`` with whichever fields the line carried.
    """
    result = IswMeasurement(raw=line.strip(), timestamp=timestamp)

    for part in line.split():
        if "=" in part:
            tag, _, text = part.partition("=")

            if tag in UNIT_MAP:
                number = _to_float(text)
                result.function = tag
                # "overflow" and similar are genuine device output: keep verbatim
                result.value = number if number is not None else text
                result.unit = UNIT_MAP[tag]
            elif tag.startswith("U") and len(tag) >= 2:
                result.voltage_range = voltage_range_label(tag)
                result.voltage = _to_float(text)
            elif tag.startswith("I") and len(tag) >= 2:
                result.current_range = current_range_label(tag)
                result.current = _to_float(text)
            else:
                logger.debug("Ignoring token %r", part)
        elif part.startswith("U"):
            result.voltage_range = VOLTAGE_RANGES.get(part, part)
        elif part.startswith("I"):
            result.current_range = CURRENT_RANGES.get(part, part)
        else:
            logger.debug("Ignoring token %r", part)

    return result
