"""MPM-1010 frame decoding.

The 20 payload bytes hold five 4-digit groups: voltage (V), current (mA),
power (W), power factor and frequency (Hz). Each byte encodes one digit::

    bit  7 6 5 4 3 2 1 0
         +-------+-------+
         | point | digit |
         +-------+-------+

The low nibble is the digit. A high nibble of exactly 1 means a decimal
point follows the digit, so ``02 04 12 03`` reads ``242.3``.
"""

from __future__ import annotations

import logging

from ..models.measurement import MpmMeasurement
from .framing import PAYLOAD_SIZE

logger = logging.getLogger(__name__)

GROUP_SIZE = 4
FIELDS = ("voltage", "current", "power", "power_factor", "frequency")


def decode_digits(group: bytes) -> float | None:
    """Decode one digit group, or return ``None`` if it is not a number."""
    text = ""
    for byte in group:
        digit = byte & 0x0F
        if digit > 9:
            return None
        text += str(digit)
        if byte >> 4 == 1:
            text += "."
    if text.count(".") > 1:
        return None
    return float(text)


def parse_measurement(payload: bytes, timestamp: float | None = None) -> MpmMeasurement:
    """Decode the payload of one frame (marker stripped).

    Only groups whose four bytes are all present are decoded, so a frame
    cut short by a new request still yields its leading quantities.

    Args:
        payload: Up to 20 payload bytes.
        timestamp: Monotonic time the frame's marker arrived.
    """
    result = MpmMeasurement(timestamp=timestamp, partial=len(payload) < PAYLOAD_SIZE)

    for index, name in enumerate(FIELDS):
        group = payload[index * GROUP_SIZE : (index + 1) * GROUP_SIZE]
        if len(group) < GROUP_SIZE:
            break
        value = decode_digits(group)
        if value is None:
            logger.debug("Undecodable %s digits: %s", name, group.hex(" "))
            continue
        setattr(result, name, value)

    return result
