"""Stream framers for both meter protocols.

Serial chunks arrive with arbitrary boundaries, so each framer owns a byte
buffer that grows on receipt and is trimmed from the front as frames are
extracted. Bytes are never reordered or duplicated.

ISW 8001 (ASCII) line::

    +--------------------------------------+----+
    | TAG=VALUE TAG=VALUE ... (XON/XOFF)   | CR |
    +--------------------------------------+----+

MPM-1010 (binary) reply::

    +--------+---------+---------+---------+---------+---------+
    | Marker | Voltage | Current |  Power  |   PF    |  Freq   |
    | 0x21   | 4 bytes | 4 bytes | 4 bytes | 4 bytes | 4 bytes |
    +--------+---------+---------+---------+---------+---------+

Any trailing byte after the frequency group is dropped along with other
bytes that do not follow a marker.

A new request makes the MPM-1010 abandon the reply in flight and start a
fresh one, so a frame ends at the next marker or after 21 bytes, whichever
comes first.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass

logger = logging.getLogger(__name__)

CR = 0x0D
XON = 0x11
XOFF = 0x13
MAX_LINE_BYTES = 4096

MARKER = 0x21  # '!'
FRAME_SIZE = 21  # marker + 20 payload bytes
PAYLOAD_SIZE = FRAME_SIZE - 1
MIN_PAYLOAD = 12  # voltage + current + power

_FLOW_CONTROL = bytes([XON, XOFF])


def clean_line(raw: bytes) -> str:
    """Strip XON/XOFF bytes and surrounding whitespace from a raw line."""
    return raw.translate(None, _FLOW_CONTROL).decode("ascii", errors="replace").strip()


class LineFramer:
    """Splits the ISW 8001 byte stream into CR-terminated text lines."""

    def __init__(self) -> None:
        self._buffer = bytearray()

    def __len__(self) -> int:
        return len(self._buffer)

    def feed(self, data: bytes) -> list[str]:
        """Append a chunk and return every complete, non-empty line.

        A trailing partial line stays buffered until its CR arrives.
        """
        self._buffer += data
        lines: list[str] = []
        while True:
            end = self._buffer.find(CR)
            if end < 0:
                break
            raw = bytes(self._buffer[:end])
            del self._buffer[: end + 1]
            line = clean_line(raw)
            if line:
                lines.append(line)

        if len(self._buffer) > MAX_LINE_BYTES:
            logger.warning(
                "Discarding %d bytes without CR (wrong baud rate?)", len(self._buffer)
            )
            self._buffer.clear()
        return lines

    def clear(self) -> None:
        self._buffer.clear()


@dataclass
class Frame:
    """One MPM-1010 reply: the bytes between its marker and the frame end."""

    payload: bytes
    started_at: float | None = None  # when the marker arrived
    truncated: bool = False

    def __len__(self) -> int:
        return len(self.payload)

    def __repr__(self) -> str:
        return (
            f"Frame(payload={self.payload.hex(' ') if self.payload else '(empty)'}, "
            f"truncated={self.truncated})"
        )


class MarkerFramer:
    """Extracts marker-delimited MPM-1010 frames from the byte stream.

    Usage::

        framer.feed(chunk, now)
        while (frame := framer.next_frame()) is not None:
            handle(frame)
    """

    def __init__(self) -> None:
        self._buffer = bytearray()
        # Arrival time of every marker byte still in the buffer, oldest first
        self._marker_times: deque[float | None] = deque()

    def __len__(self) -> int:
        return len(self._buffer)

    def feed(self, data: bytes, now: float | None = None) -> None:
        """Append a chunk received at monotonic time ``now``."""
        self._buffer += data
        self._marker_times.extend([now] * data.count(MARKER))

    def has_marker(self) -> bool:
        return MARKER in self._buffer

    def buffered_payload(self) -> int:
        """Payload bytes buffered after the first marker, or 0 without one."""
        start = self._buffer.find(MARKER)
        if start < 0:
            return 0
        return len(self._buffer) - start - 1

    def next_frame(self) -> Frame | None:
        """Extract the next frame, or return ``None`` if more data is needed.

        The frame ends just before the next marker (the device was
        interrupted by a new request) or after ``PAYLOAD_SIZE`` bytes.
        A following marker is never consumed.
        """
        start = self._buffer.find(MARKER)
        if start < 0:
            if self._buffer:
                logger.debug("Discarding %d bytes without marker", len(self._buffer))
                self._buffer.clear()
            return None
        if start > 0:
            logger.debug("Discarding %d bytes before marker", start)
            del self._buffer[:start]

        following = self._buffer.find(MARKER, 1, FRAME_SIZE)
        if following >= 0:
            end = following
        elif len(self._buffer) >= FRAME_SIZE:
            end = FRAME_SIZE
        else:
            return None

        frame = Frame(
            payload=bytes(self._buffer[1:end]),
            started_at=self._marker_times.popleft() if self._marker_times else None,
            truncated=end < FRAME_SIZE,
        )
        del self._buffer[:end]
        return frame

    def clear(self) -> None:
        self._buffer.clear()
        self._marker_times.clear()
