"""ISW 8001 digital wattmeter driver (RS232, ASCII, XON/XOFF).

Queries are answered with a single CR-terminated line. In automatic mode
(``MA1``) the meter also pushes a measurement line roughly every 470 ms.
Both kinds of line travel the same path: every line is decoded, broadcast
to subscribers while auto mode is on, and handed to the oldest outstanding
query (or parked as unclaimed if there is none).

Usage::

    meter = ISW8001Driver()
    await meter.open()
    print(await meter.get_value())
    meter.subscribe(print)
    await meter.enable_auto_mode()
    ...
    await meter.close()
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque

from ..config import isw8001_config
from ..models.measurement import DeviceIdentity, IswMeasurement
from ..models.state import MeterState
from ..protocol.commands import (
    Command,
    build_set_current_range,
    build_set_function,
    build_set_voltage_range,
    encode_command,
)
from ..protocol.framing import LineFramer
from ..protocol.isw8001 import parse_measurement
from ..transport.serial_connection import SerialConfig, open_serial
from .base import MeterDriver

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 1000
IDENTIFY_TIMEOUT_MS = 2000

# The meter never acknowledges setters; these are the times it needs to apply them
FUNCTION_SETTLE_MS = 200
SETTLE_MS = 100

MAX_UNCLAIMED_LINES = 32


class ISW8001Driver(MeterDriver):
    """Command/response and push-mode driver for the ISW 8001."""

    name = "ISW8001"

    def __init__(self, config: SerialConfig | None = None) -> None:
        super().__init__(config or isw8001_config())
        self._framer = LineFramer()
        self._waiters: deque[asyncio.Future[IswMeasurement]] = deque()
        self._unclaimed: deque[str] = deque(maxlen=MAX_UNCLAIMED_LINES)
        self.state = MeterState()

    @property
    def unclaimed_lines(self) -> list[str]:
        """Lines that arrived while no query was waiting."""
        return list(self._unclaimed)

    # --- connection --------------------------------------------------------

    async def open(self) -> None:
        """Open the port and give the meter time to initialise.

        Raises:
            ConnectionError: If the port cannot be opened.
        """
        if self.connected:
            return
        self._connection = await open_serial(self.config, self.feed)
        await self._sleep_ms(self.config.init_delay_ms)

    async def close(self) -> None:
        """Leave auto mode if needed, then close the port.

        Queries still waiting are left to run into their own timeouts.
        """
        if self._connection is None:
            return
        if self.auto_mode_enabled and self._connection.connected:
            await self.disable_auto_mode()
        # Also when the port already dropped and MA0 could not be sent
        self.auto_mode_enabled = False
        await self._connection.close()
        self._connection = None
        self._framer.clear()
        self._unclaimed.clear()
        self.state = MeterState()

    # --- inbound -----------------------------------------------------------

    def feed(self, data: bytes) -> None:
        for line in self._framer.feed(data):
            self._handle_line(line)

    def decode(self, frame: str) -> IswMeasurement:
        return parse_measurement(frame, timestamp=time.monotonic())

    def _handle_line(self, line: str) -> None:
        logger.debug("← %s", line)
        measurement = self.decode(line)
        self.state.update(measurement)

        if self.auto_mode_enabled and measurement.has_value:
            self._emit(measurement)

        # Oldest live query gets the line
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(measurement)
                return
        self._unclaimed.append(line)

    # --- outbound ----------------------------------------------------------

    def send_command(self, command: str) -> None:
        """Transmit a command without waiting for anything.

        Raises:
            ConnectionError: If not connected.
        """
        connection = self._require_connection()
        logger.debug("→ %s", command)
        connection.write(encode_command(command))

    async def query(self, command: str, timeout_ms: int = DEFAULT_TIMEOUT_MS) -> str:
        """Send a command and return the next line the meter sends.

        Callers should not overlap queries. If they do, replies are handed
        out first come, first served.

        Raises:
            ConnectionError: If not connected.
            TimeoutError: If no line arrives within ``timeout_ms``.
        """
        reply = await self._exchange(command, timeout_ms)
        return reply.raw

    async def _exchange(self, command: str, timeout_ms: int) -> IswMeasurement:
        """Send ``command`` and wait for the reply, decoded when it arrived."""
        self._require_connection()
        self._unclaimed.clear()

        waiter: asyncio.Future[IswMeasurement] = asyncio.get_running_loop().create_future()
        if any(not w.done() for w in self._waiters):
            logger.warning("Query %r issued while another is still pending", command)
        self._waiters.append(waiter)

        try:
            self.send_command(command)
            return await asyncio.wait_for(waiter, timeout_ms / 1000)
        except asyncio.TimeoutError:
            raise TimeoutError(f"Timeout waiting for response to {command!r}") from None
        finally:
            if waiter in self._waiters:
                self._waiters.remove(waiter)

    async def _sleep_ms(self, ms: int) -> None:
        if ms > 0:
            await asyncio.sleep(ms / 1000)

    # --- queries -----------------------------------------------------------

    async def identify(self) -> DeviceIdentity:
        """Read the device name and firmware version.

        Unanswered queries fall back to defaults rather than failing.
        """
        identity = DeviceIdentity(name=self.name)
        try:
            identity.name = await self.query(Command.IDENTIFY.value, IDENTIFY_TIMEOUT_MS)
            identity.version = await self.query(Command.VERSION.value, IDENTIFY_TIMEOUT_MS)
        except TimeoutError as e:
            logger.warning("Identification incomplete: %s", e)
        return identity

    async def get_value(self, timeout_ms: int = DEFAULT_TIMEOUT_MS) -> IswMeasurement:
        """Read the current measurement (``VAL?``)."""
        return await self._exchange(Command.VALUE.value, timeout_ms)

    async def get_status_and_value(self, timeout_ms: int = DEFAULT_TIMEOUT_MS) -> IswMeasurement:
        """Read range indicators plus the current measurement (``VAS?``)."""
        return await self._exchange(Command.STATUS_AND_VALUE.value, timeout_ms)

    async def get_status(self, timeout_ms: int = DEFAULT_TIMEOUT_MS) -> str:
        """Read the raw status line (``STATUS?``)."""
        return await self.query(Command.STATUS.value, timeout_ms)

    # --- setters -----------------------------------------------------------

    async def set_function(self, function: str) -> None:
        """Select WATT, VAR, VOLT or AMP.

        Raises:
            ValueError: For any other function, including PF.
        """
        self.send_command(build_set_function(function))
        await self._sleep_ms(FUNCTION_SETTLE_MS)

    async def enable_auto_mode(self) -> None:
        self._require_connection()
        self.auto_mode_enabled = True
        self.state.auto_mode = True
        self.send_command(Command.AUTO_MODE_ON.value)
        await self._sleep_ms(SETTLE_MS)
        logger.info("Automatic measurement mode enabled")

    async def disable_auto_mode(self) -> None:
        self.auto_mode_enabled = False
        self.state.auto_mode = False
        self.send_command(Command.AUTO_MODE_OFF.value)
        await self._sleep_ms(SETTLE_MS)
        logger.info("Automatic measurement mode disabled")

    async def enable_auto_range(self) -> None:
        self.send_command(Command.AUTO_RANGE.value)
        self.state.auto_range = True
        await self._sleep_ms(SETTLE_MS)

    async def disable_auto_range(self) -> None:
        self.send_command(Command.MANUAL_RANGE.value)
        self.state.auto_range = False
        await self._sleep_ms(SETTLE_MS)

    async def set_voltage_range(self, range_no: int) -> None:
        """Select voltage range 1 (50V), 2 (150V) or 3 (500V)."""
        self.send_command(build_set_voltage_range(range_no))
        await self._sleep_ms(SETTLE_MS)

    async def set_current_range(self, range_no: int) -> None:
        """Select current range 1 (160mA), 2 (1.6A) or 3 (16A)."""
        self.send_command(build_set_current_range(range_no))
        await self._sleep_ms(SETTLE_MS)
