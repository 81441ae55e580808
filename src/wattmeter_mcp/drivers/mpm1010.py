"""MPM-1010 series power meter driver (RS232, binary, no flow control).

Protocol:

1. Send ``?``.
2. The meter answers with the marker ``!``.
3. It then sends 20 digit-encoded bytes: voltage, current, power, power
   factor, frequency.

A new ``?`` interrupts a reply in flight. Auto mode relies on this: as soon
as voltage, current and power of the current reply are in, the next
request goes out, sacrificing power factor and frequency for fresher power
readings. A fallback timer re-requests when a reply never arrives.

Usage::

    meter = MPM1010Driver()
    await meter.open()
    meter.subscribe(lambda m: print(m.power))
    await meter.enable_auto_mode(interval_ms=200)
    ...
    await meter.close()
"""

from __future__ import annotations

import asyncio
import logging

from ..config import mpm1010_config
from ..models.measurement import MpmMeasurement
from ..protocol.commands import MPM_REQUEST
from ..protocol.framing import MIN_PAYLOAD, Frame, MarkerFramer
from ..protocol.mpm1010 import parse_measurement
from ..timers import Scheduler, TimerHandle, cancel
from ..transport.serial_connection import SerialConfig, open_serial
from .base import MeterDriver

logger = logging.getLogger(__name__)

MEASUREMENT_TIMEOUT_MS = 2000
FALLBACK_MIN_S = 0.1
FALLBACK_MARGIN_S = 0.05


class MPM1010Driver(MeterDriver):
    """Continuous request/response driver for the MPM-1010."""

    name = "MPM1010"

    def __init__(
        self,
        config: SerialConfig | None = None,
        scheduler: Scheduler | None = None,
    ) -> None:
        super().__init__(config or mpm1010_config())
        self._scheduler = scheduler
        self._framer = MarkerFramer()
        self._waiters: list[asyncio.Future[MpmMeasurement]] = []
        self._min_interval = 0.0
        self._last_request_at: float | None = None
        self._fallback: TimerHandle | None = None
        self._delayed: TimerHandle | None = None
        # Set once the next request has gone out for the frame in flight
        self._request_issued = False

    @property
    def scheduler(self) -> Scheduler:
        if self._scheduler is None:
            self._scheduler = asyncio.get_running_loop()
        return self._scheduler

    @property
    def min_interval_ms(self) -> int:
        return round(self._min_interval * 1000)

    # --- connection --------------------------------------------------------

    async def open(self) -> None:
        """Open the port and give the meter time to initialise.

        Raises:
            ConnectionError: If the port cannot be opened.
        """
        if self.connected:
            return
        if self._scheduler is None:
            self._scheduler = asyncio.get_running_loop()
        self._connection = await open_serial(self.config, self.feed)
        if self.config.init_delay_ms > 0:
            await asyncio.sleep(self.config.init_delay_ms / 1000)

    async def close(self) -> None:
        if self._connection is None:
            return
        if self.auto_mode_enabled:
            await self.disable_auto_mode()
        await self._connection.close()
        self._connection = None
        self._framer.clear()
        self._request_issued = False

    # --- inbound -----------------------------------------------------------

    def feed(self, data: bytes) -> None:
        self._framer.feed(data, self.scheduler.time())
        # Drain everything already buffered: a fresh marker may be waiting
        while True:
            self._maybe_request_early()
            frame = self._framer.next_frame()
            if frame is None:
                break
            self._handle_frame(frame)

    def decode(self, frame: Frame) -> MpmMeasurement:
        return parse_measurement(frame.payload, timestamp=frame.started_at)

    def _handle_frame(self, frame: Frame) -> None:
        self._request_issued = False
        logger.debug("← %d byte frame %r", len(frame), frame)
        if len(frame) < MIN_PAYLOAD:
            logger.debug("Dropping frame without voltage/current/power")
            return

        measurement = self.decode(frame)

        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(measurement)

        # Checked here rather than at request time: a frame still in flight
        # when auto mode was disabled must not be emitted.
        if self.auto_mode_enabled:
            self._emit(measurement)

    # --- requests ----------------------------------------------------------

    def request_measurement(self) -> None:
        """Send ``?``; in auto mode also re-arm the fallback timer.

        Raises:
            ConnectionError: If not connected.
        """
        connection = self._require_connection()
        self._last_request_at = self.scheduler.time()
        logger.debug("→ ?")
        connection.write(MPM_REQUEST)

        if self.auto_mode_enabled:
            cancel(self._fallback)
            delay = max(FALLBACK_MIN_S, self._min_interval + FALLBACK_MARGIN_S)
            self._fallback = self.scheduler.call_later(delay, self._on_fallback)

    def _maybe_request_early(self) -> None:
        """Request the next frame once V/I/W of the current one are in."""
        if not self.auto_mode_enabled or self._request_issued or self._delayed is not None:
            return
        if self._framer.buffered_payload() < MIN_PAYLOAD:
            return

        now = self.scheduler.time()
        if self._last_request_at is None:
            elapsed = float("inf")
        else:
            elapsed = now - self._last_request_at

        cancel(self._fallback)
        self._fallback = None
        if elapsed >= self._min_interval:
            self._request_issued = True
            self.request_measurement()
        else:
            self._delayed = self.scheduler.call_later(
                self._min_interval - elapsed, self._on_delayed_request
            )

    def _on_delayed_request(self) -> None:
        self._delayed = None
        if not self.auto_mode_enabled or not self.connected:
            return
        # The request pre-empts whatever frame is still arriving
        self._request_issued = self._framer.has_marker()
        self.request_measurement()

    def _on_fallback(self) -> None:
        self._fallback = None
        if not self.auto_mode_enabled:
            return
        if not self.connected:
            logger.warning("Port closed while auto mode is on, no longer requesting")
            return
        logger.debug("No reply within fallback timeout, re-requesting")
        self.request_measurement()

    async def get_measurement(self, timeout_ms: int = MEASUREMENT_TIMEOUT_MS) -> MpmMeasurement:
        """Request and return a single measurement.

        Raises:
            ConnectionError: If not connected.
            TimeoutError: If no usable frame arrives within ``timeout_ms``.
        """
        self._require_connection()
        waiter: asyncio.Future[MpmMeasurement] = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            self.request_measurement()
            return await asyncio.wait_for(waiter, timeout_ms / 1000)
        except asyncio.TimeoutError:
            raise TimeoutError("Timeout waiting for measurement") from None
        finally:
            if waiter in self._waiters:
                self._waiters.remove(waiter)

    # --- auto mode ---------------------------------------------------------

    async def enable_auto_mode(self, interval_ms: int = 0) -> None:
        """Start continuous acquisition.

        Args:
            interval_ms: Minimum time between requests. 0 requests again as
                soon as each reply's power value is in.
        """
        self._require_connection()
        self.auto_mode_enabled = True
        self._min_interval = max(0, interval_ms) / 1000
        self._last_request_at = None
        self._request_issued = False
        self.request_measurement()

        if interval_ms > 0:
            logger.info("Automatic measurement mode enabled (%d ms minimum interval)", interval_ms)
        else:
            logger.info("Automatic measurement mode enabled (interrupting after V/I/W)")

    async def disable_auto_mode(self) -> None:
        """Stop requesting. Bytes already in flight are decoded but not emitted."""
        self.auto_mode_enabled = False
        cancel(self._fallback)
        cancel(self._delayed)
        self._fallback = None
        self._delayed = None
        self._request_issued = False
        logger.info("Automatic measurement mode disabled")
