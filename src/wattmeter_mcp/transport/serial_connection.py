"""Asynchronous serial connection shared by both meter drivers.

Built on ``pyserial-asyncio``: the port is wrapped in an asyncio transport and
every chunk the UART delivers is handed, unmodified, to a callback owned by
the driver. Framing and decoding happen in the driver, on the event loop
thread, in arrival order.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable

import serial
import serial.tools.list_ports
import serial_asyncio

logger = logging.getLogger(__name__)

DEFAULT_BAUD = 9600


@dataclass
class SerialConfig:
    """Port settings for one meter connection."""

    port: str
    baudrate: int = DEFAULT_BAUD
    bytesize: int = serial.EIGHTBITS
    parity: str = serial.PARITY_NONE
    stopbits: float = serial.STOPBITS_ONE
    xonxoff: bool = False
    init_delay_ms: int = 500

    def to_dict(self) -> dict:
        return {
            "port": self.port,
            "baudrate": self.baudrate,
            "bytesize": self.bytesize,
            "parity": self.parity,
            "stopbits": self.stopbits,
            "xonxoff": self.xonxoff,
        }


@dataclass
class PortInfo:
    """A serial port discovered on the host."""

    device: str
    description: str = ""
    hwid: str = ""


def list_ports() -> list[PortInfo]:
    """List serial ports available on this machine."""
    return [
        PortInfo(device=p.device, description=p.description or "", hwid=p.hwid or "")
        for p in sorted(serial.tools.list_ports.comports(), key=lambda p: p.device)
    ]


class _ChunkProtocol(asyncio.Protocol):
    """Forwards received chunks to the owning driver."""

    def __init__(self, on_data: Callable[[bytes], None]) -> None:
        self._on_data = on_data
        self.closed: asyncio.Future[None] = asyncio.get_running_loop().create_future()

    def data_received(self, data: bytes) -> None:
        if data:
            logger.debug("← raw %s", data.hex(" "))
            self._on_data(data)

    def connection_lost(self, exc: Exception | None) -> None:
        if exc is not None:
            logger.warning("Serial connection lost: %s", exc)
        if not self.closed.done():
            self.closed.set_result(None)


class SerialConnection:
    """An open serial port: write bytes out, chunks come back via callback.

    Usage::

        conn = await open_serial(config, driver.feed)
        conn.write(b"VAL?\\r")
        await conn.close()
    """

    def __init__(
        self,
        config: SerialConfig,
        transport: asyncio.Transport,
        protocol: _ChunkProtocol,
    ) -> None:
        self._config = config
        self._transport = transport
        self._protocol = protocol

    @property
    def config(self) -> SerialConfig:
        return self._config

    @property
    def connected(self) -> bool:
        return not self._transport.is_closing()

    def write(self, data: bytes) -> None:
        """Queue bytes for transmission.

        Raises:
            ConnectionError: If the port has been closed.
        """
        if not self.connected:
            raise ConnectionError(f"Serial port {self._config.port} is closed")
        logger.debug("→ raw %s", data.hex(" "))
        self._transport.write(data)

    async def close(self) -> None:
        """Close the port and wait until the transport has shut down."""
        if not self._transport.is_closing():
            self._transport.close()
        await self._protocol.closed
        logger.info("Disconnected from %s", self._config.port)


async def open_serial(
    config: SerialConfig,
    on_data: Callable[[bytes], None],
) -> SerialConnection:
    """Open a serial port and start delivering received chunks to ``on_data``.

    Raises:
        ConnectionError: If the port cannot be opened.
    """
    loop = asyncio.get_running_loop()
    try:
        transport, protocol = await serial_asyncio.create_serial_connection(
            loop,
            lambda: _ChunkProtocol(on_data),
            config.port,
            baudrate=config.baudrate,
            bytesize=config.bytesize,
            parity=config.parity,
            stopbits=config.stopbits,
            xonxoff=config.xonxoff,
        )
    except (serial.SerialException, OSError) as e:
        raise ConnectionError(f"Failed to open port {config.port}: {e}") from e

    logger.info("Connected to %s at %d baud", config.port, config.baudrate)
    return SerialConnection(config, transport, protocol)
