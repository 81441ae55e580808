"""Common driver interface.

Both meters expose the same role (open, close, auto mode, subscribe) but
speak unrelated protocols, so each implements it independently. The only
shared state here is the subscriber list.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable

from ..transport.serial_connection import SerialConfig, SerialConnection

logger = logging.getLogger(__name__)

Subscriber = Callable[[Any], None]


class MeterDriver(ABC):
    """One driver owns exactly one serial connection."""

    name = "meter"

    def __init__(self, config: SerialConfig) -> None:
        self.config = config
        self._connection: SerialConnection | None = None
        self._subscribers: list[Subscriber] = []
        self.auto_mode_enabled = False

    @property
    def connected(self) -> bool:
        return self._connection is not None and self._connection.connected

    def _require_connection(self) -> SerialConnection:
        if self._connection is None or not self._connection.connected:
            raise ConnectionError(f"{self.name} is not connected")
        return self._connection

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Call ``callback(measurement)`` for every auto-mode measurement.

        Returns:
            A function that removes the subscription.
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _emit(self, measurement: Any) -> None:
        for callback in list(self._subscribers):
            try:
                callback(measurement)
            except Exception:
                logger.exception("%s subscriber %r failed", self.name, callback)

    @abstractmethod
    async def open(self) -> None:
        """Open the serial port and prepare the device."""

    @abstractmethod
    async def close(self) -> None:
        """Stop auto mode if active, then release the port."""

    @abstractmethod
    async def enable_auto_mode(self) -> None:
        """Start continuous measurement."""

    @abstractmethod
    async def disable_auto_mode(self) -> None:
        """Stop continuous measurement."""

    @abstractmethod
    def feed(self, data: bytes) -> None:
        """Process a chunk of bytes received from the port."""

    @abstractmethod
    def decode(self, frame: Any) -> Any:
        """Decode one extracted frame into a measurement."""
