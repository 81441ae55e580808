"""Shared fixtures: fake serial ports, a manually advanced clock, the MCP server."""

from __future__ import annotations

import importlib
import sys
from typing import Any, Callable
from unittest.mock import MagicMock

import pytest

from wattmeter_mcp.transport.serial_connection import SerialConfig


class ManualTimer:
    def __init__(self, when: float, callback: Callable[..., Any], args: tuple) -> None:
        self.when = when
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Virtual monotonic clock; timers only fire inside ``advance()``."""

    def __init__(self, start: float = 100.0) -> None:
        self.now = start
        self._timers: list[ManualTimer] = []

    def time(self) -> float:
        return self.now

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> ManualTimer:
        timer = ManualTimer(self.now + delay, callback, args)
        self._timers.append(timer)
        return timer

    @property
    def pending(self) -> list[ManualTimer]:
        return [t for t in self._timers if not t.cancelled]

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            due = [t for t in self.pending if t.when <= target + 1e-9]
            if not due:
                break
            timer = min(due, key=lambda t: t.when)
            self._timers.remove(timer)
            self.now = max(self.now, timer.when)
            timer.callback(*timer.args)
        self.now = target


class FakeConnection:
    """Stands in for SerialConnection; records everything written."""

    def __init__(self, config: SerialConfig) -> None:
        self.config = config
        self.written: list[bytes] = []
        self.connected = True

    def write(self, data: bytes) -> None:
        if not self.connected:
            raise ConnectionError("closed")
        self.written.append(bytes(data))

    async def close(self) -> None:
        self.connected = False


@pytest.fixture
def serial_config() -> SerialConfig:
    return SerialConfig(port="/dev/ttyTEST", init_delay_ms=0)


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def fake_serial(monkeypatch) -> list[FakeConnection]:
    """Replace ``open_serial`` in both drivers; returns the opened connections."""
    connections: list[FakeConnection] = []

    async def fake_open_serial(config, on_data):
        conn = FakeConnection(config)
        connections.append(conn)
        return conn

    monkeypatch.setattr("wattmeter_mcp.drivers.isw8001.open_serial", fake_open_serial)
    monkeypatch.setattr("wattmeter_mcp.drivers.mpm1010.open_serial", fake_open_serial)
    return connections


@pytest.fixture
def no_settle(monkeypatch) -> None:
    """Skip the ISW 8001 settle delays."""
    monkeypatch.setattr("wattmeter_mcp.drivers.isw8001.SETTLE_MS", 0)
    monkeypatch.setattr("wattmeter_mcp.drivers.isw8001.FUNCTION_SETTLE_MS", 0)


@pytest.fixture
def server(fake_serial, no_settle, monkeypatch):
    """A fresh ``wattmeter_mcp.server`` whose tools are plain functions.

    FastMCP is swapped for a mock whose decorators return the function
    unchanged, so tools can be awaited directly against fake ports.
    """
    fastmcp = MagicMock()
    for decorator in ("tool", "resource", "prompt"):
        getattr(fastmcp.return_value, decorator).return_value = lambda fn: fn

    monkeypatch.setattr("mcp.server.fastmcp.FastMCP", fastmcp)
    monkeypatch.setattr("wattmeter_mcp.config.INIT_DELAY_MS", 0)
    monkeypatch.setattr("wattmeter_mcp.drivers.isw8001.IDENTIFY_TIMEOUT_MS", 10)
    monkeypatch.delitem(sys.modules, "wattmeter_mcp.server", raising=False)
    return importlib.import_module("wattmeter_mcp.server")
