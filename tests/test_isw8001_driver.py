"""Tests for the ISW 8001 driver: query correlation, auto mode, setters."""

from __future__ import annotations

import asyncio
import time

import pytest

from wattmeter_mcp.drivers.isw8001 import ISW8001Driver

LINE = b"\x11U3=238.5E+0 I1=0.3E-3 W=0.02E+0\x13\r"


async def _open(serial_config) -> ISW8001Driver:
    meter = ISW8001Driver(serial_config)
    await meter.open()
    return meter


def test_query_returns_next_line(fake_serial, serial_config):
    async def scenario():
        meter = await _open(serial_config)
        task = asyncio.create_task(meter.query("VAL?"))
        await asyncio.sleep(0)
        meter.feed(LINE[:10])
        meter.feed(LINE[10:])
        return await task

    assert asyncio.run(scenario()) == "U3=238.5E+0 I1=0.3E-3 W=0.02E+0"
    assert fake_serial[0].written == [b"VAL?\r"]


def test_query_timeout(fake_serial, serial_config):
    async def scenario():
        meter = await _open(serial_config)
        with pytest.raises(TimeoutError):
            await meter.query("VAL?", timeout_ms=20)
        # A late reply is not handed to anyone
        meter.feed(b"W=1.0E+0\r")
        return meter

    meter = asyncio.run(scenario())
    assert meter.unclaimed_lines == ["W=1.0E+0"]


def test_overlapping_queries_resolve_in_order(fake_serial, serial_config):
    """Replies go to queries first come, first served."""
    async def scenario():
        meter = await _open(serial_config)
        first = asyncio.create_task(meter.query("*IDN?"))
        second = asyncio.create_task(meter.query("VERSION?"))
        await asyncio.sleep(0)
        meter.feed(b"ISW8001\rV1.07\r")
        return await first, await second

    assert asyncio.run(scenario()) == ("ISW8001", "V1.07")


def test_unclaimed_lines_cleared_on_send(fake_serial, serial_config):
    async def scenario():
        meter = await _open(serial_config)
        meter.feed(b"W=1.0E+0\rW=2.0E+0\r")
        assert meter.unclaimed_lines == ["W=1.0E+0", "W=2.0E+0"]
        task = asyncio.create_task(meter.query("VAL?"))
        await asyncio.sleep(0)
        assert meter.unclaimed_lines == []
        meter.feed(b"W=3.0E+0\r")
        return await task

    assert asyncio.run(scenario()) == "W=3.0E+0"


def test_auto_mode_broadcasts_measurements(fake_serial, serial_config, no_settle):
    received = []

    async def scenario():
        meter = await _open(serial_config)
        meter.subscribe(received.append)
        meter.feed(LINE)  # before auto mode: not broadcast
        await meter.enable_auto_mode()
        meter.feed(LINE)
        meter.feed(b"WATT U1 I2\r")  # no value: not a measurement
        await meter.disable_auto_mode()
        meter.feed(LINE)
        return meter

    meter = asyncio.run(scenario())
    assert len(received) == 1
    assert received[0].voltage_range == "500V"
    assert received[0].value == pytest.approx(0.02)
    assert fake_serial[0].written == [b"MA1\r", b"MA0\r"]
    assert meter.state.auto_mode is False


def test_auto_mode_line_also_answers_query(fake_serial, serial_config, no_settle):
    received = []

    async def scenario():
        meter = await _open(serial_config)
        meter.subscribe(received.append)
        await meter.enable_auto_mode()
        task = asyncio.create_task(meter.query("VAL?"))
        await asyncio.sleep(0)
        meter.feed(LINE)
        return await task

    assert asyncio.run(scenario()).startswith("U3=")
    assert len(received) == 1


def test_unsubscribe(fake_serial, serial_config, no_settle):
    received = []

    async def scenario():
        meter = await _open(serial_config)
        unsubscribe = meter.subscribe(received.append)
        await meter.enable_auto_mode()
        unsubscribe()
        meter.feed(LINE)

    asyncio.run(scenario())
    assert received == []


def test_failing_subscriber_does_not_stop_others(fake_serial, serial_config, no_settle):
    received = []

    def broken(_):
        raise RuntimeError("boom")

    async def scenario():
        meter = await _open(serial_config)
        meter.subscribe(broken)
        meter.subscribe(received.append)
        await meter.enable_auto_mode()
        meter.feed(LINE)

    asyncio.run(scenario())
    assert len(received) == 1


def test_state_tracks_ranges_and_function(fake_serial, serial_config):
    async def scenario():
        meter = await _open(serial_config)
        meter.feed(LINE)
        meter.feed(b"U2 I3\r")
        return meter

    meter = asyncio.run(scenario())
    assert meter.state.function == "W"
    assert meter.state.voltage_range == "150V"
    assert meter.state.current_range == "16A"


def test_setters_write_commands(fake_serial, serial_config, no_settle):
    async def scenario():
        meter = await _open(serial_config)
        await meter.set_function("var")
        await meter.set_voltage_range(2)
        await meter.set_current_range(3)
        await meter.enable_auto_range()
        await meter.disable_auto_range()
        return meter

    meter = asyncio.run(scenario())
    assert fake_serial[0].written == [
        b"VAR\r",
        b"SET:U2\r",
        b"SET:I3\r",
        b"AUTORANGE\r",
        b"MANUAL\r",
    ]
    assert meter.state.auto_range is False


def test_invalid_setter_sends_nothing(fake_serial, serial_config, no_settle):
    async def scenario():
        meter = await _open(serial_config)
        with pytest.raises(ValueError):
            await meter.set_function("PF")
        with pytest.raises(ValueError):
            await meter.set_voltage_range(4)

    asyncio.run(scenario())
    assert fake_serial[0].written == []


def test_identify(fake_serial, serial_config):
    async def scenario():
        meter = await _open(serial_config)
        task = asyncio.create_task(meter.identify())
        await asyncio.sleep(0)
        meter.feed(b"ISW 8001\r")
        while len(fake_serial[0].written) < 2:
            await asyncio.sleep(0)
        meter.feed(b"1.07\r")
        return await task

    identity = asyncio.run(scenario())
    assert identity.name == "ISW 8001"
    assert identity.version == "1.07"
    assert fake_serial[0].written == [b"*IDN?\r", b"VERSION?\r"]


def test_identify_falls_back_on_timeout(fake_serial, serial_config, monkeypatch):
    monkeypatch.setattr("wattmeter_mcp.drivers.isw8001.IDENTIFY_TIMEOUT_MS", 10)

    async def scenario():
        meter = await _open(serial_config)
        return await meter.identify()

    identity = asyncio.run(scenario())
    assert identity.name == "ISW8001"
    assert identity.version is None


def test_get_value_decodes(fake_serial, serial_config):
    async def scenario():
        meter = await _open(serial_config)
        task = asyncio.create_task(meter.get_value())
        await asyncio.sleep(0)
        meter.feed(b"U1=0.01E+0 I1=0.0E-3 PF=overflow\r")
        return await task

    measurement = asyncio.run(scenario())
    assert measurement.value == "overflow"


def test_close_disables_auto_mode(fake_serial, serial_config, no_settle):
    async def scenario():
        meter = await _open(serial_config)
        await meter.enable_auto_mode()
        await meter.close()
        return meter

    meter = asyncio.run(scenario())
    assert fake_serial[0].written == [b"MA1\r", b"MA0\r"]
    assert fake_serial[0].connected is False
    assert not meter.connected


def test_commands_require_connection(serial_config):
    meter = ISW8001Driver(serial_config)
    with pytest.raises(ConnectionError):
        meter.send_command("VAL?")
    with pytest.raises(ConnectionError):
        asyncio.run(meter.query("VAL?"))


def test_close_after_port_dropped_clears_auto_mode(fake_serial, serial_config, no_settle):
    """Auto mode never carries over into the next connection."""
    received = []

    async def scenario():
        meter = await _open(serial_config)
        meter.subscribe(received.append)
        await meter.enable_auto_mode()
        fake_serial[0].connected = False
        await meter.close()
        await meter.open()
        meter.feed(b"W=1.0E+0\r")
        return meter

    meter = asyncio.run(scenario())
    assert meter.auto_mode_enabled is False
    assert meter.state.auto_mode is False
    assert received == []
    assert fake_serial[0].written == [b"MA1\r"]


def test_setters_wait_for_meter_to_settle(fake_serial, serial_config, monkeypatch):
    delays = []

    async def record_sleep(delay, result=None):
        delays.append(delay)
        return result

    async def scenario():
        meter = await _open(serial_config)
        monkeypatch.setattr(asyncio, "sleep", record_sleep)
        await meter.set_function("WATT")
        await meter.set_voltage_range(1)
        await meter.enable_auto_range()
        await meter.enable_auto_mode()
        await meter.disable_auto_mode()

    asyncio.run(scenario())
    assert delays == [0.2, 0.1, 0.1, 0.1, 0.1]


def test_reply_timestamp_is_arrival_time(fake_serial, serial_config):
    async def scenario():
        meter = await _open(serial_config)
        task = asyncio.create_task(meter.get_value())
        await asyncio.sleep(0)
        meter.feed(b"W=1.0E+0\r")
        fed_at = time.monotonic()
        await asyncio.sleep(0.05)
        return fed_at, await task

    fed_at, measurement = asyncio.run(scenario())
    assert measurement.timestamp <= fed_at
    assert measurement.value == 1.0
