"""MCP server entry point for the ISW 8001 and MPM-1010 power meters.

Exposes tools, resources, and prompts via the Model Context Protocol
using the official Python MCP SDK with stdio transport. One meter is
connected at a time.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable

from mcp.server.fastmcp import FastMCP

from .config import LOG_LEVEL
from .drivers import DRIVERS, ISW8001Driver, MeterDriver, MPM1010Driver
from .models.measurement import MpmMeasurement
from .protocol.commands import FUNCTIONS, is_query
from .protocol.isw8001 import CURRENT_RANGES, UNIT_MAP, VOLTAGE_RANGES, range_code
from .transport.serial_connection import list_ports

logger = logging.getLogger(__name__)

mcp = FastMCP(
    "wattmeter",
    instructions="MCP server for ISW 8001 and MPM-1010 serial power meters",
)

# Global connection state
_driver: MeterDriver | None = None
_unsubscribe: Callable[[], None] | None = None
_latest: dict[str, Any] | None = None


def _get_driver() -> MeterDriver:
    """Get the connected meter, raising if there is none."""
    if _driver is None or not _driver.connected:
        raise RuntimeError(
            "Not connected to a meter. Use the 'connect' tool first."
        )
    return _driver


def _get_isw8001() -> ISW8001Driver:
    driver = _get_driver()
    if not isinstance(driver, ISW8001Driver):
        raise RuntimeError(f"This tool needs an ISW 8001, connected meter is {driver.name}")
    return driver


def _record_latest(measurement: Any) -> None:
    global _latest
    _latest = measurement.to_dict()


# ─── CONNECTION TOOLS ─────────────────────────────────────────────────

@mcp.tool()
def list_serial_ports() -> dict[str, Any]:
    """List serial ports available on this machine."""
    return {
        "ports": [
            {"device": p.device, "description": p.description, "hwid": p.hwid}
            for p in list_ports()
        ]
    }


@mcp.tool()
async def connect(
    device: str = "isw8001",
    port: str | None = None,
    baudrate: int | None = None,
) -> dict[str, Any]:
    """Open a serial connection to a power meter.

    For the ISW 8001 the device name and firmware version are read back.

    Args:
        device: "isw8001" or "mpm1010".
        port: Serial port; defaults to ISW8001_PORT / MPM1010_PORT.
        baudrate: Baud rate; the ISW 8001 supports 1200 or 9600.
    """
    global _driver, _unsubscribe, _latest
    if _driver is not None and _driver.connected:
        return {
            "connected": True,
            "message": "Already connected",
            "device": _driver.name,
        }

    key = device.strip().lower().replace("-", "").replace(" ", "")
    if key not in DRIVERS:
        return {"error": f"Unknown device '{device}'. Valid: {list(DRIVERS)}"}

    driver_cls, make_config = DRIVERS[key]
    driver = driver_cls(make_config(port, baudrate))
    await driver.open()

    _driver = driver
    _latest = None
    _unsubscribe = driver.subscribe(_record_latest)

    result: dict[str, Any] = {
        "connected": True,
        "device": driver.name,
        "port": driver.config.port,
        "baudrate": driver.config.baudrate,
    }
    if isinstance(driver, ISW8001Driver):
        identity = await driver.identify()
        result["device_name"] = identity.name
        result["version"] = identity.version
    return result


@mcp.tool()
async def disconnect() -> dict[str, bool]:
    """Stop auto mode if running and close the serial port."""
    global _driver, _unsubscribe
    if _driver is None:
        return {"disconnected": True}
    if _unsubscribe is not None:
        _unsubscribe()
        _unsubscribe = None
    await _driver.close()
    _driver = None
    return {"disconnected": True}


@mcp.tool()
async def get_device_info() -> dict[str, Any]:
    """Report the connected meter, its port settings and identification."""
    driver = _get_driver()
    result: dict[str, Any] = {
        "device": driver.name,
        "serial": driver.config.to_dict(),
        "auto_mode": driver.auto_mode_enabled,
    }
    if isinstance(driver, ISW8001Driver):
        identity = await driver.identify()
        result.update(identity.to_dict())
    return result


# ─── MEASUREMENT TOOLS ────────────────────────────────────────────────

@mcp.tool()
async def read_measurement() -> dict[str, Any]:
    """Read one measurement from the connected meter.

    ISW 8001: ranges plus the active function's reading (VAS?).
    MPM-1010: voltage, current, power, power factor and frequency.
    """
    driver = _get_driver()
    try:
        if isinstance(driver, ISW8001Driver):
            measurement = await driver.get_status_and_value()
        elif isinstance(driver, MPM1010Driver):
            measurement = await driver.get_measurement()
        else:
            return {"error": f"Unsupported meter {driver.name}"}
    except TimeoutError as e:
        return {"error": str(e)}
    result = measurement.to_dict()
    if isinstance(measurement, MpmMeasurement):
        result["units"] = MpmMeasurement.UNITS
    return result


@mcp.tool()
async def get_status() -> dict[str, Any]:
    """Read the ISW 8001 status line and the last-known range/function state."""
    meter = _get_isw8001()
    try:
        status = await meter.get_status()
    except TimeoutError as e:
        return {"error": str(e)}
    return {"status": status, "state": meter.state.to_dict()}


@mcp.tool()
async def start_auto_mode(interval_ms: int = 0) -> dict[str, Any]:
    """Start continuous measurement.

    Use get_latest_measurement to read the newest sample.

    Args:
        interval_ms: MPM-1010 only: minimum time between requests
                     (0 = as fast as the meter answers).
    """
    driver = _get_driver()
    if isinstance(driver, MPM1010Driver):
        await driver.enable_auto_mode(interval_ms)
        return {"auto_mode": True, "interval_ms": driver.min_interval_ms}
    await driver.enable_auto_mode()
    return {"auto_mode": True}


@mcp.tool()
async def stop_auto_mode() -> dict[str, Any]:
    """Stop continuous measurement."""
    driver = _get_driver()
    await driver.disable_auto_mode()
    return {"auto_mode": False}


@mcp.tool()
def get_latest_measurement() -> dict[str, Any]:
    """Return the newest measurement received in auto mode, if any."""
    driver = _get_driver()
    return {
        "device": driver.name,
        "auto_mode": driver.auto_mode_enabled,
        "measurement": _latest,
    }


# ─── ISW 8001 SETTINGS TOOLS ──────────────────────────────────────────

@mcp.tool()
async def set_function(function: str) -> dict[str, Any]:
    """Select the ISW 8001 measurement function.

    Power factor can only be selected on the front panel.

    Args:
        function: WATT, VAR, VOLT or AMP.
    """
    meter = _get_isw8001()
    try:
        await meter.set_function(function)
    except ValueError as e:
        return {"error": str(e)}
    return {"function": function.strip().upper()}


@mcp.tool()
async def set_range(value: str) -> dict[str, Any]:
    """Change ISW 8001 range selection.

    Args:
        value: "auto" or "manual" for range mode, "u1".."u3" for the
               voltage range (50V/150V/500V), "i1".."i3" for the current
               range (160mA/1.6A/16A).
    """
    meter = _get_isw8001()
    choice = value.strip().lower()

    try:
        if choice == "auto":
            await meter.enable_auto_range()
        elif choice == "manual":
            await meter.disable_auto_range()
        elif choice[:1] in ("u", "i") and choice[1:].isdigit():
            range_no = int(choice[1:])
            if choice[0] == "u":
                await meter.set_voltage_range(range_no)
            else:
                await meter.set_current_range(range_no)
        else:
            return {"error": f"Invalid range value: {value}"}
    except ValueError as e:
        return {"error": str(e)}

    return {"success": True, "range": choice}


@mcp.tool()
async def send_raw_command(command: str, expect_response: bool | None = None) -> dict[str, Any]:
    """Send an arbitrary ISW 8001 command.

    Args:
        command: Command text, e.g. "VAL?" or "WATT" (case-insensitive).
        expect_response: Wait for a reply line. Defaults to True for
                         commands ending in "?".
    """
    meter = _get_isw8001()
    if expect_response is None:
        expect_response = is_query(command)

    if not expect_response:
        meter.send_command(command)
        return {"sent": command}

    try:
        response = await meter.query(command)
    except TimeoutError as e:
        return {"sent": command, "error": str(e)}

    result: dict[str, Any] = {"sent": command, "response": response}
    if "=" in response:
        result["parsed"] = meter.decode(response).to_dict()
    return result


# ─── MCP RESOURCES ───────────────────────────────────────────────────

@mcp.resource("wattmeter://catalog/ranges")
def resource_ranges() -> str:
    """ISW 8001 voltage and current ranges."""
    return json.dumps({
        "voltage": [{"code": code, "label": label} for code, label in VOLTAGE_RANGES.items()],
        "current": [{"code": code, "label": label} for code, label in CURRENT_RANGES.items()],
    })


@mcp.resource("wattmeter://catalog/functions")
def resource_functions() -> str:
    """ISW 8001 measurement functions and their units."""
    return json.dumps({
        "selectable": list(FUNCTIONS),
        "reported": [{"tag": tag, "unit": unit} for tag, unit in UNIT_MAP.items()],
    })


@mcp.resource("wattmeter://state")
def resource_state() -> str:
    """Connection and last-known meter state."""
    if _driver is None or not _driver.connected:
        return json.dumps({"connected": False})

    state: dict[str, Any] = {
        "connected": True,
        "device": _driver.name,
        "auto_mode": _driver.auto_mode_enabled,
    }
    if isinstance(_driver, ISW8001Driver):
        meter_state = _driver.state.to_dict()
        for key in ("voltage_range", "current_range"):
            if meter_state[key] is not None:
                meter_state[f"{key}_code"] = range_code(meter_state[key])
        state["meter"] = meter_state
    return json.dumps(state)


# ─── MCP PROMPTS ─────────────────────────────────────────────────────

@mcp.prompt()
def profile_load(load: str) -> str:
    """Guide the AI through measuring the power draw of a device.

    Args:
        load: What is plugged into the meter, e.g. "laptop charger".
    """
    return f"""Measure the power consumption of: {load}.
Steps:
- Use read_measurement to check the meter responds and note the ranges
- On an ISW 8001, select WATT with set_function and let auto-ranging pick
  the range (set_range "auto"), or fix the range if readings show "overflow"
- Start continuous sampling with start_auto_mode and poll
  get_latest_measurement a few times under idle and loaded conditions
- Stop with stop_auto_mode and summarise idle vs. peak power."""


# ─── ENTRY POINT ─────────────────────────────────────────────────────

def main():
    """Run the MCP server with stdio transport."""
    logging.basicConfig(level=LOG_LEVEL)
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
