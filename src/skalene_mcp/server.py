"""MCP server entry point for the Skalene instrument.

Exposes tools, resources, and prompts via the Model Context Protocol
using the official Python MCP SDK with stdio transport.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from mcp.server.fastmcp import FastMCP

from .errors import ConfigValidationError, FlashError, SkaleneError
from .flasher import DEFAULT_ADDRESS, FlashStage
from .instrument import Skalene
from .models.config import DeviceConfig, load_config, parse_config, save_config
from .protocol.commands import DEFAULT_DEBUG_MARKER
from .transport.connection import Connection
from .transport.serial_connection import (
    BAUD_RATE,
    SerialTransport,
    StreamTransport,
    enumerate_ports,
)

logger = logging.getLogger(__name__)

mcp = FastMCP(
    "skalene",
    instructions="MCP server for the Skalene multi-channel instrument",
)

# Connection state for this server process
_device: Skalene | None = None
_port: str | None = None


def _get_device() -> Skalene:
    """Get the connected instrument, raising if not connected."""
    if _device is None:
        raise RuntimeError(
            "Not connected to device. Use the 'connect' tool first."
        )
    if not _device.connection.running:
        raise RuntimeError(
            f"Connection to {_port} was lost. Use the 'connect' tool to reconnect."
        )
    return _device


def _error(e: Exception) -> dict[str, Any]:
    """Render an engine error as a tool result."""
    result: dict[str, Any] = {"error": str(e)}
    if isinstance(e, SkaleneError):
        result["kind"] = e.kind.value
    if isinstance(e, ConfigValidationError):
        result["fields"] = e.errors
    if isinstance(e, FlashError):
        result["stage"] = e.stage
        if e.code is not None:
            result["code"] = f"0x{e.code:02X}"
    return result


async def _open_transport(port: str, baudrate: int):
    if port.startswith("tcp://"):
        host, _, tcp_port = port[len("tcp://"):].rpartition(":")
        return await StreamTransport.open_tcp(host, int(tcp_port))
    transport = SerialTransport(port, baudrate=baudrate)
    transport.open()
    return transport


# ─── CONNECTION TOOLS ─────────────────────────────────────────────────

@mcp.tool()
def list_ports() -> dict[str, Any]:
    """List serial ports available on this machine."""
    return {"ports": [p.to_dict() for p in enumerate_ports()]}


@mcp.tool()
async def connect(
    port: str,
    baudrate: int = BAUD_RATE,
    debug_marker: str = DEFAULT_DEBUG_MARKER,
) -> dict[str, Any]:
    """Open a connection to the instrument.

    Args:
        port: Serial device (e.g. '/dev/ttyACM0', 'COM3') or 'tcp://host:port'
              for a network serial bridge.
        baudrate: Serial baud rate (default 115200).
        debug_marker: First token of debug lines ('16', or '20' on older firmware).
    """
    global _device, _port
    if _device is not None and _device.connection.running:
        return {"connected": True, "message": "Already connected", "port": _port}

    if _device is not None:
        # Reader stopped; release the stale port before reopening.
        await _device.connection.close()
        _device = None
        _port = None

    try:
        transport = await _open_transport(port, baudrate)
    except SkaleneError as e:
        return _error(e)

    connection = Connection(transport, debug_marker=debug_marker)
    connection.start()
    _device = Skalene(connection)
    _port = port
    return {"connected": True, "port": port, "baudrate": baudrate}


@mcp.tool()
async def disconnect() -> dict[str, bool]:
    """Close the instrument connection."""
    global _device, _port
    if _device is None:
        return {"disconnected": True}
    await _device.connection.close()
    _device = None
    _port = None
    return {"disconnected": True}


@mcp.tool()
async def query(body: str) -> dict[str, Any]:
    """Send one raw text command and return the response fields.

    Args:
        body: Space-separated command, e.g. '3' (GET_CONFIG) or '11 0'.
    """
    device = _get_device()
    try:
        fields = await device.query(body)
    except (SkaleneError, ValueError) as e:
        return _error(e)
    return {"fields": fields}


# ─── CONFIGURATION TOOLS ─────────────────────────────────────────────

@mcp.tool()
async def get_config() -> dict[str, Any]:
    """Read the device configuration (GET_CONFIG)."""
    device = _get_device()
    try:
        config = await device.get_config()
    except (SkaleneError, ConfigValidationError) as e:
        return _error(e)
    return {"config": config.to_dict()}


@mcp.tool()
async def set_config(config: dict[str, Any]) -> dict[str, Any]:
    """Validate and write a complete device configuration (SET_CONFIG).

    Args:
        config: Object with windowSize (0-3000), dischargeTime (50-1000),
                integrationTime (50-5000), startTrigger (0-2),
                stopTrigger (0-1) and leds (8 values, 0-100).
    """
    parsed, errors = parse_config(config)
    if errors:
        return {"error": "invalid config", "fields": errors}

    device = _get_device()
    try:
        await device.set_config(parsed)
    except SkaleneError as e:
        return _error(e)
    return {"config": parsed.to_dict(), "written": True}


@mcp.tool()
async def set_integration(integration_time: int) -> dict[str, Any]:
    """Change only the integration time (SET_INTEGRATION).

    Args:
        integration_time: Integration time in ms (50-5000).
    """
    device = _get_device()
    try:
        await device.set_integration(integration_time)
    except (SkaleneError, ValueError) as e:
        return _error(e)
    return {"integrationTime": integration_time}


@mcp.tool()
def load_config_file(path: str) -> dict[str, Any]:
    """Load and validate a config JSON file without writing it to the device.

    Args:
        path: Path to a JSON file saved by save_config_file or the web UI.
    """
    try:
        config = load_config(path)
    except (OSError, ValueError) as e:
        return _error(e)
    return {"config": config.to_dict(), "path": path}


@mcp.tool()
def save_config_file(path: str, config: dict[str, Any] | None = None) -> dict[str, Any]:
    """Save a config as JSON.

    Args:
        path: Output file path.
        config: Config to save. Defaults to the config last read from or
                written to the device.
    """
    if config is None:
        if _device is None or _device.config is None:
            return {"error": "No config available. Use get_config first or pass one."}
        parsed = _device.config
    else:
        try:
            parsed = DeviceConfig.from_dict(config)
        except ConfigValidationError as e:
            return _error(e)

    try:
        written = save_config(parsed, Path(path))
    except OSError as e:
        return _error(e)
    return {"saved": True, "path": written}


# ─── MEASUREMENT TOOLS ───────────────────────────────────────────────

@mcp.tool()
async def start_measurement() -> dict[str, Any]:
    """Send START."""
    device = _get_device()
    try:
        await device.start()
    except SkaleneError as e:
        return _error(e)
    return {"started": True}


@mcp.tool()
async def stop_measurement() -> dict[str, Any]:
    """Send STOP."""
    device = _get_device()
    try:
        await device.stop()
    except SkaleneError as e:
        return _error(e)
    return {"stopped": True}


@mcp.tool()
async def get_results() -> dict[str, Any]:
    """Read the per-channel results of the last measurement."""
    device = _get_device()
    try:
        results = await device.get_results()
    except SkaleneError as e:
        return _error(e)
    return {"results": results}


@mcp.tool()
async def get_live_data() -> dict[str, Any]:
    """Read the current intensity of each channel."""
    device = _get_device()
    try:
        values = await device.get_live_data()
    except SkaleneError as e:
        return _error(e)
    return {"values": values}


@mcp.tool()
async def get_raw_data() -> dict[str, Any]:
    """Download all 256 raw sample blocks (channel-interleaved)."""
    device = _get_device()
    try:
        samples = await device.get_raw_data()
    except SkaleneError as e:
        return _error(e)
    return {"samples": samples, "count": len(samples)}


# ─── FIRMWARE TOOLS ──────────────────────────────────────────────────

@mcp.tool()
async def flash_firmware(
    path: str,
    address: int = DEFAULT_ADDRESS,
    enter_bootloader: bool = True,
) -> dict[str, Any]:
    """Flash a firmware image through the bootloader.

    Runs unlock, program, verify and swap. The device reboots into the new
    firmware on success. A failure at any stage aborts the whole session;
    reconnect and start again.

    Args:
        path: Path to the raw firmware binary.
        address: Flash start address (default 0x9D100000).
        enter_bootloader: Send BOOTLOADER_MODE first. Set False if the
                          device is already in its bootloader.
    """
    try:
        image = Path(path).read_bytes()
    except OSError as e:
        return _error(e)

    device = _get_device()
    stages: list[str] = []

    def on_stage(stage: FlashStage) -> None:
        stages.append(stage.value)

    try:
        session = await device.flash_firmware(
            image,
            address=address,
            enter_bootloader=enter_bootloader,
            on_stage=on_stage,
        )
    except FlashError as e:
        result = _error(e)
        result["stages"] = stages
        return result
    except ValueError as e:
        return _error(e)

    result = session.to_dict()
    result["stages"] = stages
    return result


# ─── MCP RESOURCES ───────────────────────────────────────────────────

@mcp.resource("skalene://device/status")
def resource_device_status() -> str:
    """Connection state."""
    if _device is None:
        return json.dumps({"connected": False})
    connection = _device.connection
    return json.dumps({
        "connected": connection.running,
        "port": _port,
        "fatal": connection.fatal,
    })


@mcp.resource("skalene://debug/recent")
def resource_debug_recent() -> str:
    """The most recent debug lines from the device."""
    lines = list(_device.debug_lines) if _device is not None else []
    return json.dumps({"lines": lines})


@mcp.resource("skalene://config/current")
def resource_current_config() -> str:
    """The config last read from or written to the device."""
    if _device is None or _device.config is None:
        return json.dumps({"config": None})
    return json.dumps({"config": _device.config.to_dict()})


# ─── MCP PROMPTS ─────────────────────────────────────────────────────

@mcp.prompt()
def run_measurement(integration_time: int) -> str:
    """Guide a full measurement cycle.

    Args:
        integration_time: Integration time in ms (50-5000).
    """
    return f"""Run a measurement with integration time {integration_time} ms.
Steps:
- Read the current config with get_config and keep a copy
- Set the integration time with set_integration
- start_measurement, wait for the run to finish, then stop_measurement
- Read get_results for the per-channel values
- Use get_raw_data if the raw curves are needed for peak analysis

Report any tool error verbatim, including its kind."""


# ─── ENTRY POINT ─────────────────────────────────────────────────────

def main():
    """Run the MCP server with stdio transport."""
    logging.basicConfig(level=logging.INFO)
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
