"""Tests for the MCP tool layer."""

from __future__ import annotations

import asyncio
import json
import sys
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from conftest import FakeTransport, reply
from skalene_mcp.errors import FlashError, QueryTimeout
from skalene_mcp.models.config import DeviceConfig


def _get_server_module():
    """Import server module with FastMCP mocked to avoid init issues."""
    mock_fastmcp_cls = MagicMock()
    mock_fastmcp_instance = MagicMock()
    # Make the @mcp.tool() decorator a no-op that returns the function unchanged
    mock_fastmcp_instance.tool.return_value = lambda fn: fn
    mock_fastmcp_instance.resource.return_value = lambda fn: fn
    mock_fastmcp_instance.prompt.return_value = lambda fn: fn
    mock_fastmcp_cls.return_value = mock_fastmcp_instance

    with patch.dict(sys.modules, {}):
        with patch("mcp.server.fastmcp.FastMCP", mock_fastmcp_cls):
            # Remove cached server module so it re-imports with our mock
            sys.modules.pop("skalene_mcp.server", None)
            import skalene_mcp.server as server_mod

    return server_mod


def _mock_device():
    device = MagicMock()
    for name in ("query", "get_config", "set_config", "set_integration", "start",
                 "stop", "get_results", "get_live_data", "get_raw_data",
                 "flash_firmware"):
        setattr(device, name, AsyncMock())
    return device


def test_tools_require_connection():
    server = _get_server_module()
    with pytest.raises(RuntimeError, match="Not connected"):
        asyncio.run(server.get_config())


def test_error_is_reported_with_kind():
    server = _get_server_module()
    device = _mock_device()
    device.get_results.side_effect = QueryTimeout("no response")

    with patch.object(server, "_get_device", return_value=device):
        result = asyncio.run(server.get_results())

    assert result == {"error": "no response", "kind": "timeout"}


def test_set_config_rejects_invalid_without_writing():
    server = _get_server_module()
    device = _mock_device()
    config = DeviceConfig().to_dict()
    config["leds"][3] = 101

    with patch.object(server, "_get_device", return_value=device):
        result = asyncio.run(server.set_config(config))

    assert list(result["fields"]) == ["leds[3]"]
    device.set_config.assert_not_called()


def test_set_config_writes_valid_config():
    server = _get_server_module()
    device = _mock_device()
    config = DeviceConfig(window_size=10).to_dict()

    with patch.object(server, "_get_device", return_value=device):
        result = asyncio.run(server.set_config(config))

    assert result["written"] is True
    device.set_config.assert_awaited_once_with(DeviceConfig(window_size=10))


def test_flash_firmware_failure_reports_stage(tmp_path):
    server = _get_server_module()
    device = _mock_device()
    device.flash_firmware.side_effect = FlashError("UNLOCKING", "bad code", code=0x51)
    image = tmp_path / "fw.bin"
    image.write_bytes(b"\x00" * 64)

    with patch.object(server, "_get_device", return_value=device):
        result = asyncio.run(server.flash_firmware(str(image)))

    assert result["stage"] == "UNLOCKING"
    assert result["code"] == "0x51"
    assert result["kind"] == "protocol"


def test_flash_firmware_missing_file():
    server = _get_server_module()
    result = asyncio.run(server.flash_firmware("/nonexistent/fw.bin"))
    assert "error" in result


def test_config_files(tmp_path):
    server = _get_server_module()
    path = tmp_path / "config.json"
    config = DeviceConfig(integration_time=400).to_dict()

    saved = server.save_config_file(str(path), config)
    loaded = server.load_config_file(str(path))

    assert saved["saved"] is True
    assert loaded["config"] == config


def test_connect_query_disconnect():
    """End to end through a fake transport."""
    server = _get_server_module()
    transport = FakeTransport(lambda data: reply("4 100 200 300 1 0 1 2 3 4 5 6 7 8 0"))

    async def run():
        with patch.object(server, "_open_transport", AsyncMock(return_value=transport)):
            connected = await server.connect("/dev/ttyACM0")
        config = await server.get_config()
        status = json.loads(server.resource_device_status())
        current = json.loads(server.resource_current_config())
        await server.disconnect()
        return connected, config, status, current

    connected, config, status, current = asyncio.run(run())
    assert connected["connected"] is True
    assert config["config"]["integrationTime"] == 300
    assert status["connected"] is True
    assert current["config"]["leds"] == [1, 2, 3, 4, 5, 6, 7, 8]
    assert server._device is None
    assert transport.closed


def test_debug_resource_when_disconnected():
    server = _get_server_module()
    assert json.loads(server.resource_debug_recent()) == {"lines": []}


def test_reconnect_after_lost_connection_closes_old_transport():
    """A stopped reader means the old port must be released before reopening."""
    server = _get_server_module()
    old = FakeTransport()
    new = FakeTransport(lambda data: reply("6 0"))

    async def run():
        with patch.object(server, "_open_transport", AsyncMock(return_value=old)):
            await server.connect("/dev/ttyACM0")
        old.feed(b"")
        await asyncio.sleep(0.01)
        with pytest.raises(RuntimeError, match="was lost"):
            server._get_device()
        with patch.object(server, "_open_transport", AsyncMock(return_value=new)):
            reconnected = await server.connect("/dev/ttyACM0")
        started = await server.start_measurement()
        await server.disconnect()
        return reconnected, started

    reconnected, started = asyncio.run(run())
    assert old.closed
    assert reconnected["connected"] is True
    assert "message" not in reconnected
    assert started == {"started": True}
    assert new.closed
