"""Tests for one-shot connection tests and catalog discovery."""

import pytest

from toolbridge.mcp.discovery import check_server_connection, discover_tool_catalog
from toolbridge.mcp.errors import MCPCancelledError
from toolbridge.mcp.schema import ServerConfig
from toolbridge.mcp.signals import CancelSignal


class TestCheckServerConnection:
    @pytest.mark.asyncio
    async def test_lists_tools(self, make_server):
        result = await check_server_connection(make_server())
        assert result.ok is True
        assert result.error is None
        assert [t.name for t in result.tools][:2] == ["echo", "slow"]
        assert result.tools[0].description == "Echo text back"

    @pytest.mark.asyncio
    async def test_blank_command(self):
        result = await check_server_connection(ServerConfig(id="x", command="  "))
        assert result.ok is False
        assert result.error == "Command is required"

    @pytest.mark.asyncio
    async def test_disallowed_command(self):
        result = await check_server_connection(ServerConfig(id="x", command="curl"))
        assert result.ok is False
        assert "not allowed" in result.error

    @pytest.mark.asyncio
    async def test_spawn_failure(self):
        result = await check_server_connection(ServerConfig(id="x", command="/nonexistent/dir/npx"))
        assert result.ok is False
        assert "Failed to start" in result.error


class TestDiscoverToolCatalog:
    @pytest.mark.asyncio
    async def test_catalog_across_servers(self, make_server):
        servers = [
            make_server("alpha", name="Alpha"),
            ServerConfig(id="broken", command="/nonexistent/dir/node"),
            make_server("alpha", name="Alpha again"),
        ]
        catalog = await discover_tool_catalog(servers)

        echo_rows = [row for row in catalog if row.tool_name == "echo"]
        assert [(r.server_name, r.call_name) for r in echo_rows] == [
            ("Alpha", "mcp_alpha__echo"),
            ("Alpha again", "mcp_alpha__echo_2"),
        ]
        broken = next(row for row in catalog if row.tool_name == "broken")
        assert broken.description == "Always reports an error"

    @pytest.mark.asyncio
    async def test_cancelled(self, make_server):
        signal = CancelSignal()
        signal.cancel()
        with pytest.raises(MCPCancelledError):
            await discover_tool_catalog([make_server()], signal=signal)
