"""One-shot helpers used by settings screens: connection test and catalog discovery."""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Set

from toolbridge.mcp.errors import MCPCancelledError, MCPError
from toolbridge.mcp.registry import build_call_name
from toolbridge.mcp.schema import (
    MAX_DESCRIPTION_CHARS,
    ConnectionTestResult,
    DiscoveredTool,
    ServerConfig,
    ToolInfo,
)
from toolbridge.mcp.signals import CancelSignal
from toolbridge.mcp.transport import MCPTransport

logger = logging.getLogger(__name__)


async def check_server_connection(
    server: ServerConfig,
    signal: Optional[CancelSignal] = None,
) -> ConnectionTestResult:
    """Start *server*, handshake, list its tools and shut it down again."""
    if not server.command.strip():
        return ConnectionTestResult(ok=False, error="Command is required")

    try:
        client = MCPTransport(server)
    except MCPError as exc:
        return ConnectionTestResult(ok=False, error=str(exc))

    try:
        await client.initialize(signal=signal)
        listed = await client.list_tools(signal=signal)
    except MCPError as exc:
        return ConnectionTestResult(ok=False, error=str(exc) or "Unknown MCP error")
    finally:
        await client.close()

    tools = [
        ToolInfo(name=str(item.get("name") or "").strip(), description=str(item.get("description") or "").strip())
        for item in listed
        if isinstance(item, dict) and str(item.get("name") or "").strip()
    ]
    return ConnectionTestResult(ok=True, tools=tools)


async def discover_tool_catalog(
    servers: Iterable[ServerConfig],
    signal: Optional[CancelSignal] = None,
) -> List[DiscoveredTool]:
    """
    List every tool across *servers* with the call name it would get.

    Best-effort: failing servers are logged and skipped. Each client is
    closed as soon as its listing is done.
    """
    used: Set[str] = set()
    discovered: List[DiscoveredTool] = []

    for server in servers:
        if not server.enabled or not server.command.strip():
            continue
        try:
            client = MCPTransport(server)
        except MCPError as exc:
            logger.warning("Skipping MCP server %s: %s", server.label, exc)
            continue

        try:
            await client.initialize(signal=signal)
            listed = await client.list_tools(signal=signal)
        except MCPCancelledError:
            raise
        except MCPError as exc:
            logger.warning("Discovery failed for %s: %s", server.label, exc)
            continue
        finally:
            await client.close()

        for item in listed:
            if not isinstance(item, dict):
                continue
            tool_name = str(item.get("name") or "").strip()
            if not tool_name:
                continue
            description = str(item.get("description") or f"{server.label}: {tool_name}")
            discovered.append(DiscoveredTool(
                server_id=server.id.strip(),
                server_name=server.label.strip(),
                tool_name=tool_name,
                call_name=build_call_name(server.id or server.name or "server", tool_name, used),
                description=description[:MAX_DESCRIPTION_CHARS],
            ))

    return discovered
