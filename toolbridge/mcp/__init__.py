"""
MCP stdio client layer for toolbridge.

Tool providers run as subprocesses speaking JSON-RPC over stdin/stdout,
framed either with Content-Length headers or one JSON document per line.

    ServerConfig --> allowlist gate --> MCPTransport (one per server)
                                             |
    ToolRegistry  <-- tools/list ------------+
        |
    ToolExecutor  --> tools/call --> flattened, bounded text for the model
"""

from toolbridge.mcp.allowlist import ALLOWED_MCP_COMMANDS, is_allowed_command
from toolbridge.mcp.errors import (
    CommandNotAllowedError,
    MCPCancelledError,
    MCPError,
    MCPRemoteError,
    MCPTimeoutError,
    MCPTransportError,
    ProtocolError,
)
from toolbridge.mcp.framing import FrameDecoder, WireFormat, detect_wire_format, encode_frame
from toolbridge.mcp.schema import ServerConfig, ToolCallTrace
from toolbridge.mcp.signals import CancelSignal
from toolbridge.mcp.transport import MCPTransport, TransportState, resolve_timeout
from toolbridge.mcp.registry import ToolEntry, ToolRegistry, build_call_name
from toolbridge.mcp.executor import ToolExecutor, flatten_tool_result
from toolbridge.mcp.discovery import check_server_connection, discover_tool_catalog

__all__ = [
    "ALLOWED_MCP_COMMANDS",
    "is_allowed_command",
    "CommandNotAllowedError",
    "MCPCancelledError",
    "MCPError",
    "MCPRemoteError",
    "MCPTimeoutError",
    "MCPTransportError",
    "ProtocolError",
    "FrameDecoder",
    "WireFormat",
    "detect_wire_format",
    "encode_frame",
    "ServerConfig",
    "ToolCallTrace",
    "CancelSignal",
    "MCPTransport",
    "TransportState",
    "resolve_timeout",
    "ToolEntry",
    "ToolRegistry",
    "build_call_name",
    "ToolExecutor",
    "flatten_tool_result",
    "check_server_connection",
    "discover_tool_catalog",
]
