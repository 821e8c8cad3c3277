"""Exception hierarchy for MCP tool providers."""

from __future__ import annotations

from typing import Any, Optional


class MCPError(Exception):
    """Base class for every error raised by the MCP layer."""


class CommandNotAllowedError(MCPError):
    """Raised when a server's launch command is not an allowed runtime."""

    def __init__(self, command: str):
        super().__init__(f"MCP command is not allowed: {command}")
        self.command = command


class MCPTransportError(MCPError):
    """Raised when MCP transport communication fails."""


class MCPRemoteError(MCPError):
    """A JSON-RPC error object returned by the server."""

    def __init__(self, message: str, code: Optional[int] = None, data: Any = None):
        super().__init__(message)
        self.code = code
        self.data = data


class MCPTimeoutError(MCPError):
    """No response arrived within the request's time budget."""


class MCPCancelledError(MCPError):
    """The request was aborted through its cancel signal."""


class ProtocolError(MCPError):
    """A decoded frame is not a JSON-RPC request, notification or response."""
