"""JSON-RPC 2.0 frame variants exchanged with MCP servers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

from toolbridge.mcp.errors import ProtocolError

JSONRPC_VERSION = "2.0"
METHOD_NOT_FOUND = -32601


@dataclass(frozen=True)
class Request:
    """A call expecting a response correlated by ``id``."""

    id: Union[int, str]
    method: str
    params: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"jsonrpc": JSONRPC_VERSION, "id": self.id, "method": self.method, "params": self.params}


@dataclass(frozen=True)
class Notification:
    """A fire-and-forget message; no response is sent."""

    method: str
    params: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"jsonrpc": JSONRPC_VERSION, "method": self.method, "params": self.params}


@dataclass(frozen=True)
class Response:
    """Successful reply to a request."""

    id: Union[int, str]
    result: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {"jsonrpc": JSONRPC_VERSION, "id": self.id, "result": self.result}


@dataclass(frozen=True)
class RpcError:
    code: Optional[int]
    message: str
    data: Any = None


@dataclass(frozen=True)
class ErrorResponse:
    """Failed reply to a request. ``id`` is None for unparseable requests."""

    id: Optional[Union[int, str]]
    error: RpcError

    def to_dict(self) -> Dict[str, Any]:
        error: Dict[str, Any] = {"code": self.error.code, "message": self.error.message}
        if self.error.data is not None:
            error["data"] = self.error.data
        return {"jsonrpc": JSONRPC_VERSION, "id": self.id, "error": error}


Message = Union[Request, Notification, Response, ErrorResponse]


def _valid_id(value: Any) -> bool:
    return isinstance(value, (int, str)) and not isinstance(value, bool)


def _params(raw: Any) -> Dict[str, Any]:
    return raw if isinstance(raw, dict) else {}


def parse_message(payload: Any) -> Message:
    """
    Classify a decoded JSON value as one of the four frame variants.

    Raises ``ProtocolError`` for anything that matches none of them.
    """
    if not isinstance(payload, dict):
        raise ProtocolError(f"Frame is not a JSON object: {type(payload).__name__}")

    method = payload.get("method")
    if method is not None:
        if not isinstance(method, str) or not method:
            raise ProtocolError("Frame has an invalid method")
        msg_id = payload.get("id")
        if msg_id is None:
            return Notification(method=method, params=_params(payload.get("params")))
        if not _valid_id(msg_id):
            raise ProtocolError(f"Request has an invalid id: {msg_id!r}")
        return Request(id=msg_id, method=method, params=_params(payload.get("params")))

    msg_id = payload.get("id")
    if "error" in payload and payload["error"] is not None:
        raw = payload["error"]
        if not isinstance(raw, dict):
            raise ProtocolError("Error response carries a non-object error")
        code = raw.get("code")
        return ErrorResponse(
            id=msg_id if _valid_id(msg_id) else None,
            error=RpcError(
                code=code if isinstance(code, int) and not isinstance(code, bool) else None,
                message=str(raw.get("message") or "MCP error"),
                data=raw.get("data"),
            ),
        )

    if "result" in payload and _valid_id(msg_id):
        return Response(id=msg_id, result=payload["result"])

    raise ProtocolError("Frame is neither a request, notification nor response")
