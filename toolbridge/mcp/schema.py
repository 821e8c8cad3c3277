"""Data models for MCP server configs, discovered tools, and call traces."""

from __future__ import annotations

import json
import re
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from toolbridge.mcp.framing import WireFormat, detect_wire_format, is_remote_bridge

DEFAULT_TIMEOUT_MS = 15000
REMOTE_BRIDGE_TIMEOUT_MS = 45000
MIN_TIMEOUT_MS = 1000
MAX_TIMEOUT_MS = 120000

MAX_DESCRIPTION_CHARS = 512
TRACE_ARGS_CHARS = 5000
TRACE_RESULT_CHARS = 12000

_ARG_TOKEN_RE = re.compile(r"\"[^\"]*\"|'[^']*'|\S+")


def parse_args(raw: Optional[str]) -> List[str]:
    """
    Split an argument string into argv tokens.

    Double- or single-quoted tokens keep their spaces and lose the quotes.
    Unbalanced quotes are kept literally instead of raising.
    """
    text = str(raw or "").strip()
    if not text:
        return []
    tokens = []
    for token in _ARG_TOKEN_RE.findall(text):
        if len(token) >= 2 and token[0] == token[-1] and token[0] in ("'", '"'):
            token = token[1:-1]
        if token:
            tokens.append(token)
    return tokens


def parse_env(raw: Optional[str]) -> Dict[str, str]:
    """Parse newline-delimited ``KEY=VALUE`` overrides (``#`` starts a comment)."""
    out: Dict[str, str] = {}
    for line in str(raw or "").splitlines():
        trimmed = line.strip()
        if not trimmed or trimmed.startswith("#"):
            continue
        idx = trimmed.find("=")
        if idx <= 0:
            continue
        key = trimmed[:idx].strip()
        if not key:
            continue
        out[key] = trimmed[idx + 1:]
    return out


class ServerConfig(BaseModel):
    """Configuration for a single MCP server. Immutable once built."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    name: str = ""
    command: str
    args: str = ""
    env: str = ""
    enabled: bool = True
    timeout_ms: int = Field(default=DEFAULT_TIMEOUT_MS, alias="timeoutMs")

    @field_validator("timeout_ms", mode="before")
    @classmethod
    def _coerce_timeout(cls, value: Any) -> int:
        try:
            return int(float(value))
        except (TypeError, ValueError, OverflowError):
            return DEFAULT_TIMEOUT_MS

    @property
    def label(self) -> str:
        return self.name or self.id

    @property
    def wire_format(self) -> WireFormat:
        return detect_wire_format(self.command, self.args)

    @property
    def is_remote_bridge(self) -> bool:
        return is_remote_bridge(self.command, self.args)

    def argv(self) -> List[str]:
        return parse_args(self.args)

    def env_overrides(self) -> Dict[str, str]:
        return parse_env(self.env)


class FunctionSpec(BaseModel):
    name: str
    description: str
    parameters: Dict[str, Any]


class ToolDefinition(BaseModel):
    """OpenAI-style function tool handed to the completion call."""

    type: Literal["function"] = "function"
    function: FunctionSpec


class ToolInfo(BaseModel):
    name: str
    description: str = ""


class ConnectionTestResult(BaseModel):
    """Outcome of a one-shot handshake + tools/list against a server."""

    ok: bool
    tools: List[ToolInfo] = Field(default_factory=list)
    error: Optional[str] = None


class DiscoveredTool(BaseModel):
    """Catalog row for a settings screen: which server exposes which tool."""

    server_id: str
    server_name: str
    tool_name: str
    call_name: str
    description: str


class ToolCallTrace(BaseModel):
    """Record of a single tool invocation made during a turn."""

    call_id: str
    name: str
    args: str = ""
    result: str = ""

    def serialize(self) -> str:
        """Compact JSON stored as a distinct ``tool`` message in chat history."""
        name = (self.name or "unknown_tool").strip()
        args = (self.args or "").strip()
        result = (self.result or "").strip()
        return json.dumps(
            {
                "kind": "tool_call",
                "callId": (self.call_id or "").strip(),
                "name": name,
                "args": args[:TRACE_ARGS_CHARS] if args else "{}",
                "result": result[:TRACE_RESULT_CHARS] if result else "(empty)",
            },
            separators=(",", ":"),
            ensure_ascii=False,
        )
