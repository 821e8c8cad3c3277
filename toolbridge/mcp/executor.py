"""Tool executor: runs model-requested calls and renders results as text."""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Dict, Optional

from toolbridge.mcp.errors import MCPError
from toolbridge.mcp.registry import ToolRegistry
from toolbridge.mcp.signals import CancelSignal

logger = logging.getLogger(__name__)

MAX_RESULT_CHARS = 24000


def flatten_tool_result(result: Any) -> str:
    """
    Render a ``tools/call`` result as plain text for the model.

    Text parts are joined with newlines and other typed parts become a
    ``[<type> result]`` placeholder. When nothing textual remains the whole
    result is rendered as compact JSON. ``isError`` results are prefixed so
    the model can tell a failed run from output.
    """
    if not isinstance(result, dict):
        return "" if result is None else str(result)

    content = result.get("content")
    parts = []
    for item in content if isinstance(content, list) else []:
        if not isinstance(item, dict):
            continue
        kind = item.get("type")
        if kind == "text":
            text = item.get("text")
            parts.append("" if text is None else str(text))
        elif isinstance(kind, str):
            parts.append(f"[{kind} result]")

    text = "\n".join(parts).strip()
    if not text:
        text = json.dumps(result, separators=(",", ":"), ensure_ascii=False, default=str)
    if result.get("isError") is True:
        return f"Tool error:\n{text}"
    return text


class ToolExecutor:
    """
    Executes tool calls against the registry's clients.

    Every outcome is returned as text to feed back to the model: unknown
    tools, malformed arguments and transport failures never raise past
    ``execute()``.
    """

    def __init__(self, registry: ToolRegistry, max_result_chars: int = MAX_RESULT_CHARS):
        self._registry = registry
        self.max_result_chars = max_result_chars

    # ── Execution ─────────────────────────────────────────────────────────

    async def execute(
        self,
        call_name: str,
        raw_arguments: Optional[str] = None,
        signal: Optional[CancelSignal] = None,
    ) -> str:
        """
        Execute a tool call and return its bounded text rendering.

        Parameters
        ----------
        call_name : registry call name like ``mcp_search__query``
        raw_arguments : JSON object text from the model; may be empty
        signal : turn-wide cancel signal forwarded to the transport
        """
        entry = self._registry.get(call_name)
        if entry is None:
            return f"Tool not found: {call_name}"

        try:
            arguments = self.parse_arguments(raw_arguments)
        except ValueError as exc:
            return f"Tool argument parsing error for {call_name}: {exc}"

        t0 = time.perf_counter()
        try:
            result = await entry.client.call_tool(
                entry.tool_name, arguments, timeout=entry.timeout, signal=signal
            )
        except Exception as exc:
            elapsed_ms = int((time.perf_counter() - t0) * 1000)
            if isinstance(exc, MCPError):
                logger.info("Tool %s failed after %dms: %s", call_name, elapsed_ms, exc)
            else:
                logger.warning("Tool %s raised %s after %dms: %s", call_name, type(exc).__name__, elapsed_ms, exc)
            return f"Tool execution failed ({call_name}): {exc}"

        elapsed_ms = int((time.perf_counter() - t0) * 1000)
        logger.debug("Tool %s finished in %dms", call_name, elapsed_ms)
        return flatten_tool_result(result)[: self.max_result_chars]

    @staticmethod
    def parse_arguments(raw: Optional[str]) -> Dict[str, Any]:
        """Decode model-supplied arguments. Non-object JSON yields ``{}``."""
        if isinstance(raw, dict):
            return raw
        if raw is None or not str(raw).strip():
            return {}
        decoded = json.loads(raw)
        return decoded if isinstance(decoded, dict) else {}
