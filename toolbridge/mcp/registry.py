"""Tool registry: aggregates tools from many MCP servers into one namespace."""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Optional, Set

from toolbridge.mcp.errors import MCPCancelledError
from toolbridge.mcp.schema import MAX_DESCRIPTION_CHARS, FunctionSpec, ServerConfig, ToolDefinition
from toolbridge.mcp.signals import CancelSignal
from toolbridge.mcp.transport import MCPTransport

logger = logging.getLogger(__name__)

CALL_NAME_PREFIX = "mcp"
MAX_CALL_NAME_LENGTH = 64


def sanitize_name_part(text: str) -> str:
    """Lower-case and squash anything outside ``[a-z0-9_-]`` into single underscores."""
    normalized = re.sub(r"[^a-z0-9_-]+", "_", str(text or "").lower())
    normalized = re.sub(r"_+", "_", normalized).strip("_")
    return normalized or "tool"


def build_call_name(
    server_id: str,
    tool_name: str,
    used: Set[str],
    prefix: str = CALL_NAME_PREFIX,
    max_length: int = MAX_CALL_NAME_LENGTH,
) -> str:
    """
    Derive a unique, length-capped call name and reserve it in *used*.

    Collisions get ``_2``, ``_3``, ... appended, truncating the base so the
    result never exceeds *max_length*.
    """
    base = f"{prefix}_{sanitize_name_part(server_id)}__{sanitize_name_part(tool_name)}"
    candidate = base[:max_length]
    suffix = 2
    while candidate in used:
        tail = f"_{suffix}"
        candidate = f"{base[: max(1, max_length - len(tail))]}{tail}"
        suffix += 1
    used.add(candidate)
    return candidate


def normalize_schema(value: Any) -> Dict[str, Any]:
    """Tool input schema, or a permissive object schema when missing/invalid."""
    if isinstance(value, dict):
        return value
    return {"type": "object", "properties": {}, "additionalProperties": True}


@dataclass
class ToolEntry:
    """One callable tool in the per-turn catalog."""

    call_name: str
    tool_name: str
    server_id: str
    server_name: str
    description: str
    timeout: float
    client: Any
    parameters: Dict[str, Any] = field(default_factory=dict)

    def to_definition(self) -> Dict[str, Any]:
        function = FunctionSpec(name=self.call_name, description=self.description, parameters=self.parameters)
        return ToolDefinition(function=function).model_dump()


class ToolRegistry:
    """
    Per-turn catalog of tools exposed to the model.

    ``prepare()`` starts a client per enabled server, performs the
    handshake, lists its tools and registers each under a collision-free
    call name. A server that fails at any step is logged, closed and
    skipped; the rest of the catalog is still built.

    The registry owns the clients it created and closes them in ``close()``.
    It is never shared across turns.
    """

    def __init__(self, prefix: str = CALL_NAME_PREFIX, max_name_length: int = MAX_CALL_NAME_LENGTH):
        self.prefix = prefix
        self.max_name_length = max_name_length
        self._entries: Dict[str, ToolEntry] = {}
        self._used_names: Set[str] = set()
        self._clients: List[Any] = []

    # ── Construction ──────────────────────────────────────────────────────

    @classmethod
    async def prepare(
        cls,
        servers: Iterable[ServerConfig],
        signal: Optional[CancelSignal] = None,
    ) -> "ToolRegistry":
        """Build a registry from every enabled, command-bearing server."""
        registry = cls()
        try:
            for server in servers:
                if not server.enabled or not server.command.strip():
                    continue
                await registry.add_server(server, signal=signal)
        except BaseException:
            await registry.close()
            raise
        logger.info("Prepared %d MCP tools from %d servers", len(registry), len(registry._clients))
        return registry

    async def add_server(self, server: ServerConfig, signal: Optional[CancelSignal] = None) -> int:
        """Connect to one server and register its tools. Returns the count added."""
        try:
            client = MCPTransport(server)
        except Exception as exc:
            logger.warning("Skipping MCP server %s: %s", server.label, exc)
            return 0

        try:
            await client.initialize(signal=signal)
            listed = await client.list_tools(signal=signal)
        except MCPCancelledError:
            await client.close()
            raise
        except Exception as exc:
            logger.warning("MCP server %s failed during discovery: %s", server.label, exc)
            await client.close()
            return 0

        self.add_client(client)
        added = 0
        for item in listed:
            if self.register(client, server, item, timeout=client.timeout) is not None:
                added += 1
        logger.info("MCP server %s: %d tools", server.label, added)
        return added

    def add_client(self, client: Any) -> None:
        """Take ownership of *client* so ``close()`` shuts it down."""
        if client not in self._clients:
            self._clients.append(client)

    def register(
        self,
        client: Any,
        server: ServerConfig,
        item: Any,
        timeout: float,
    ) -> Optional[ToolEntry]:
        """Register one ``tools/list`` item. Items without a name are skipped."""
        if not isinstance(item, dict):
            return None
        tool_name = str(item.get("name") or "").strip()
        if not tool_name:
            return None

        call_name = build_call_name(
            server.id or server.name or "server",
            tool_name,
            self._used_names,
            prefix=self.prefix,
            max_length=self.max_name_length,
        )
        description = str(item.get("description") or f"{server.label}: {tool_name}")
        entry = ToolEntry(
            call_name=call_name,
            tool_name=tool_name,
            server_id=server.id,
            server_name=server.label,
            description=description[:MAX_DESCRIPTION_CHARS],
            timeout=timeout,
            client=client,
            parameters=normalize_schema(item.get("inputSchema")),
        )
        self._entries[call_name] = entry
        return entry

    # ── Lookup ────────────────────────────────────────────────────────────

    def get(self, call_name: str) -> Optional[ToolEntry]:
        return self._entries.get(call_name)

    @property
    def entries(self) -> List[ToolEntry]:
        return list(self._entries.values())

    def tool_definitions(self) -> List[Dict[str, Any]]:
        """OpenAI-style function definitions for every registered tool."""
        return [entry.to_definition() for entry in self._entries.values()]

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, call_name: object) -> bool:
        return call_name in self._entries

    def __iter__(self) -> Iterator[ToolEntry]:
        return iter(self.entries)

    # ── Cleanup ───────────────────────────────────────────────────────────

    async def close(self) -> None:
        """Stop all MCP server subprocesses owned by this registry."""
        clients, self._clients = self._clients, []
        self._entries.clear()
        if clients:
            await asyncio.gather(*(client.close() for client in clients), return_exceptions=True)

    async def __aenter__(self) -> "ToolRegistry":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()
