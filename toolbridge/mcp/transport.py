"""MCP server communication via stdio subprocess transport."""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from toolbridge import __version__
from toolbridge.mcp.allowlist import is_allowed_command
from toolbridge.mcp.errors import (
    CommandNotAllowedError,
    MCPCancelledError,
    MCPError,
    MCPRemoteError,
    MCPTimeoutError,
    MCPTransportError,
    ProtocolError,
)
from toolbridge.mcp.framing import FrameDecoder, encode_frame
from toolbridge.mcp.messages import (
    METHOD_NOT_FOUND,
    ErrorResponse,
    Notification,
    Request,
    Response,
    RpcError,
    parse_message,
)
from toolbridge.mcp.schema import (
    DEFAULT_TIMEOUT_MS,
    MAX_TIMEOUT_MS,
    MIN_TIMEOUT_MS,
    REMOTE_BRIDGE_TIMEOUT_MS,
    ServerConfig,
)
from toolbridge.mcp.signals import CancelSignal

logger = logging.getLogger(__name__)

MCP_PROTOCOL_VERSION = "2024-11-05"
CLIENT_INFO = {"name": "toolbridge", "version": __version__}

STDERR_TAIL_CHARS = 1200
SHUTDOWN_GRACE_SECONDS = 0.6
READ_CHUNK_SIZE = 64 * 1024


def resolve_timeout(config: ServerConfig) -> float:
    """
    Effective per-request timeout for a server, in seconds.

    Remote bridges pay an extra network round trip, so they get a larger
    default and a floor at that default.
    """
    bridge = config.is_remote_bridge
    fallback = REMOTE_BRIDGE_TIMEOUT_MS if bridge else DEFAULT_TIMEOUT_MS
    raw = config.timeout_ms
    if raw is None or raw <= 0:
        return fallback / 1000
    normalized = max(MIN_TIMEOUT_MS, min(MAX_TIMEOUT_MS, int(raw)))
    if bridge:
        normalized = max(REMOTE_BRIDGE_TIMEOUT_MS, normalized)
    return normalized / 1000


class TransportState(str, Enum):
    CONSTRUCTED = "constructed"
    INITIALIZING = "initializing"
    READY = "ready"
    CLOSED = "closed"


@dataclass
class _PendingRequest:
    """An in-flight request. Settled exactly once by whoever pops it first."""

    id: int
    method: str
    future: "asyncio.Future[Any]"
    timer: Optional[asyncio.TimerHandle] = None
    signal: Optional[CancelSignal] = None
    on_cancel: Optional[Callable[[], None]] = None

    def settle(self, result: Any = None, error: Optional[BaseException] = None) -> None:
        if self.timer is not None:
            self.timer.cancel()
        if self.signal is not None and self.on_cancel is not None:
            self.signal.remove_callback(self.on_cancel)
        if self.future.done():
            return
        if error is not None:
            self.future.set_exception(error)
        else:
            self.future.set_result(result)


class MCPTransport:
    """
    Communicate with an MCP server over stdin/stdout (JSON-RPC).

    Requests are pipelined: any number may be outstanding, and responses
    are routed to their callers strictly by id. Each pending request is
    removed from the table exactly once, by the first of: its response,
    its timeout, its cancel signal, process exit, or ``close()``.

    The launch command is checked against the allowlist in the constructor,
    so a disallowed server fails before anything is spawned.
    """

    def __init__(
        self,
        config: ServerConfig,
        grace_period: float = SHUTDOWN_GRACE_SECONDS,
    ):
        if not is_allowed_command(config.command):
            raise CommandNotAllowedError(config.command)

        self.config = config
        self.wire_format = config.wire_format
        self.timeout = resolve_timeout(config)
        self.grace_period = grace_period
        self.server_info: Dict[str, Any] = {}

        self._decoder = FrameDecoder(self.wire_format)
        self._process: Optional[asyncio.subprocess.Process] = None
        self._pending: Dict[int, _PendingRequest] = {}
        self._next_id = 1
        self._state = TransportState.CONSTRUCTED
        self._stderr_tail = ""
        self._tasks: List["asyncio.Task[None]"] = []
        self._start_lock: Optional[asyncio.Lock] = None

    # ── Introspection ─────────────────────────────────────────────────────

    @property
    def state(self) -> TransportState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._state is TransportState.CLOSED

    @property
    def is_running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def stderr_tail(self) -> str:
        return self._stderr_tail.strip()

    def _stderr_suffix(self) -> str:
        tail = self.stderr_tail
        return f" | stderr: {tail}" if tail else ""

    # ── Lifecycle ─────────────────────────────────────────────────────────

    async def start(self) -> None:
        """Spawn the MCP server subprocess."""
        if self._start_lock is None:
            self._start_lock = asyncio.Lock()
        async with self._start_lock:
            if self._process is not None:
                return
            if self.closed:
                raise MCPTransportError("MCP client already closed")

            args = self.config.argv()
            env = {**os.environ, **self.config.env_overrides()}
            logger.info("Starting MCP server %s: %s %s", self.config.label, self.config.command, " ".join(args))
            try:
                process = await asyncio.create_subprocess_exec(
                    self.config.command,
                    *args,
                    stdin=asyncio.subprocess.PIPE,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    env=env,
                )
            except OSError as exc:
                error = MCPTransportError(f"Failed to start MCP server {self.config.label}: {exc}")
                self._mark_closed(error)
                raise error from exc

            if self.closed:
                # close() ran while the spawn was in flight
                await self._terminate(process)
                raise MCPTransportError(f"MCP client for {self.config.label} closed during start")

            self._process = process
            self._tasks = [
                asyncio.create_task(self._read_stdout()),
                asyncio.create_task(self._read_stderr()),
            ]

    async def close(self) -> None:
        """Fail all pending requests, then terminate the subprocess."""
        if self.closed and self._process is None:
            return
        self._mark_closed(MCPTransportError(f"MCP client closed{self._stderr_suffix()}"))

        process, self._process = self._process, None
        if process is not None:
            await self._terminate(process)

        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        if process.stdin is not None and not process.stdin.is_closing():
            process.stdin.close()
        if process.returncode is not None:
            return
        try:
            process.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(process.wait(), timeout=self.grace_period)
        except asyncio.TimeoutError:
            logger.debug("MCP server %s ignored SIGTERM, killing", self.config.label)
            try:
                process.kill()
            except ProcessLookupError:
                return
            await process.wait()

    def _mark_closed(self, error: MCPError) -> None:
        self._state = TransportState.CLOSED
        self._reject_all(error)

    async def __aenter__(self) -> "MCPTransport":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # ── Stream readers ────────────────────────────────────────────────────

    async def _read_stdout(self) -> None:
        process = self._process
        if process is None or process.stdout is None:
            return
        try:
            while True:
                chunk = await process.stdout.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                for payload in self._decoder.feed(chunk):
                    self._dispatch(payload)
        except OSError as exc:
            logger.debug("MCP server %s stdout failed: %s", self.config.label, exc)

        returncode = await process.wait()
        if not self.closed:
            logger.info("MCP server %s exited with code %s", self.config.label, returncode)
            self._mark_closed(MCPTransportError(
                f"MCP server exited: {self.config.label} (code {returncode}){self._stderr_suffix()}"
            ))

    async def _read_stderr(self) -> None:
        process = self._process
        if process is None or process.stderr is None:
            return
        try:
            while True:
                chunk = await process.stderr.read(4096)
                if not chunk:
                    return
                text = chunk.decode("utf-8", errors="replace")
                logger.debug("[%s stderr] %s", self.config.label, text.rstrip())
                self._stderr_tail = (self._stderr_tail + text)[-STDERR_TAIL_CHARS:]
        except OSError:
            return

    # ── Dispatch ──────────────────────────────────────────────────────────

    def _dispatch(self, payload: Any) -> None:
        """Route one decoded frame."""
        try:
            message = parse_message(payload)
        except ProtocolError as exc:
            logger.debug("Dropping frame from %s: %s", self.config.label, exc)
            return

        if isinstance(message, (Response, ErrorResponse)):
            self._resolve(message)
        elif isinstance(message, Request):
            self._answer_server_request(message)
        else:
            logger.debug("Notification from %s: %s", self.config.label, message.method)

    def _resolve(self, message: Any) -> None:
        msg_id = message.id
        if not isinstance(msg_id, int) or isinstance(msg_id, bool):
            logger.debug("Ignoring response with non-integer id %r", msg_id)
            return
        pending = self._pending.pop(msg_id, None)
        if pending is None:
            # Already resolved by timeout, cancellation or close
            logger.debug("Dropping late response for id %s", msg_id)
            return
        if isinstance(message, ErrorResponse):
            pending.settle(error=MCPRemoteError(
                message.error.message, code=message.error.code, data=message.error.data
            ))
        else:
            pending.settle(result=message.result)

    def _answer_server_request(self, request: Request) -> None:
        if request.method == "ping":
            reply: Any = Response(id=request.id, result={})
        else:
            reply = ErrorResponse(
                id=request.id,
                error=RpcError(code=METHOD_NOT_FOUND, message=f"Method not found: {request.method}"),
            )
        try:
            self._write(reply.to_dict())
        except MCPTransportError as exc:
            logger.debug("Could not answer %s request: %s", request.method, exc)

    def _expire(self, msg_id: int) -> None:
        pending = self._pending.pop(msg_id, None)
        if pending is None:
            return
        logger.info("MCP request %s (%s) timed out on %s", msg_id, pending.method, self.config.label)
        pending.settle(error=MCPTimeoutError(f"MCP timeout on {pending.method}{self._stderr_suffix()}"))

    def _cancel(self, msg_id: int) -> None:
        pending = self._pending.pop(msg_id, None)
        if pending is None:
            return
        reason = pending.signal.reason if pending.signal is not None else None
        pending.settle(error=MCPCancelledError(reason or "Aborted"))

    def _reject_all(self, error: MCPError) -> None:
        if not self._pending:
            return
        for msg_id in list(self._pending):
            pending = self._pending.pop(msg_id)
            pending.settle(error=error)

    # ── JSON-RPC ──────────────────────────────────────────────────────────

    def _write(self, payload: Dict[str, Any]) -> None:
        process = self._process
        if process is None or process.stdin is None or process.stdin.is_closing():
            raise MCPTransportError(f"MCP server {self.config.label} is not running")
        try:
            process.stdin.write(encode_frame(payload, self.wire_format))
        except (BrokenPipeError, ConnectionResetError, RuntimeError) as exc:
            raise MCPTransportError(f"MCP transport error: {exc}") from exc

    def _register(self, method: str, timeout: float, signal: Optional[CancelSignal] = None) -> _PendingRequest:
        loop = asyncio.get_running_loop()
        msg_id = self._next_id
        self._next_id += 1
        pending = _PendingRequest(id=msg_id, method=method, future=loop.create_future())
        pending.timer = loop.call_later(timeout, self._expire, msg_id)
        if signal is not None:
            pending.signal = signal
            pending.on_cancel = signal.add_callback(lambda: self._cancel(msg_id))
        self._pending[msg_id] = pending
        return pending

    async def request(
        self,
        method: str,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
        signal: Optional[CancelSignal] = None,
    ) -> Any:
        """Send a JSON-RPC request and return its result."""
        if self.closed:
            raise MCPTransportError("MCP client already closed")
        if signal is not None and signal.cancelled:
            raise MCPCancelledError(signal.reason or "Aborted")
        await self.start()
        if self.closed:
            raise MCPTransportError(f"MCP server {self.config.label} is not running{self._stderr_suffix()}")

        pending = self._register(method, timeout or self.timeout, signal)
        try:
            self._write(Request(id=pending.id, method=method, params=params or {}).to_dict())
            await self._process.stdin.drain()
        except Exception as exc:
            if not isinstance(exc, MCPError):
                exc = MCPTransportError(f"MCP transport error: {exc}")
            if self._pending.pop(pending.id, None) is not None:
                pending.settle(error=exc)

        try:
            return await pending.future
        except asyncio.CancelledError:
            if self._pending.pop(pending.id, None) is not None:
                pending.settle(error=MCPCancelledError("Aborted"))
            raise

    def notify(self, method: str, params: Optional[Dict[str, Any]] = None) -> None:
        """Send a fire-and-forget notification."""
        self._write(Notification(method=method, params=params or {}).to_dict())

    # ── MCP Protocol ──────────────────────────────────────────────────────

    async def initialize(self, signal: Optional[CancelSignal] = None) -> Dict[str, Any]:
        """Perform MCP initialize handshake."""
        if self._state is TransportState.CONSTRUCTED:
            self._state = TransportState.INITIALIZING
        result = await self.request("initialize", {
            "protocolVersion": MCP_PROTOCOL_VERSION,
            "capabilities": {},
            "clientInfo": CLIENT_INFO,
        }, signal=signal)
        self.notify("notifications/initialized", {})
        if not self.closed:
            self._state = TransportState.READY
        self.server_info = result if isinstance(result, dict) else {}
        return self.server_info

    async def list_tools(self, signal: Optional[CancelSignal] = None) -> List[Dict[str, Any]]:
        """Fetch the tool list from the MCP server."""
        result = await self.request("tools/list", {}, signal=signal)
        tools = result.get("tools") if isinstance(result, dict) else None
        return tools if isinstance(tools, list) else []

    async def call_tool(
        self,
        name: str,
        arguments: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
        signal: Optional[CancelSignal] = None,
    ) -> Any:
        """Call a tool on the MCP server."""
        return await self.request(
            "tools/call", {"name": name, "arguments": arguments or {}}, timeout=timeout, signal=signal
        )
