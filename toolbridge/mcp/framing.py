"""Wire framing for MCP stdio streams.

Two framings share the same byte stream abstraction:

``content-length``
    An HTTP-like header block carrying ``Content-Length: <n>``, a blank
    line, then exactly ``n`` bytes of UTF-8 JSON.

``jsonl``
    One compact JSON document per line. Used by the ``mcp-remote`` bridge,
    which also prints diagnostic noise on the same channel.

The decoder is pull-based: callers ``feed()`` whatever chunk the stream
delivered and get back every complete message it now holds. Partial frames
stay buffered until the next chunk arrives.
"""

from __future__ import annotations

import json
import logging
import re
from enum import Enum
from typing import Any, List, Tuple

logger = logging.getLogger(__name__)

HEADER_DELIMITER = b"\r\n\r\n"
HEADER_DELIMITER_LF = b"\n\n"

_CONTENT_LENGTH_RE = re.compile(rb"content-length:\s*(\d+)", re.IGNORECASE)
_REMOTE_BRIDGE_RE = re.compile(r"\bmcp-remote\b")


class WireFormat(str, Enum):
    """Byte-level framing used on a server's stdio."""

    CONTENT_LENGTH = "content-length"
    JSONL = "jsonl"


def is_remote_bridge(command: str, args: str = "") -> bool:
    """True when the launch signature invokes the ``mcp-remote`` bridge."""
    signature = f"{command or ''} {args or ''}".lower()
    return bool(_REMOTE_BRIDGE_RE.search(signature))


def detect_wire_format(command: str, args: str = "") -> WireFormat:
    """Pick the framing for a server from its command and argument string."""
    if is_remote_bridge(command, args):
        return WireFormat.JSONL
    return WireFormat.CONTENT_LENGTH


def encode_frame(message: Any, wire_format: WireFormat) -> bytes:
    """Serialize *message* into bytes ready to write to the server's stdin."""
    body = json.dumps(message, separators=(",", ":")).encode("ascii")
    if wire_format is WireFormat.JSONL:
        return body + b"\n"
    header = f"Content-Length: {len(body)}\r\n\r\n".encode("ascii")
    return header + body


class FrameDecoder:
    """Resumable decoder turning stream chunks into JSON values."""

    def __init__(self, wire_format: WireFormat):
        self.wire_format = wire_format
        self._buffer = bytearray()

    @property
    def buffered(self) -> int:
        """Number of bytes held back waiting for the rest of a frame."""
        return len(self._buffer)

    def feed(self, chunk: bytes) -> List[Any]:
        """Append *chunk* and return every complete message now available."""
        if chunk:
            self._buffer.extend(chunk)
        if self.wire_format is WireFormat.JSONL:
            return self._drain_lines()
        return self._drain_content_length()

    # ── Line-delimited ────────────────────────────────────────────────────

    def _drain_lines(self) -> List[Any]:
        messages: List[Any] = []
        while True:
            line_end = self._buffer.find(b"\n")
            if line_end == -1:
                return messages

            raw = bytes(self._buffer[:line_end])
            del self._buffer[: line_end + 1]
            line = raw.decode("utf-8", errors="replace").rstrip("\r").strip()
            if not line:
                continue
            try:
                messages.append(json.loads(line))
            except ValueError:
                # Diagnostic output from the bridge, not a protocol frame
                logger.debug("Ignoring non-JSON line on stdout: %.200s", line)

    # ── Content-Length ────────────────────────────────────────────────────

    def _find_header_end(self) -> Tuple[int, int]:
        crlf = self._buffer.find(HEADER_DELIMITER)
        lf = self._buffer.find(HEADER_DELIMITER_LF)
        if crlf != -1 and (lf == -1 or crlf <= lf):
            return crlf, len(HEADER_DELIMITER)
        if lf != -1:
            return lf, len(HEADER_DELIMITER_LF)
        return -1, 0

    def _drain_content_length(self) -> List[Any]:
        messages: List[Any] = []
        while True:
            header_end, delimiter_length = self._find_header_end()
            if header_end == -1:
                return messages

            body_start = header_end + delimiter_length
            match = _CONTENT_LENGTH_RE.search(bytes(self._buffer[:header_end]))
            if not match:
                logger.debug("Discarding frame header without Content-Length")
                del self._buffer[:body_start]
                continue

            body_end = body_start + int(match.group(1))
            if len(self._buffer) < body_end:
                return messages

            body = bytes(self._buffer[body_start:body_end])
            del self._buffer[:body_end]
            try:
                messages.append(json.loads(body.decode("utf-8")))
            except ValueError:
                logger.debug("Dropping malformed frame body (%d bytes)", len(body))
