"""Tests for MCP wire framing."""

import json

import pytest

from toolbridge.mcp.framing import (
    FrameDecoder,
    WireFormat,
    detect_wire_format,
    encode_frame,
    is_remote_bridge,
)


def _split(data: bytes, size: int):
    return [data[i:i + size] for i in range(0, len(data), size)]


# ---------------------------------------------------------------------------
# Format detection
# ---------------------------------------------------------------------------


class TestDetectWireFormat:
    def test_plain_server_uses_content_length(self):
        assert detect_wire_format("npx", "-y @modelcontextprotocol/server-memory") is WireFormat.CONTENT_LENGTH

    def test_remote_bridge_uses_jsonl(self):
        assert detect_wire_format("npx", "-y mcp-remote https://example.com/sse") is WireFormat.JSONL

    def test_case_insensitive(self):
        assert is_remote_bridge("NPX", "MCP-REMOTE https://x") is True

    def test_word_boundary(self):
        assert is_remote_bridge("npx", "mcp-remoteish") is False

    def test_bridge_in_command_path(self):
        assert is_remote_bridge("/opt/mcp-remote/bin/node", "") is True


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------


class TestEncodeFrame:
    def test_content_length_header_counts_bytes(self):
        frame = encode_frame({"text": "héllo"}, WireFormat.CONTENT_LENGTH)
        header, body = frame.split(b"\r\n\r\n", 1)
        assert header == f"Content-Length: {len(body)}".encode()
        assert json.loads(body) == {"text": "héllo"}
        assert len(body) > len('{"text":"hello"}')

    def test_jsonl_is_compact_single_line(self):
        frame = encode_frame({"a": 1, "b": [1, 2]}, WireFormat.JSONL)
        assert frame == b'{"a":1,"b":[1,2]}\n'

    @pytest.mark.parametrize("wire_format", list(WireFormat))
    def test_lone_surrogate_is_escaped(self, wire_format):
        frame = encode_frame({"text": "\ud800"}, wire_format)
        assert b"\\ud800" in frame
        body = frame.split(b"\r\n\r\n", 1)[-1]
        assert json.loads(body) == {"text": "\ud800"}


# ---------------------------------------------------------------------------
# Content-Length decoding
# ---------------------------------------------------------------------------


class TestContentLengthDecoder:
    def test_single_frame(self):
        decoder = FrameDecoder(WireFormat.CONTENT_LENGTH)
        assert decoder.feed(encode_frame({"id": 1}, WireFormat.CONTENT_LENGTH)) == [{"id": 1}]
        assert decoder.buffered == 0

    @pytest.mark.parametrize("chunk_size", [1, 3, 7, 64])
    def test_split_across_chunks(self, chunk_size):
        messages = [{"id": i, "result": {"text": "x" * i}} for i in range(1, 6)]
        data = b"".join(encode_frame(m, WireFormat.CONTENT_LENGTH) for m in messages)

        decoder = FrameDecoder(WireFormat.CONTENT_LENGTH)
        decoded = []
        for chunk in _split(data, chunk_size):
            decoded.extend(decoder.feed(chunk))

        assert decoded == messages
        assert decoder.buffered == 0

    def test_partial_body_stays_buffered(self):
        frame = encode_frame({"id": 7}, WireFormat.CONTENT_LENGTH)
        decoder = FrameDecoder(WireFormat.CONTENT_LENGTH)
        assert decoder.feed(frame[:-2]) == []
        assert decoder.buffered == len(frame) - 2
        assert decoder.feed(frame[-2:]) == [{"id": 7}]

    def test_lf_only_delimiter(self):
        decoder = FrameDecoder(WireFormat.CONTENT_LENGTH)
        assert decoder.feed(b'Content-Length: 8\n\n{"id":1}') == [{"id": 1}]

    def test_header_is_case_insensitive_with_extra_fields(self):
        body = b'{"ok":true}'
        data = b"content-type: application/json\r\nCONTENT-LENGTH:%d\r\n\r\n" % len(body) + body
        assert FrameDecoder(WireFormat.CONTENT_LENGTH).feed(data) == [{"ok": True}]

    def test_header_without_length_is_discarded(self):
        decoder = FrameDecoder(WireFormat.CONTENT_LENGTH)
        data = b"X-Noise: 1\r\n\r\n" + encode_frame({"id": 2}, WireFormat.CONTENT_LENGTH)
        assert decoder.feed(data) == [{"id": 2}]

    def test_invalid_json_body_is_dropped(self):
        decoder = FrameDecoder(WireFormat.CONTENT_LENGTH)
        data = b"Content-Length: 5\r\n\r\nnope!" + encode_frame({"id": 3}, WireFormat.CONTENT_LENGTH)
        assert decoder.feed(data) == [{"id": 3}]
        assert decoder.buffered == 0


# ---------------------------------------------------------------------------
# Line-delimited decoding
# ---------------------------------------------------------------------------


class TestJsonlDecoder:
    @pytest.mark.parametrize("chunk_size", [1, 5, 1024])
    def test_split_across_chunks(self, chunk_size):
        messages = [{"id": i} for i in range(1, 4)]
        data = b"".join(encode_frame(m, WireFormat.JSONL) for m in messages)

        decoder = FrameDecoder(WireFormat.JSONL)
        decoded = []
        for chunk in _split(data, chunk_size):
            decoded.extend(decoder.feed(chunk))
        assert decoded == messages

    def test_crlf_and_blank_lines(self):
        decoder = FrameDecoder(WireFormat.JSONL)
        assert decoder.feed(b'\r\n\n{"id":1}\r\n') == [{"id": 1}]

    def test_noise_lines_skipped(self):
        decoder = FrameDecoder(WireFormat.JSONL)
        data = b'[mcp-remote] Connecting to server...\n{"id":1}\nnot json either\n'
        assert decoder.feed(data) == [{"id": 1}]

    def test_unterminated_line_waits(self):
        decoder = FrameDecoder(WireFormat.JSONL)
        assert decoder.feed(b'{"id":1}') == []
        assert decoder.feed(b"\n") == [{"id": 1}]
