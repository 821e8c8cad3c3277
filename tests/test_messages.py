"""Tests for JSON-RPC frame classification."""

import pytest

from toolbridge.mcp.errors import ProtocolError
from toolbridge.mcp.messages import (
    ErrorResponse,
    Notification,
    Request,
    Response,
    RpcError,
    parse_message,
)


class TestParseMessage:
    def test_request(self):
        message = parse_message({"jsonrpc": "2.0", "id": 4, "method": "ping"})
        assert message == Request(id=4, method="ping", params={})

    def test_request_with_string_id(self):
        message = parse_message({"id": "abc", "method": "sampling/createMessage", "params": {"x": 1}})
        assert isinstance(message, Request)
        assert message.params == {"x": 1}

    def test_notification(self):
        message = parse_message({"method": "notifications/progress", "params": {"progress": 1}})
        assert message == Notification(method="notifications/progress", params={"progress": 1})

    def test_response(self):
        message = parse_message({"jsonrpc": "2.0", "id": 1, "result": {"tools": []}})
        assert message == Response(id=1, result={"tools": []})

    def test_null_result_is_still_a_response(self):
        assert parse_message({"id": 2, "result": None}) == Response(id=2, result=None)

    def test_error_response(self):
        message = parse_message({"id": 3, "error": {"code": -32602, "message": "bad params", "data": [1]}})
        assert isinstance(message, ErrorResponse)
        assert message.id == 3
        assert message.error == RpcError(code=-32602, message="bad params", data=[1])

    def test_error_without_message_gets_default(self):
        message = parse_message({"id": 3, "error": {}})
        assert message.error.message == "MCP error"
        assert message.error.code is None

    @pytest.mark.parametrize("payload", [
        [],
        "text",
        42,
        {},
        {"id": 1},
        {"id": True, "result": 1},
        {"id": 1, "method": ""},
        {"id": [1], "method": "x"},
        {"id": 1, "error": "boom"},
    ])
    def test_rejects_unknown_shapes(self, payload):
        with pytest.raises(ProtocolError):
            parse_message(payload)


class TestToDict:
    def test_request_round_trip(self):
        request = Request(id=9, method="tools/call", params={"name": "x"})
        assert parse_message(request.to_dict()) == request

    def test_error_response_omits_empty_data(self):
        payload = ErrorResponse(id=1, error=RpcError(code=-32601, message="nope")).to_dict()
        assert payload == {"jsonrpc": "2.0", "id": 1, "error": {"code": -32601, "message": "nope"}}

    def test_notification_has_no_id(self):
        assert "id" not in Notification(method="notifications/initialized").to_dict()
