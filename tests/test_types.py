import json

import pytest

from mcp_http_transport.shared.exceptions import InvalidMessageError
from mcp_http_transport.types import (
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResponse,
    MessageKind,
    classify,
    parse_message,
    serialize_message,
)


@pytest.mark.parametrize(
    ("payload", "expected"),
    [
        ({"jsonrpc": "2.0", "id": 1, "method": "ping"}, MessageKind.REQUEST),
        ({"jsonrpc": "2.0", "id": "abc", "method": "tools/call", "params": {}}, MessageKind.REQUEST),
        ({"jsonrpc": "2.0", "id": 0, "method": "ping"}, MessageKind.REQUEST),
        ({"jsonrpc": "2.0", "method": "notifications/initialized"}, MessageKind.NOTIFICATION),
        ({"jsonrpc": "2.0", "id": None, "method": "notifications/progress"}, MessageKind.NOTIFICATION),
        ({"jsonrpc": "2.0", "id": 1, "result": {}}, MessageKind.RESPONSE),
        ({"jsonrpc": "2.0", "id": "x", "error": {"code": -32601, "message": "nope"}}, MessageKind.RESPONSE),
        ({"jsonrpc": "2.0", "id": None, "error": {"code": -32700, "message": "Parse error"}}, None),
        ({"jsonrpc": "2.0", "result": {}}, None),
        ({}, None),
        ([{"jsonrpc": "2.0", "id": 1, "method": "ping"}], None),
        ("ping", None),
        (42, None),
    ],
)
def test_classify(payload, expected):
    assert classify(payload) == expected


def test_classification_is_exclusive():
    """Each shape maps to exactly one model class."""
    request = parse_message({"jsonrpc": "2.0", "id": 7, "method": "ping"})
    notification = parse_message({"jsonrpc": "2.0", "method": "ping"})
    response = parse_message({"jsonrpc": "2.0", "id": 7, "result": {"ok": True}})

    assert type(request) is JSONRPCRequest
    assert type(notification) is JSONRPCNotification
    assert type(response) is JSONRPCResponse


def test_string_and_integer_ids_stay_distinct():
    assert parse_message({"jsonrpc": "2.0", "id": 1, "result": {}}).id == 1
    assert parse_message({"jsonrpc": "2.0", "id": "1", "result": {}}).id == "1"


def test_parse_rejects_unrecognized_shape():
    with pytest.raises(InvalidMessageError):
        parse_message({"jsonrpc": "2.0", "params": {}})


def test_parse_rejects_invalid_field_values():
    with pytest.raises(InvalidMessageError) as excinfo:
        parse_message({"jsonrpc": "2.0", "id": 1, "method": 12})
    assert excinfo.value.context == "Invalid JSON-RPC request"


def test_parse_rejects_boolean_id():
    with pytest.raises(InvalidMessageError):
        parse_message({"jsonrpc": "2.0", "id": True, "result": {}})


def test_serialize_keeps_only_present_fields():
    response = parse_message({"jsonrpc": "2.0", "id": 1, "result": {}})
    assert serialize_message(response) == '{"jsonrpc":"2.0","id":1,"result":{}}'


def test_serialize_constructed_message_includes_version():
    notification = JSONRPCNotification(method="notifications/message", params={"level": "info"})
    assert json.loads(serialize_message(notification)) == {
        "jsonrpc": "2.0",
        "method": "notifications/message",
        "params": {"level": "info"},
    }


def test_serialize_keeps_null_result_and_extra_fields():
    response = parse_message({"jsonrpc": "2.0", "id": "a", "result": None, "meta": {"trace": "t"}})
    assert json.loads(serialize_message(response)) == {
        "jsonrpc": "2.0",
        "id": "a",
        "result": None,
        "meta": {"trace": "t"},
    }


def test_serialize_does_not_escape_unicode():
    request = JSONRPCRequest(id=1, method="echo", params={"text": "你好"})
    assert "你好" in serialize_message(request)
