from .server import StreamableHTTPServerTransport, TransportSettings
from .shared.exceptions import (
    InvalidMessageError,
    MessageParseError,
    SessionWriteError,
    TransportError,
)
from .types import (
    JSONRPCMessage,
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResponse,
    MessageKind,
    RequestId,
    classify,
    parse_message,
    serialize_message,
)

__all__ = [
    "InvalidMessageError",
    "JSONRPCMessage",
    "JSONRPCNotification",
    "JSONRPCRequest",
    "JSONRPCResponse",
    "MessageKind",
    "MessageParseError",
    "RequestId",
    "SessionWriteError",
    "StreamableHTTPServerTransport",
    "TransportError",
    "TransportSettings",
    "classify",
    "parse_message",
    "serialize_message",
]
