"""JSON-RPC message types used by the HTTP transport.

Messages are discriminated by shape rather than by an explicit kind field:

- a *request* has ``method`` and a non-null ``id``
- a *notification* has ``method`` and no ``id`` (or ``id: null``)
- a *response* has a non-null ``id`` and no ``method``

`parse_message` classifies a payload once and validates it into the matching
model, so callers only ever see one of the three classes below.
"""

import json
from collections.abc import Mapping
from enum import Enum
from typing import Annotated, Any, Final, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from mcp_http_transport.shared.exceptions import InvalidMessageError

JSONRPC_VERSION: Final[str] = "2.0"

METHOD_NOT_FOUND: Final[int] = -32601

RequestId = Annotated[int, Field(strict=True)] | str


class MessageKind(str, Enum):
    """Structural category of a JSON-RPC payload."""

    REQUEST = "request"
    NOTIFICATION = "notification"
    RESPONSE = "response"


class JSONRPCBase(BaseModel):
    """Base class for all JSON-RPC messages."""

    model_config = ConfigDict(extra="allow")

    jsonrpc: Literal["2.0"] = JSONRPC_VERSION


class JSONRPCRequest(JSONRPCBase):
    """A request that expects a response."""

    id: RequestId
    method: str
    params: dict[str, Any] | list[Any] | None = None


class JSONRPCNotification(JSONRPCBase):
    """A notification which does not expect a response."""

    method: str
    params: dict[str, Any] | list[Any] | None = None


class ErrorData(BaseModel):
    """Error information in a JSON-RPC error response."""

    model_config = ConfigDict(extra="allow")

    code: int
    message: str
    data: Any | None = None


class JSONRPCResponse(JSONRPCBase):
    """A reply to a request, carrying either ``result`` or ``error``."""

    id: RequestId
    result: Any = None
    error: ErrorData | None = None


JSONRPCMessage = JSONRPCRequest | JSONRPCNotification | JSONRPCResponse

_MODELS: dict[MessageKind, type[JSONRPCBase]] = {
    MessageKind.REQUEST: JSONRPCRequest,
    MessageKind.NOTIFICATION: JSONRPCNotification,
    MessageKind.RESPONSE: JSONRPCResponse,
}


def classify(payload: Any) -> MessageKind | None:
    """Return the kind of a decoded JSON payload, or None when it fits no shape."""
    if not isinstance(payload, Mapping):
        return None
    has_id = payload.get("id") is not None
    if "method" in payload:
        return MessageKind.REQUEST if has_id else MessageKind.NOTIFICATION
    if has_id:
        return MessageKind.RESPONSE
    return None


def parse_message(payload: Any) -> JSONRPCMessage:
    """Validate a decoded JSON payload into the model matching its shape.

    Raises:
        InvalidMessageError: if the payload is not a request, notification or
            response, or if it has the right shape but invalid field values.
    """
    kind = classify(payload)
    if kind is None:
        raise InvalidMessageError("Unrecognized JSON-RPC message shape")
    try:
        return _MODELS[kind].model_validate(payload)  # type: ignore[return-value]
    except ValidationError as e:
        raise InvalidMessageError(f"Invalid JSON-RPC {kind.value}", e) from e


def serialize_message(message: JSONRPCMessage) -> str:
    """Render a message as compact JSON containing only the fields it carries."""
    body = message.model_dump(mode="json", by_alias=True, exclude_unset=True, exclude={"jsonrpc"})
    return json.dumps({"jsonrpc": message.jsonrpc, **body}, separators=(",", ":"), ensure_ascii=False)
