from .correlator import PendingRequest, PendingRequestCorrelator
from .negotiation import ProtocolNegotiator
from .session_registry import Session, SessionEvent, SessionRegistry
from .settings import TransportSettings
from .streamable_http import MCP_SESSION_ID_HEADER, StreamableHTTPServerTransport

__all__ = [
    "MCP_SESSION_ID_HEADER",
    "PendingRequest",
    "PendingRequestCorrelator",
    "ProtocolNegotiator",
    "Session",
    "SessionEvent",
    "SessionRegistry",
    "StreamableHTTPServerTransport",
    "TransportSettings",
]
