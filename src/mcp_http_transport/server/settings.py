from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from mcp_http_transport.server.correlator import DEFAULT_PENDING_REQUEST_MAX_AGE
from mcp_http_transport.server.http_body import DEFAULT_MAX_BODY_BYTES
from mcp_http_transport.server.session_registry import DEFAULT_SESSION_BUFFER_SIZE

LATEST_PROTOCOL_VERSION = "2025-03-26"


class TransportSettings(BaseSettings):
    """HTTP transport settings.

    All settings can be configured via environment variables with the prefix
    MCP_HTTP_. For example, MCP_HTTP_PORT=8080 will set port=8080.
    """

    model_config = SettingsConfigDict(
        env_prefix="MCP_HTTP_",
        env_file=".env",
        extra="ignore",
    )

    # HTTP settings
    host: str = "localhost"
    port: int = 3000
    path: str = "/mcp"

    # Negotiation
    supported_protocol_versions: list[str] = Field(default_factory=lambda: [LATEST_PROTOCOL_VERSION])
    allowed_origins: list[str] = Field(default_factory=list)
    """Origins accepted in addition to loopback hosts.

    Supports exact values (``https://app.example.com``) and wildcard ports
    (``https://app.example.com:*``).
    """

    # Limits
    max_body_bytes: int = DEFAULT_MAX_BODY_BYTES
    session_buffer_size: int = DEFAULT_SESSION_BUFFER_SIZE
    pending_request_max_age: float = DEFAULT_PENDING_REQUEST_MAX_AGE
    """Age in seconds after which `sweep_pending_requests` drops a correlation."""

    handshake_timeout: float | None = None
    """Seconds to wait for a synchronous reply before answering 504. None waits forever."""

    json_response_fallback: bool = False
    """Answer requests synchronously when the client does not accept an event stream.

    Off by default: such requests are acknowledged with 202 and answered over
    the session's GET stream. Turn it on for clients that never open one.
    """

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
