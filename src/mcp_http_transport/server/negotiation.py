"""Pre-dispatch validation of path, origin, protocol version and Accept headers.

The origin check is a narrow baseline: loopback origins are always accepted and
anything else must be listed in `TransportSettings.allowed_origins`. It is not
an authorization policy.
"""

import logging
from dataclasses import dataclass
from urllib.parse import urlsplit

from starlette.requests import Request
from starlette.responses import Response

from mcp_http_transport.server.settings import TransportSettings

logger = logging.getLogger(__name__)

MCP_PROTOCOL_VERSION_HEADER = "mcp-protocol-version"

CONTENT_TYPE_JSON = "application/json"
CONTENT_TYPE_SSE = "text/event-stream"

LOOPBACK_HOSTS = frozenset({"localhost", "127.0.0.1", "::1"})

_JSON_MEDIA_RANGES = frozenset({CONTENT_TYPE_JSON, "application/*", "*/*"})


@dataclass(frozen=True)
class AcceptedMedia:
    """What the client said it can read back, from its Accept header."""

    json: bool
    event_stream: bool

    @classmethod
    def from_header(cls, accept: str | None) -> "AcceptedMedia":
        media_types = {part.split(";", 1)[0].strip().lower() for part in (accept or "").split(",")}
        return cls(
            json=bool(media_types & _JSON_MEDIA_RANGES),
            event_stream=CONTENT_TYPE_SSE in media_types,
        )


class ProtocolNegotiator:
    """Rejects requests the transport must not process.

    Checks run in a fixed order and the first failure wins: path (404),
    origin (403), protocol version (400), then for POST the Accept header (400).
    """

    def __init__(self, settings: TransportSettings):
        self.settings = settings

    def _validate_path(self, path: str) -> bool:
        return path == self.settings.path

    def _validate_origin(self, origin: str | None) -> bool:
        # Origin can be absent for same-origin and non-browser requests
        if origin is None:
            return True

        if origin in self.settings.allowed_origins:
            return True

        try:
            hostname = urlsplit(origin).hostname
        except ValueError:
            hostname = None
        if hostname in LOOPBACK_HOSTS:
            return True

        # Wildcard port patterns such as https://app.example.com:*
        for allowed in self.settings.allowed_origins:
            if allowed.endswith(":*") and origin.startswith(allowed[:-2] + ":"):
                return True

        logger.debug(f"Rejected Origin header: {origin}")
        return False

    def _validate_protocol_version(self, version: str | None) -> bool:
        return version is None or version in self.settings.supported_protocol_versions

    def validate_request(self, request: Request) -> Response | None:
        """Return None if the request may proceed, or the error Response to send."""
        if not self._validate_path(request.url.path):
            return Response("Not Found", status_code=404)

        if not self._validate_origin(request.headers.get("origin")):
            return Response("Forbidden", status_code=403)

        version = request.headers.get(MCP_PROTOCOL_VERSION_HEADER)
        if not self._validate_protocol_version(version):
            logger.debug(f"Unsupported protocol version: {version}")
            return Response("Unsupported Protocol Version", status_code=400)

        if request.method == "POST":
            accepted = AcceptedMedia.from_header(request.headers.get("accept"))
            if not (accepted.json or accepted.event_stream):
                return Response(
                    f"Bad Request: Accept must include {CONTENT_TYPE_JSON} or {CONTENT_TYPE_SSE}",
                    status_code=400,
                )

        return None
