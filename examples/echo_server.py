"""
Minimal host for the Streamable HTTP transport.

Answers ``initialize``, ``ping`` and an ``echo`` method, and sweeps stale
request correlations every ten seconds.

Run with:

    python examples/echo_server.py

then, for instance:

    curl -N -H 'mcp-session-id: demo' http://localhost:3000/mcp
    curl -H 'mcp-session-id: demo' -H 'accept: application/json, text/event-stream' \
        -d '{"jsonrpc":"2.0","id":1,"method":"echo","params":{"text":"hi"}}' http://localhost:3000/mcp
"""

import logging

import anyio

from mcp_http_transport import (
    JSONRPCMessage,
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResponse,
    StreamableHTTPServerTransport,
    TransportSettings,
)
from mcp_http_transport.server.settings import LATEST_PROTOCOL_VERSION
from mcp_http_transport.types import METHOD_NOT_FOUND, ErrorData
from mcp_http_transport.utilities.logging import configure_logging

logger = logging.getLogger("echo_server")

SWEEP_INTERVAL = 10.0


def make_handler(transport: StreamableHTTPServerTransport):
    async def handle(message: JSONRPCMessage) -> None:
        if isinstance(message, JSONRPCNotification):
            logger.info(f"Notification: {message.method}")
            return
        if not isinstance(message, JSONRPCRequest):
            return

        if message.method == "initialize":
            result = {
                "protocolVersion": LATEST_PROTOCOL_VERSION,
                "capabilities": {},
                "serverInfo": {"name": "echo", "version": "0.1.0"},
            }
            await transport.send(JSONRPCResponse(id=message.id, result=result))
        elif message.method == "ping":
            await transport.send(JSONRPCResponse(id=message.id, result={}))
        elif message.method == "echo":
            await transport.send(JSONRPCResponse(id=message.id, result=message.params or {}))
        else:
            error = ErrorData(code=METHOD_NOT_FOUND, message=f"Method not found: {message.method}")
            await transport.send(JSONRPCResponse(id=message.id, error=error))

    return handle


async def main() -> None:
    settings = TransportSettings()
    configure_logging(settings.log_level)

    transport = StreamableHTTPServerTransport(settings)
    transport.onmessage = make_handler(transport)
    transport.onerror = lambda error: logger.warning(f"Transport error: {error}")
    transport.onclose = lambda: logger.info("Transport closed")

    await transport.start()
    try:
        while True:
            await anyio.sleep(SWEEP_INTERVAL)
            transport.sweep_pending_requests()
    finally:
        with anyio.CancelScope(shield=True):
            await transport.close()


if __name__ == "__main__":
    anyio.run(main)
