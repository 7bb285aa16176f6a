"""
Streamable HTTP Server Transport Module

Clients open a long-lived Server-Sent Events stream with GET and submit one
JSON-RPC message per POST. Replies the application produces later are pushed
over the client's stream. ``initialize`` requests are answered in the body of
the POST itself, as are requests from clients that cannot read an event stream
when ``json_response_fallback`` is enabled.

The application sees three hooks (``onmessage``, ``onerror``, ``onclose``) and
calls `StreamableHTTPServerTransport.send` to deliver outbound messages.
"""

import asyncio
import inspect
import json
import logging
import socket
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

import anyio
import uvicorn
from pydantic import BaseModel
from sse_starlette import EventSourceResponse
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import Receive, Scope, Send

from mcp_http_transport.server.correlator import PendingRequestCorrelator
from mcp_http_transport.server.http_body import BodyTooLargeError, read_request_body
from mcp_http_transport.server.negotiation import CONTENT_TYPE_JSON, AcceptedMedia, ProtocolNegotiator
from mcp_http_transport.server.session_registry import (
    Session,
    SessionEvent,
    SessionRegistry,
    is_valid_session_id,
)
from mcp_http_transport.server.settings import TransportSettings
from mcp_http_transport.shared.exceptions import (
    InvalidMessageError,
    MessageParseError,
    SessionWriteError,
    TransportError,
)
from mcp_http_transport.types import (
    JSONRPCMessage,
    JSONRPCRequest,
    JSONRPCResponse,
    RequestId,
    parse_message,
    serialize_message,
)

logger = logging.getLogger(__name__)

MCP_SESSION_ID_HEADER = "mcp-session-id"
INITIALIZE_METHOD = "initialize"

MessageCallback = Callable[[JSONRPCMessage], Awaitable[None] | None]
ErrorCallback = Callable[[Exception], None]
CloseCallback = Callable[[], None]


class _SyncReply:
    """One-shot slot for a response that goes back in the body of its POST."""

    def __init__(self) -> None:
        self._event = anyio.Event()
        self.body: str | None = None

    def resolve(self, body: str) -> None:
        if not self._event.is_set():
            self.body = body
            self._event.set()

    def release(self) -> None:
        """Wake the waiter without a reply (transport shutting down)."""
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


class StreamableHTTPServerTransport:
    """
    HTTP server transport with event streaming support for MCP.

    The instance is an ASGI application and can be mounted in any ASGI server,
    or served on its own with `start` / `close`.
    """

    def __init__(
        self,
        settings: TransportSettings | None = None,
        sessions: SessionRegistry | None = None,
        pending_requests: PendingRequestCorrelator | None = None,
    ):
        """
        Initialize a new StreamableHTTP server transport.

        Args:
            settings: Transport settings; read from the environment if omitted
            sessions: Registry of open streams; a new one is created if omitted
            pending_requests: Request/session correlator; a new one is created if omitted
        """
        self.settings = settings or TransportSettings()
        self.sessions = sessions or SessionRegistry(self.settings.session_buffer_size)
        self.pending_requests = pending_requests or PendingRequestCorrelator()
        self._negotiator = ProtocolNegotiator(self.settings)
        # Requests answered in their own POST response, keyed by request id
        self._sync_replies: dict[RequestId, _SyncReply] = {}

        self._server: uvicorn.Server | None = None
        self._serve_task: asyncio.Task[None] | None = None
        self._socket: socket.socket | None = None
        self._started = False
        self._closed = False

        # Callbacks
        self.onmessage: MessageCallback | None = None
        self.onerror: ErrorCallback | None = None
        self.onclose: CloseCallback | None = None

    @property
    def bound_port(self) -> int | None:
        """Port the server is listening on, once started."""
        if self._socket is None:
            return None
        return self._socket.getsockname()[1]

    async def start(self) -> None:
        """Bind the configured address and serve requests in the background.

        Returns once the server accepts connections. Bind errors are reported
        through ``onerror`` and re-raised.
        """
        if self._started:
            raise RuntimeError("Transport already started")
        try:
            self._socket = self._bind_socket()
        except OSError as e:
            self._report_error(TransportError("Server startup failed", e))
            raise
        self._started = True

        config = uvicorn.Config(
            self,
            interface="asgi3",
            lifespan="off",
            log_level=self.settings.log_level.lower(),
            timeout_graceful_shutdown=5,
        )
        self._server = uvicorn.Server(config)
        # uvicorn only runs on asyncio, so the serve loop is a plain asyncio task
        self._serve_task = asyncio.create_task(self._server.serve(sockets=[self._socket]))

        while not self._server.started:
            if self._serve_task.done():
                error = self._serve_task.exception() or RuntimeError("Server exited during startup")
                self._socket.close()
                self._socket = self._server = self._serve_task = None
                self._started = False
                self._report_error(TransportError("Server startup failed", error))
                raise error
            await anyio.sleep(0.01)

        url = f"http://{self.settings.host}:{self.bound_port}{self.settings.path}"
        logger.info(f"Streamable HTTP transport listening on {url}")

    def _bind_socket(self) -> socket.socket:
        host, port = self.settings.host, self.settings.port
        family = socket.AF_INET6 if ":" in host else socket.AF_INET
        sock = socket.socket(family=family, type=socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((host, port))
        except OSError:
            sock.close()
            raise
        sock.set_inheritable(True)
        return sock

    async def close(self) -> None:
        """Close every session, stop the server and call ``onclose``."""
        if self._closed:
            return
        self._closed = True
        logger.debug("Closing Streamable HTTP transport")

        self.sessions.close_all()
        self.pending_requests.clear()
        for waiter in self._sync_replies.values():
            waiter.release()
        self._sync_replies.clear()

        if self._server is not None and self._serve_task is not None:
            self._server.should_exit = True
            try:
                await self._serve_task
            except Exception as e:
                self._report_error(TransportError("Transport shutdown failed", e))
        if self._socket is not None:
            self._socket.close()
            self._socket = None

        if self.onclose:
            self.onclose()

    def sweep_pending_requests(self, max_age: float | None = None) -> int:
        """Drop correlations older than ``max_age`` seconds and return the count.

        The transport never calls this itself; hosts should run it periodically.
        """
        if max_age is None:
            max_age = self.settings.pending_request_max_age
        removed = self.pending_requests.sweep(max_age)
        if removed:
            logger.info(f"Dropped {removed} expired pending requests")
        return removed

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        await self.handle_request(scope, receive, send)

    async def handle_request(self, scope: Scope, receive: Receive, send: Send) -> None:
        """
        ASGI application entry point that handles all HTTP requests

        Args:
            scope: ASGI scope
            receive: ASGI receive function
            send: ASGI send function
        """
        if scope["type"] != "http":
            raise ValueError("StreamableHTTPServerTransport can only handle HTTP requests")

        request = Request(scope, receive)
        error_response = self._negotiator.validate_request(request)
        if error_response is not None:
            await error_response(scope, receive, send)
            return

        if request.method == "GET":
            await self._handle_get_request(scope, request, receive, send)
        elif request.method == "POST":
            await self._handle_post_request(scope, request, receive, send)
        else:
            response = Response("Method Not Allowed", status_code=405, headers={"Allow": "GET, POST"})
            await response(scope, receive, send)

    async def _handle_get_request(self, scope: Scope, request: Request, receive: Receive, send: Send) -> None:
        """Open, or resume, the client's event stream."""
        session_id = request.headers.get(MCP_SESSION_ID_HEADER)
        if session_id is None:
            session_id = self.sessions.new_session_id()
        elif not is_valid_session_id(session_id):
            response = Response("Bad Request: Invalid session ID", status_code=400)
            await response(scope, receive, send)
            return

        session = self.sessions.open(session_id)
        await self._stream_session(session, scope, receive, send)

    async def _stream_session(
        self,
        session: Session,
        scope: Scope,
        receive: Receive,
        send: Send,
        until_response: RequestId | None = None,
    ) -> None:
        """Serve a session's frames as SSE until the sink closes or the client leaves.

        With ``until_response`` the stream ends right after the response with
        that id has been written. The session is removed however the stream ends.
        """

        async def event_source() -> AsyncIterator[dict[str, str]]:
            async for event in session.events:
                yield {"data": event.data}
                if until_response is not None and event.response_id == until_response:
                    break

        headers = {
            MCP_SESSION_ID_HEADER: session.id,
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        }
        response = EventSourceResponse(event_source(), headers=headers, sep="\n")
        try:
            await response(scope, receive, send)
        finally:
            self.sessions.remove(session.id, session)
            session.events.close()
            logger.debug(f"Event stream for session {session.id} ended")

    async def _handle_post_request(self, scope: Scope, request: Request, receive: Receive, send: Send) -> None:
        """
        Handles POST requests containing one JSON-RPC message

        Args:
            scope: ASGI scope
            request: Starlette Request object
            receive: ASGI receive function
            send: ASGI send function
        """
        session_id = request.headers.get(MCP_SESSION_ID_HEADER)
        if session_id is not None and not is_valid_session_id(session_id):
            response = Response("Bad Request: Invalid session ID", status_code=400)
            await response(scope, receive, send)
            return

        try:
            body = await read_request_body(request, self.settings.max_body_bytes)
        except BodyTooLargeError as e:
            response = Response(f"Payload Too Large: {e}", status_code=413)
            await response(scope, receive, send)
            return

        try:
            raw_message = json.loads(body)
        except ValueError as e:
            self._report_error(MessageParseError("Failed to parse JSON-RPC message", e))
            response = Response("Bad Request: Parse error", status_code=400)
            await response(scope, receive, send)
            return

        try:
            message = parse_message(raw_message)
        except InvalidMessageError as e:
            logger.debug(f"Rejected POST body: {e}")
            response = Response("Invalid JSON-RPC message", status_code=400)
            await response(scope, receive, send)
            return

        headers = {MCP_SESSION_ID_HEADER: session_id} if session_id else None

        if not isinstance(message, JSONRPCRequest):
            # Notifications and client replies to server requests expect no answer
            response = Response(status_code=202, headers=headers)
            await response(scope, receive, send)
            await self._dispatch(message)
            return

        accepted = AcceptedMedia.from_header(request.headers.get("accept"))
        if message.method == INITIALIZE_METHOD or (
            not accepted.event_stream and self.settings.json_response_fallback
        ):
            await self._reply_synchronously(message, session_id, scope, receive, send)
        elif accepted.event_stream and (session_id is None or session_id not in self.sessions):
            await self._reply_on_dedicated_stream(message, session_id, scope, receive, send)
        else:
            # The reply travels over the session's GET stream
            if session_id:
                self.pending_requests.register(message.id, session_id)
            response = Response(status_code=202, headers=headers)
            await response(scope, receive, send)
            if not await self._dispatch(message):
                self.pending_requests.take(message.id)

    async def _reply_synchronously(
        self,
        message: JSONRPCRequest,
        session_id: str | None,
        scope: Scope,
        receive: Receive,
        send: Send,
    ) -> None:
        """Hold the POST open until `send` sees the response for this request id."""
        if message.id in self._sync_replies:
            response = Response(f"Bad Request: request {message.id!r} is already awaiting a reply", status_code=400)
            await response(scope, receive, send)
            return

        waiter = _SyncReply()
        self._sync_replies[message.id] = waiter
        try:
            if not await self._dispatch(message):
                response = Response("Internal Server Error", status_code=500)
                await response(scope, receive, send)
                return
            with anyio.move_on_after(self.settings.handshake_timeout) as timeout_scope:
                await waiter.wait()
        finally:
            if self._sync_replies.get(message.id) is waiter:
                del self._sync_replies[message.id]

        if timeout_scope.cancelled_caught:
            self._report_error(
                TransportError(f"No reply to request {message.id!r} within {self.settings.handshake_timeout}s")
            )
            response = Response("Gateway Timeout", status_code=504)
        elif waiter.body is None:
            response = Response("Service Unavailable: transport closed", status_code=503)
        else:
            headers = {MCP_SESSION_ID_HEADER: session_id} if session_id else None
            response = Response(waiter.body, status_code=200, media_type=CONTENT_TYPE_JSON, headers=headers)
        await response(scope, receive, send)

    async def _reply_on_dedicated_stream(
        self,
        message: JSONRPCRequest,
        session_id: str | None,
        scope: Scope,
        receive: Receive,
        send: Send,
    ) -> None:
        """Answer over an event stream that lives only until this request's response.

        Without a session header the request is not correlated; its response
        reaches this stream through the broadcast fallback.
        """
        session = self.sessions.open(session_id or self.sessions.new_session_id())
        if session_id:
            self.pending_requests.register(message.id, session_id)
        if not await self._dispatch(message):
            self.pending_requests.take(message.id)
            self.sessions.remove(session.id, session)
            session.events.close()
            response = Response("Internal Server Error", status_code=500)
            await response(scope, receive, send)
            return
        await self._stream_session(session, scope, receive, send, until_response=message.id)

    async def _dispatch(self, message: JSONRPCMessage) -> bool:
        """Hand an inbound message to ``onmessage``; False if the handler raised."""
        if self.onmessage is None:
            logger.warning(f"No message handler registered, dropping {type(message).__name__}")
            return True
        try:
            result = self.onmessage(message)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.exception("Message handler failed")
            self._report_error(TransportError("Message handler failed", e))
            return False
        return True

    async def send(self, message: JSONRPCMessage | dict[str, Any]) -> None:
        """Deliver an outbound message.

        Responses go to the session that sent the matching request, or back in
        the body of a POST that is waiting for them. Everything else, and any
        response whose session cannot be determined or reached, is broadcast to
        every open session.
        """
        if isinstance(message, BaseModel):
            parsed: JSONRPCMessage | None = message
            data = serialize_message(message)
        else:
            try:
                parsed = parse_message(message)
            except InvalidMessageError:
                parsed = None
            data = json.dumps(message, separators=(",", ":"), ensure_ascii=False)

        if isinstance(parsed, JSONRPCResponse):
            self._route_response(parsed.id, data)
        else:
            if parsed is None:
                logger.debug("Broadcasting unrecognized outbound message")
            self._broadcast(SessionEvent(data))

    def _route_response(self, response_id: RequestId, data: str) -> None:
        waiter = self._sync_replies.pop(response_id, None)
        if waiter is not None:
            waiter.resolve(data)
            return

        event = SessionEvent(data, response_id=response_id)
        session_id = self.pending_requests.take(response_id)
        if session_id is None:
            logger.warning(f"No pending request for response {response_id!r}, broadcasting")
        elif session_id not in self.sessions:
            logger.warning(f"Session {session_id} for response {response_id!r} is gone, broadcasting")
        elif self.sessions.write_to(session_id, event):
            return
        else:
            self._report_error(SessionWriteError(session_id, f"Failed to send response to session {session_id}"))
        self._broadcast(event)

    def _broadcast(self, event: SessionEvent) -> None:
        for session_id in self.sessions.broadcast(event):
            self._report_error(SessionWriteError(session_id, f"Session {session_id} closed unexpectedly"))

    def _report_error(self, error: TransportError) -> None:
        if self.onerror is None:
            logger.error(str(error))
            return
        try:
            self.onerror(error)
        except Exception:
            logger.exception("Error callback failed")
