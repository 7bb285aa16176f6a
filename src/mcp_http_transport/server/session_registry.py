"""Registry of open event streams, keyed by session id."""

from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass, field

import anyio
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream

from mcp_http_transport.types import RequestId

logger = logging.getLogger(__name__)

DEFAULT_SESSION_BUFFER_SIZE = 256

# Failures that mean the session's stream can no longer take frames.
# WouldBlock covers a client that stopped reading and filled its buffer.
_WRITE_FAILURES = (anyio.ClosedResourceError, anyio.BrokenResourceError, anyio.WouldBlock)


@dataclass(frozen=True)
class SessionEvent:
    """One SSE frame queued for a session."""

    data: str
    # Set when the frame carries a JSON-RPC response; ends per-call streams.
    response_id: RequestId | None = None


@dataclass(eq=False)
class Session:
    """A client connection with at most one open output stream."""

    id: str
    sink: MemoryObjectSendStream[SessionEvent]
    events: MemoryObjectReceiveStream[SessionEvent]
    created_at: float = field(default_factory=time.monotonic)

    def close(self) -> None:
        self.sink.close()


def is_valid_session_id(session_id: str) -> bool:
    """Session ids must be non-empty and made of visible ASCII (0x21-0x7E)."""
    return bool(session_id) and all(0x21 <= ord(ch) <= 0x7E for ch in session_id)


class SessionRegistry:
    """Owns the lifetime of every open session.

    Writes never suspend, so a lookup followed by a write cannot interleave
    with another task removing or replacing the same session.
    """

    def __init__(self, buffer_size: int = DEFAULT_SESSION_BUFFER_SIZE):
        if buffer_size <= 0:
            raise ValueError("buffer_size must be positive")
        self._buffer_size = buffer_size
        self._sessions: dict[str, Session] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    @staticmethod
    def new_session_id() -> str:
        return secrets.token_urlsafe(24)

    def open(self, session_id: str) -> Session:
        """Register a fresh stream for ``session_id``.

        A session already open under the same id is closed and replaced; this
        is how a client resumes its session on a new connection.
        """
        if not is_valid_session_id(session_id):
            raise ValueError(f"Invalid session id: {session_id!r}")
        sink, events = anyio.create_memory_object_stream[SessionEvent](self._buffer_size)
        session = Session(id=session_id, sink=sink, events=events)
        previous = self._sessions.get(session_id)
        self._sessions[session_id] = session
        if previous is not None:
            logger.debug(f"Session {session_id} resumed on a new stream")
            previous.close()
        else:
            logger.debug(f"Session {session_id} opened")
        return session

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def remove(self, session_id: str, session: Session | None = None) -> bool:
        """Drop a session and close its sink.

        If ``session`` is given, the entry is only removed while it is still the
        one registered under ``session_id``, so a stream that has been replaced
        cannot tear down its successor.
        """
        current = self._sessions.get(session_id)
        if current is None or (session is not None and current is not session):
            return False
        del self._sessions[session_id]
        current.close()
        logger.debug(f"Session {session_id} removed")
        return True

    def write_to(self, session_id: str, event: SessionEvent) -> bool:
        """Queue a frame on one session.

        Returns False, after removing the session, if the stream is gone or
        full. Returns False without side effects if the session is unknown.
        """
        session = self._sessions.get(session_id)
        if session is None:
            return False
        try:
            session.sink.send_nowait(event)
        except _WRITE_FAILURES as e:
            logger.debug(f"Write to session {session_id} failed: {e!r}")
            self.remove(session_id, session)
            return False
        return True

    def broadcast(self, event: SessionEvent) -> list[str]:
        """Queue a frame on every open session; return the ids that failed."""
        failed: list[str] = []
        for session_id in list(self._sessions):
            if not self.write_to(session_id, event):
                failed.append(session_id)
        return failed

    def close_all(self) -> None:
        for session in self._sessions.values():
            session.close()
        self._sessions.clear()
