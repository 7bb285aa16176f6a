"""Correlation of in-flight request ids with the session awaiting the reply."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from mcp_http_transport.types import RequestId

logger = logging.getLogger(__name__)

DEFAULT_PENDING_REQUEST_MAX_AGE = 30.0


@dataclass(frozen=True)
class PendingRequest:
    request_id: RequestId
    session_id: str
    created_at: float


class PendingRequestCorrelator:
    """Maps request ids to the session that must receive their response.

    Session ids held here are weak references: the session may be gone by the
    time the response arrives, and callers are expected to handle that.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._pending: dict[RequestId, PendingRequest] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._pending

    def register(self, request_id: RequestId, session_id: str) -> None:
        previous = self._pending.get(request_id)
        if previous is not None and previous.session_id != session_id:
            logger.warning(
                f"Request id {request_id!r} re-registered for session {session_id}, "
                f"replacing pending entry for session {previous.session_id}"
            )
        self._pending[request_id] = PendingRequest(request_id, session_id, self._clock())

    def take(self, request_id: RequestId) -> str | None:
        """Remove and return the session id for ``request_id``, if any."""
        pending = self._pending.pop(request_id, None)
        return pending.session_id if pending else None

    def sweep(self, max_age: float = DEFAULT_PENDING_REQUEST_MAX_AGE) -> int:
        """Drop entries at least ``max_age`` seconds old and return how many went.

        ``sweep(0)`` drops everything.
        """
        now = self._clock()
        expired = [rid for rid, pending in self._pending.items() if now - pending.created_at >= max_age]
        for request_id in expired:
            del self._pending[request_id]
        return len(expired)

    def clear(self) -> None:
        self._pending.clear()
