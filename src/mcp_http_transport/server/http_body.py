from __future__ import annotations

from dataclasses import dataclass

from starlette.requests import Request

DEFAULT_MAX_BODY_BYTES = 4 * 1024 * 1024


@dataclass(frozen=True)
class BodyTooLargeError(Exception):
    max_body_bytes: int

    def __str__(self) -> str:
        return f"Request body exceeds {self.max_body_bytes} bytes"


async def read_request_body(request: Request, max_body_bytes: int | None = DEFAULT_MAX_BODY_BYTES) -> bytes:
    """Read a POST body without ever buffering more than ``max_body_bytes``.

    A declared Content-Length above the cap is rejected before any chunk is
    read; otherwise the limit is enforced while streaming.
    """
    if max_body_bytes is None:
        return await request.body()
    if max_body_bytes <= 0:
        raise ValueError("max_body_bytes must be positive or None")

    declared = request.headers.get("content-length", "")
    if declared.isdigit() and int(declared) > max_body_bytes:
        raise BodyTooLargeError(max_body_bytes)

    chunks: list[bytes] = []
    size = 0
    async for chunk in request.stream():
        size += len(chunk)
        if size > max_body_bytes:
            raise BodyTooLargeError(max_body_bytes)
        chunks.append(chunk)
    return b"".join(chunks)
