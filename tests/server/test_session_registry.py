import anyio
import pytest

from mcp_http_transport.server.session_registry import (
    SessionEvent,
    SessionRegistry,
    is_valid_session_id,
)


def drain(registry: SessionRegistry, session_id: str) -> list[str]:
    session = registry.get(session_id)
    assert session is not None
    frames: list[str] = []
    while True:
        try:
            frames.append(session.events.receive_nowait().data)
        except anyio.WouldBlock:
            return frames


def test_open_and_get():
    registry = SessionRegistry()
    session = registry.open("abc123")

    assert registry.get("abc123") is session
    assert "abc123" in registry
    assert len(registry) == 1
    assert registry.get("missing") is None


def test_new_session_ids_are_unique_and_valid():
    ids = {SessionRegistry.new_session_id() for _ in range(100)}
    assert len(ids) == 100
    assert all(is_valid_session_id(session_id) for session_id in ids)


@pytest.mark.parametrize("session_id", ["", "has space", "tab\there", "café"])
def test_open_rejects_invalid_ids(session_id: str):
    with pytest.raises(ValueError):
        SessionRegistry().open(session_id)


def test_reopen_replaces_and_closes_previous_stream():
    registry = SessionRegistry()
    first = registry.open("abc123")
    second = registry.open("abc123")

    assert registry.get("abc123") is second
    with pytest.raises(anyio.ClosedResourceError):
        first.sink.send_nowait(SessionEvent("late"))


def test_remove_only_removes_matching_session():
    registry = SessionRegistry()
    stale = registry.open("abc123")
    current = registry.open("abc123")

    assert registry.remove("abc123", stale) is False
    assert registry.get("abc123") is current
    assert registry.remove("abc123", current) is True
    assert registry.get("abc123") is None
    assert registry.remove("abc123") is False


def test_write_to_delivers_in_order():
    registry = SessionRegistry()
    registry.open("abc123")

    assert registry.write_to("abc123", SessionEvent("one"))
    assert registry.write_to("abc123", SessionEvent("two"))
    assert drain(registry, "abc123") == ["one", "two"]


def test_write_to_unknown_session_fails():
    assert SessionRegistry().write_to("nobody", SessionEvent("x")) is False


def test_write_to_closed_stream_removes_session():
    registry = SessionRegistry()
    session = registry.open("abc123")
    session.events.close()

    assert registry.write_to("abc123", SessionEvent("x")) is False
    assert "abc123" not in registry


def test_write_to_full_buffer_removes_session():
    registry = SessionRegistry(buffer_size=1)
    registry.open("slow")

    assert registry.write_to("slow", SessionEvent("one"))
    assert registry.write_to("slow", SessionEvent("two")) is False
    assert "slow" not in registry


def test_broadcast_isolates_failures():
    registry = SessionRegistry()
    registry.open("a")
    dead = registry.open("b")
    registry.open("c")
    dead.events.close()

    failed = registry.broadcast(SessionEvent("hello"))

    assert failed == ["b"]
    assert "b" not in registry
    assert len(registry) == 2
    assert drain(registry, "a") == ["hello"]
    assert drain(registry, "c") == ["hello"]


def test_close_all_ends_every_stream():
    registry = SessionRegistry()
    sessions = [registry.open(name) for name in ("a", "b")]

    registry.close_all()

    assert len(registry) == 0
    for session in sessions:
        with pytest.raises(anyio.EndOfStream):
            session.events.receive_nowait()


def test_buffer_size_must_be_positive():
    with pytest.raises(ValueError):
        SessionRegistry(buffer_size=0)
