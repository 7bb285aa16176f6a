import pytest

from mcp_http_transport.server.settings import LATEST_PROTOCOL_VERSION, TransportSettings


def test_defaults(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("MCP_HTTP_PORT", raising=False)
    settings = TransportSettings(_env_file=None)

    assert settings.host == "localhost"
    assert settings.port == 3000
    assert settings.path == "/mcp"
    assert settings.supported_protocol_versions == [LATEST_PROTOCOL_VERSION]
    assert settings.pending_request_max_age == 30.0
    assert settings.handshake_timeout is None
    assert settings.json_response_fallback is False


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("MCP_HTTP_PORT", "8123")
    monkeypatch.setenv("MCP_HTTP_PATH", "/rpc")
    monkeypatch.setenv("MCP_HTTP_ALLOWED_ORIGINS", '["https://app.example.com:*"]')

    settings = TransportSettings(_env_file=None)

    assert settings.port == 8123
    assert settings.path == "/rpc"
    assert settings.allowed_origins == ["https://app.example.com:*"]
