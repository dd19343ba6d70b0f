"""Unit tests for MCP server configs and transports."""

import os
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from pydantic import ValidationError

from relay_server.errors import ConfigError, ServerConnectionError, ToolExecutionError
from relay_server.mcp import (
    ServerConfig,
    SSETransport,
    StdioTransport,
    TransportKind,
    create_transport,
)
from relay_server.mcp.transport import clean_env, clean_headers


def test_server_config_accepts_camel_case_aliases():
    """Test that MCP config file spellings are accepted."""
    config = ServerConfig.model_validate(
        {
            "enabled": True,
            "transportKind": "stream",
            "baseUrl": "http://mcp.test/sse",
            "systemPrompt": "Be brief.",
            "promptConditions": {"messageType": ["private"], "groupIds": [1, 2]},
        }
    )

    assert config.type is TransportKind.SSE
    assert config.base_url == "http://mcp.test/sse"
    assert config.system_prompt == "Be brief."
    assert config.prompt_conditions.message_types == ["private"]
    assert config.prompt_conditions.group_ids == ["1", "2"]


@pytest.mark.parametrize(
    "value,expected",
    [("pipe", TransportKind.STDIO), ("STDIO", TransportKind.STDIO), ("sse", TransportKind.SSE)],
)
def test_server_config_transport_aliases(value, expected):
    """Test transport type normalization."""
    assert ServerConfig.model_validate({"type": value}).type is expected


def test_server_config_rejects_unknown_transport():
    """Test that an unsupported transport type fails validation."""
    with pytest.raises(ValidationError):
        ServerConfig.model_validate({"type": "websocket"})


def test_server_config_coerces_args_and_mappings():
    """Test args stringification and non-dict env/headers fallback."""
    config = ServerConfig.model_validate({"args": ["--port", 8080], "env": None, "headers": "x"})

    assert config.args == ["--port", "8080"]
    assert config.env == {}
    assert config.headers == {}
    assert config.enabled is False


def test_clean_env_drops_empty_values():
    """Test that None and empty values are removed and others stringified."""
    assert clean_env({"A": "1", "B": None, "C": "", "D": 5}) == {"A": "1", "D": "5"}


def test_clean_headers_strips_quotes_and_whitespace():
    """Test header value normalization."""
    headers = clean_headers(
        {"Authorization": ' "Bearer abc" ', "X-Count": 3, "X-Single": "'v'", "X-None": None}
    )

    assert headers == {"Authorization": "Bearer abc", "X-Count": "3", "X-Single": "v"}


def test_create_transport_picks_class():
    """Test that the transport class follows the config type."""
    stdio = create_transport("local", ServerConfig(command="server"))
    sse = create_transport("remote", ServerConfig(type="sse", base_url="http://mcp.test"))

    assert isinstance(stdio, StdioTransport)
    assert stdio.kind is TransportKind.STDIO
    assert isinstance(sse, SSETransport)
    assert sse.kind is TransportKind.SSE


def test_stdio_requires_command():
    """Test the missing-command config error."""
    with pytest.raises(ConfigError, match="requires a command"):
        StdioTransport("local", ServerConfig())


def test_sse_requires_base_url():
    """Test the missing-baseUrl config error."""
    with pytest.raises(ConfigError, match="requires a baseUrl"):
        SSETransport("remote", ServerConfig(type="sse"))


def _fake_client_session(session: MagicMock):
    @asynccontextmanager
    async def factory(read_stream, write_stream):
        yield session

    return factory


@pytest.mark.asyncio
async def test_stdio_connect_merges_process_environment():
    """Test that the child process sees os.environ plus the cleaned env."""
    captured = {}

    @asynccontextmanager
    async def fake_stdio_client(params):
        captured["params"] = params
        yield ("read", "write")

    session = MagicMock()
    session.initialize = AsyncMock()
    config = ServerConfig(command="server", args=["--x"], env={"TOKEN": "t", "EMPTY": ""})

    with patch("relay_server.mcp.transport.stdio_client", fake_stdio_client), patch(
        "relay_server.mcp.transport.ClientSession", _fake_client_session(session)
    ):
        transport = StdioTransport("local", config)
        await transport.connect()
        await transport.close()

    params = captured["params"]
    assert params.command == "server"
    assert params.args == ["--x"]
    assert params.env["TOKEN"] == "t"
    assert "EMPTY" not in params.env
    assert set(os.environ) <= set(params.env)
    session.initialize.assert_awaited_once()


@pytest.mark.asyncio
async def test_sse_connect_forwards_clean_headers():
    """Test that SSE connections receive normalized headers."""
    captured = {}

    @asynccontextmanager
    async def fake_sse_client(url, headers=None):
        captured["url"] = url
        captured["headers"] = headers
        yield ("read", "write")

    session = MagicMock()
    session.initialize = AsyncMock()
    config = ServerConfig(type="sse", base_url="http://mcp.test/sse", headers={"Key": '"k"'})

    with patch("relay_server.mcp.transport.sse_client", fake_sse_client), patch(
        "relay_server.mcp.transport.ClientSession", _fake_client_session(session)
    ):
        transport = SSETransport("remote", config)
        await transport.connect()

    assert captured == {"url": "http://mcp.test/sse", "headers": {"Key": "k"}}


@pytest.mark.asyncio
async def test_connect_failure_raises_connection_error():
    """Test that a failing handshake surfaces as ServerConnectionError."""

    @asynccontextmanager
    async def fake_stdio_client(params):
        yield ("read", "write")

    session = MagicMock()
    session.initialize = AsyncMock(side_effect=RuntimeError("bad handshake"))

    with patch("relay_server.mcp.transport.stdio_client", fake_stdio_client), patch(
        "relay_server.mcp.transport.ClientSession", _fake_client_session(session)
    ):
        transport = StdioTransport("local", ServerConfig(command="server"))
        with pytest.raises(ServerConnectionError, match="bad handshake"):
            await transport.connect()


@pytest.mark.asyncio
async def test_calls_before_connect_raise():
    """Test that an unconnected transport refuses requests."""
    transport = StdioTransport("local", ServerConfig(command="server"))

    with pytest.raises(ServerConnectionError):
        await transport.list_tools()
    with pytest.raises(ServerConnectionError):
        await transport.call_tool("x", {})


@pytest.mark.asyncio
async def test_call_tool_maps_errors_and_dumps_result():
    """Test result dumping and error mapping of call_tool."""
    from mcp.shared.exceptions import McpError
    from mcp.types import CallToolResult, ErrorData, TextContent

    @asynccontextmanager
    async def fake_stdio_client(params):
        yield ("read", "write")

    session = MagicMock()
    session.initialize = AsyncMock()
    session.call_tool = AsyncMock(
        return_value=CallToolResult(content=[TextContent(type="text", text="42")])
    )

    with patch("relay_server.mcp.transport.stdio_client", fake_stdio_client), patch(
        "relay_server.mcp.transport.ClientSession", _fake_client_session(session)
    ):
        transport = StdioTransport("local", ServerConfig(command="server"))
        await transport.connect()

        result = await transport.call_tool("answer", {"q": 1})
        assert result["content"] == [{"type": "text", "text": "42"}]
        assert result["isError"] is False

        session.call_tool.side_effect = McpError(ErrorData(code=-32602, message="bad args"))
        with pytest.raises(ToolExecutionError, match="bad args"):
            await transport.call_tool("answer", {})

        session.call_tool.side_effect = BrokenPipeError("pipe")
        with pytest.raises(ServerConnectionError):
            await transport.call_tool("answer", {})
