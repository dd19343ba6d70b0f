"""Pytest configuration and shared fixtures for relay-server tests.

This module provides common fixtures used across all test modules,
including test app creation, async client setup and in-memory MCP servers.
"""

from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from relay_server import create_app
from relay_server.config import RelaySettings
from relay_server.errors import ServerConnectionError
from relay_server.mcp import ServerConfig, ServerTransport, ToolManager


class FakeTransport(ServerTransport):
    """In-memory stand-in for one MCP server connection."""

    def __init__(self, server_name: str, config: ServerConfig, spec: dict[str, Any]):
        self.server_name = server_name
        self.kind = config.type
        self.spec = spec
        self.connected = False
        self.closed = False
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def connect(self) -> None:
        if self.spec.get("fail_connect"):
            raise ServerConnectionError(f"cannot reach {self.server_name}")
        self.connected = True

    async def list_tools(self) -> list[dict[str, Any]]:
        if self.spec.get("fail_list"):
            raise ServerConnectionError(f"{self.server_name} rejected tools/list")
        return [dict(tool) for tool in self.spec.get("tools", [])]

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        self.calls.append((name, arguments))
        handler = self.spec.get("handlers", {}).get(name)
        if isinstance(handler, Exception):
            raise handler
        if callable(handler):
            return handler(arguments)
        if handler is not None:
            return handler
        return {"content": [{"type": "text", "text": f"{name} ok"}], "isError": False}

    async def close(self) -> None:
        if self.spec.get("fail_close"):
            raise ServerConnectionError("close failed")
        self.closed = True


class FakeMCPServers:
    """Transport factory serving FakeTransports for registered server specs.

    Use ``add(name, tools=[...], handlers={...})`` to declare a server, then
    pass the instance as a ToolManager ``transport_factory``.
    """

    def __init__(self) -> None:
        self.specs: dict[str, dict[str, Any]] = {}
        self.transports: dict[str, list[FakeTransport]] = {}

    def add(self, name: str, tools: list[dict[str, Any]] | None = None, **options: Any):
        self.specs[name] = {"tools": tools or [], **options}
        return self.specs[name]

    def __call__(self, server_name: str, config: ServerConfig) -> FakeTransport:
        spec = self.specs.setdefault(server_name, {"tools": []})
        transport = FakeTransport(server_name, config, spec)
        self.transports.setdefault(server_name, []).append(transport)
        return transport

    def latest(self, server_name: str) -> FakeTransport:
        return self.transports[server_name][-1]


@pytest.fixture
def fake_mcp() -> FakeMCPServers:
    """In-memory MCP servers usable as a ToolManager transport factory."""
    return FakeMCPServers()


@pytest.fixture
def tool_manager(fake_mcp) -> ToolManager:
    """ToolManager wired to the in-memory MCP servers."""
    return ToolManager(transport_factory=fake_mcp, connect_timeout=1.0)


@pytest.fixture
def stdio_config() -> dict[str, Any]:
    return {"enabled": True, "type": "stdio", "command": "fake-server", "args": ["--quiet"]}


@pytest.fixture
def test_settings(tmp_path):
    """Create test settings that never reach a real provider or MCP server.

    Args:
        tmp_path: Pytest fixture providing a temporary directory.

    Returns:
        RelaySettings: Settings instance configured for testing.
    """
    return RelaySettings(
        host="127.0.0.1",
        port=8000,
        provider="openai",
        completion_url="http://provider.test",
        api_key="test-key",
        model="test-model",
        local_tools=["currentTimeTool"],
        mcp_servers_file=None,
        max_tool_rounds=3,
        request_retries=1,
        log_level="DEBUG",
        cors_origins=["*"],
    )


@pytest.fixture
def test_app(test_settings, tool_manager):
    """Create a FastAPI test application instance.

    The ToolManager is placed in app.state before startup so the lifespan
    uses the in-memory MCP servers.

    Args:
        test_settings: Test settings fixture.
        tool_manager: ToolManager fixture backed by fake transports.

    Returns:
        FastAPI: Configured test application.
    """
    app = create_app(settings=test_settings)
    app.state.tool_manager = tool_manager
    return app


@pytest_asyncio.fixture
async def async_client(test_app):
    """Create an async HTTP client for testing FastAPI endpoints.

    Args:
        test_app: Test application fixture.

    Yields:
        AsyncClient: Async HTTP client for making test requests.
    """
    # Trigger the lifespan startup manually for tests
    async with test_app.router.lifespan_context(test_app):
        transport = ASGITransport(app=test_app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client
