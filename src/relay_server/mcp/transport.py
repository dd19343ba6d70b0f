"""Transports to MCP tool-servers.

Two transports are supported: a child process spoken to over stdin/stdout
(``stdio``) and a remote server reached over HTTP server-sent events
(``sse``). Both wrap the official ``mcp`` client SDK; the ToolManager only
depends on the ServerTransport interface.
"""

import logging
import os
import re
from abc import ABC, abstractmethod
from contextlib import AsyncExitStack
from typing import Any

import anyio
from mcp import ClientSession, StdioServerParameters
from mcp.client.sse import sse_client
from mcp.client.stdio import stdio_client
from mcp.shared.exceptions import McpError

from relay_server.errors import ConfigError, ServerConnectionError, ToolExecutionError
from relay_server.mcp.connection import ServerConfig, TransportKind

logger = logging.getLogger(__name__)

CLIENT_NAME = "relay-server-mcp-client"

_SURROUNDING_QUOTES = re.compile(r"^[\"']|[\"']$")


class ServerTransport(ABC):
    """Interface between the ToolManager and one MCP server.

    ``connect`` opens the underlying streams and performs the MCP
    initialize handshake. ``list_tools`` and ``call_tool`` return plain
    dicts in MCP wire shape. ``close`` releases the streams (and the child
    process for stdio).
    """

    kind: TransportKind

    @abstractmethod
    async def connect(self) -> None:
        """Open the connection and complete the handshake."""

    @abstractmethod
    async def list_tools(self) -> list[dict[str, Any]]:
        """Return raw tool definitions (``name``, ``description``, ``inputSchema``)."""

    @abstractmethod
    async def call_tool(self, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        """Invoke a tool and return the raw ``CallToolResult`` as a dict."""

    @abstractmethod
    async def close(self) -> None:
        """Release all resources held by the transport."""


class SessionTransport(ServerTransport):
    """Shared ClientSession handling for the SDK-backed transports."""

    def __init__(self, server_name: str) -> None:
        self.server_name = server_name
        self._stack: AsyncExitStack | None = None
        self._session: ClientSession | None = None

    @abstractmethod
    async def _open_streams(self, stack: AsyncExitStack) -> tuple[Any, Any]:
        """Enter the SDK transport context and return (read, write) streams."""

    async def connect(self) -> None:
        stack = AsyncExitStack()
        try:
            read_stream, write_stream = await self._open_streams(stack)
            session = await stack.enter_async_context(
                ClientSession(read_stream, write_stream)
            )
            await session.initialize()
        except Exception as e:
            await _close_quietly(stack, self.server_name)
            raise ServerConnectionError(
                f"Failed to connect to MCP server {self.server_name}: {e}"
            ) from e

        self._stack = stack
        self._session = session
        logger.debug(f"MCP handshake completed for {self.server_name}")

    def _require_session(self) -> ClientSession:
        if self._session is None:
            raise ServerConnectionError(
                f"MCP server {self.server_name} is not connected"
            )
        return self._session

    async def list_tools(self) -> list[dict[str, Any]]:
        session = self._require_session()
        try:
            result = await session.list_tools()
        except McpError as e:
            raise ServerConnectionError(
                f"MCP server {self.server_name} rejected tools/list: {e}"
            ) from e
        return [
            tool.model_dump(mode="json", by_alias=True, exclude_none=True)
            for tool in result.tools
        ]

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        session = self._require_session()
        try:
            result = await session.call_tool(name, arguments)
        except McpError as e:
            raise ToolExecutionError(str(e)) from e
        except (
            OSError,
            EOFError,
            anyio.ClosedResourceError,
            anyio.BrokenResourceError,
        ) as e:
            raise ServerConnectionError(
                f"MCP transport error on {self.server_name}: {e}"
            ) from e
        return result.model_dump(mode="json", by_alias=True, exclude_none=True)

    async def close(self) -> None:
        stack, self._stack, self._session = self._stack, None, None
        if stack is not None:
            await stack.aclose()


class StdioTransport(SessionTransport):
    """MCP server running as a child process."""

    kind = TransportKind.STDIO

    def __init__(self, server_name: str, config: ServerConfig) -> None:
        if not config.command:
            raise ConfigError(f"stdio server {server_name} requires a command")
        super().__init__(server_name)
        self.command = config.command
        self.args = list(config.args)
        self.env = clean_env(config.env)

    async def _open_streams(self, stack: AsyncExitStack) -> tuple[Any, Any]:
        params = StdioServerParameters(
            command=self.command,
            args=self.args,
            env={**os.environ, **self.env},
        )
        logger.info(f"Starting stdio MCP server {self.server_name}: {self.command}")
        read_stream, write_stream = await stack.enter_async_context(
            stdio_client(params)
        )
        return read_stream, write_stream


class SSETransport(SessionTransport):
    """Remote MCP server reached over server-sent events."""

    kind = TransportKind.SSE

    def __init__(self, server_name: str, config: ServerConfig) -> None:
        if not config.base_url:
            raise ConfigError(f"SSE server {server_name} requires a baseUrl")
        super().__init__(server_name)
        self.base_url = config.base_url
        self.headers = clean_headers(config.headers)

    async def _open_streams(self, stack: AsyncExitStack) -> tuple[Any, Any]:
        logger.info(f"Connecting to SSE MCP server {self.server_name}: {self.base_url}")
        streams = await stack.enter_async_context(
            sse_client(self.base_url, headers=self.headers)
        )
        return streams[0], streams[1]


def clean_env(env: dict[str, Any]) -> dict[str, str]:
    """Drop unset/empty environment values and stringify the rest."""
    return {
        str(key): str(value)
        for key, value in (env or {}).items()
        if value is not None and value != ""
    }


def clean_headers(headers: dict[str, Any]) -> dict[str, str]:
    """Coerce header values to trimmed strings without surrounding quotes."""
    cleaned: dict[str, str] = {}
    for key, value in (headers or {}).items():
        if value is None:
            continue
        cleaned[str(key)] = _SURROUNDING_QUOTES.sub("", str(value).strip()).strip()
    return cleaned


def create_transport(server_name: str, config: ServerConfig) -> ServerTransport:
    """Build the transport for a server config.

    Raises:
        ConfigError: If the transport's required field is missing
    """
    if config.type is TransportKind.SSE:
        return SSETransport(server_name, config)
    return StdioTransport(server_name, config)


async def _close_quietly(stack: AsyncExitStack, server_name: str) -> None:
    try:
        await stack.aclose()
    except Exception as e:
        logger.debug(f"Ignoring close error for {server_name}: {e}")
