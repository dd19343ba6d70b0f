"""ToolManager: registry of MCP server connections and their tools.

The manager owns every ServerConnection and the tool index built from the
servers' ``tools/list`` responses. Tools are exposed to the model with the
``mcp_`` prefix so they never collide with local tools. All mutations of the
index happen in a single synchronous step, so a concurrent ``execute`` never
sees a half-registered server.
"""

import asyncio
import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Callable, Mapping

from pydantic import ValidationError

from relay_server.errors import (
    ServerConnectionError,
    ServerDisconnectedError,
    ToolExecutionError,
    UnknownToolError,
)
from relay_server.mcp.connection import (
    ConnectionState,
    PromptContext,
    ServerConfig,
    ServerConnection,
    TransportKind,
)
from relay_server.mcp.transport import ServerTransport, create_transport
from relay_server.tools.types import (
    CapabilityDescriptor,
    ToolIndexEntry,
    ToolOrigin,
)

logger = logging.getLogger(__name__)

TOOL_PREFIX = "mcp_"
DEFAULT_CONNECT_TIMEOUT = 30.0

TransportFactory = Callable[[str, ServerConfig], ServerTransport]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _slug(value: str) -> str:
    return re.sub(r"[^a-zA-Z0-9_-]", "_", value)


def _unique_name(base: str, taken: Mapping[str, str]) -> str:
    """Append ``_2``, ``_3``, ... to ``base`` until it is not in ``taken``."""
    name = base
    suffix = 2
    while name in taken:
        name = f"{base}_{suffix}"
        suffix += 1
    return name


def flatten_tool_result(result: Any) -> str:
    """Flatten an MCP tool result into the single string handed to the model.

    ``text`` blocks contribute their text, any other block is serialized as
    JSON, and the parts are joined with newlines. Plain strings pass through
    and other shapes are JSON-encoded.
    """
    if result is None:
        return ""
    if isinstance(result, str):
        return result
    if isinstance(result, dict) and isinstance(result.get("content"), list):
        parts = []
        for block in result["content"]:
            if isinstance(block, dict) and block.get("type") == "text":
                parts.append(str(block.get("text", "")))
            else:
                parts.append(json.dumps(block, ensure_ascii=False, default=str))
        return "\n".join(parts)
    return json.dumps(result, ensure_ascii=False, default=str)


class ToolManager:
    """Connects to MCP servers and routes tool calls to them.

    Attributes:
        connect_timeout: Seconds allowed for spawn + initialize handshake
        call_timeout: Optional seconds allowed for a single tools/call
    """

    def __init__(
        self,
        transport_factory: TransportFactory | None = None,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        call_timeout: float | None = None,
    ) -> None:
        self._transport_factory = transport_factory or create_transport
        self.connect_timeout = connect_timeout
        self.call_timeout = call_timeout
        self._connections: dict[str, ServerConnection] = {}
        self._tools: dict[str, ToolIndexEntry] = {}

    # ── Connection lifecycle ──────────────────────────────────────────────

    async def connect(
        self, server_name: str, config: ServerConfig | Mapping[str, Any]
    ) -> bool:
        """Connect to a server and register its tools.

        An existing connection with the same name is disconnected first.
        Never raises: every failure is recorded on the connection record
        (state FAILED, ``last_error``) and reported as ``False``.
        """
        if self._is_live(server_name):
            logger.info(f"MCP server {server_name} already connected, reconnecting")
            await self.disconnect(server_name)

        connection: ServerConnection | None = None
        transport: ServerTransport | None = None
        try:
            server_config = (
                config
                if isinstance(config, ServerConfig)
                else ServerConfig.model_validate(dict(config))
            )
            connection = ServerConnection(
                name=server_name,
                config=server_config,
                transport_kind=server_config.type,
                state=ConnectionState.CONNECTING,
            )
            self._connections[server_name] = connection

            transport = self._transport_factory(server_name, server_config)
            logger.info(
                f"Connecting to MCP server {server_name} ({server_config.type.value})"
            )
            await asyncio.wait_for(transport.connect(), timeout=self.connect_timeout)
        except Exception as e:
            message = _describe_error(e)
            logger.error(f"Failed to connect MCP server {server_name}: {message}")
            if transport is not None:
                await self._close_transport(server_name, transport)
            self._record_failure(server_name, config, connection, message)
            return False

        connection.transport = transport
        connection.state = ConnectionState.CONNECTED
        connection.connected_at = _utcnow()
        connection.last_error = None
        logger.info(f"Connected MCP server {server_name} ({connection.transport_kind.value})")

        await self.register_server_tools(server_name)
        return True

    async def connect_all(self, servers: Mapping[str, Any]) -> dict[str, bool]:
        """Connect every enabled entry of a server config mapping."""
        results: dict[str, bool] = {}
        for server_name, raw in servers.items():
            enabled = raw.enabled if isinstance(raw, ServerConfig) else bool(
                (raw or {}).get("enabled")
            )
            if not enabled:
                logger.debug(f"Skipping disabled MCP server {server_name}")
                continue
            results[server_name] = await self.connect(server_name, raw)

        logger.info(
            f"MCP initialization complete: {sum(results.values())}/{len(results)} "
            f"servers connected, {len(self._tools)} tools loaded"
        )
        return results

    async def reload_all(self, servers: Mapping[str, Any]) -> dict[str, bool]:
        """Disconnect everything, then connect every enabled entry again."""
        await self.disconnect_all()
        return await self.connect_all(servers)

    async def register_server_tools(self, server_name: str) -> list[ToolIndexEntry]:
        """Fetch a server's tool list and replace its entries in the index.

        A failing query is logged and yields an empty list; the index is left
        untouched in that case.
        """
        connection = self._connections.get(server_name)
        if connection is None or not connection.is_connected:
            logger.error(f"Cannot register tools: MCP server {server_name} not connected")
            return []

        try:
            raw_tools = await connection.transport.list_tools()
        except Exception as e:
            logger.error(f"Failed to list tools for MCP server {server_name}: {e}")
            return []

        # Build the new entries before touching the index so the swap below
        # happens without an intervening await.
        entries: list[ToolIndexEntry] = []
        taken = {
            name: entry.server_name
            for name, entry in self._tools.items()
            if entry.server_name != server_name
        }
        for raw in raw_tools:
            raw_name = raw.get("name")
            if not raw_name:
                continue
            exposed = f"{TOOL_PREFIX}{raw_name}"
            if exposed in taken:
                qualified = _unique_name(
                    f"{TOOL_PREFIX}{_slug(server_name)}_{raw_name}", taken
                )
                logger.warning(
                    f"Tool {raw_name} from {server_name} collides with "
                    f"{taken[exposed]}, exposing it as {qualified}"
                )
                exposed = qualified
            taken[exposed] = server_name
            entries.append(
                ToolIndexEntry(
                    name=raw_name,
                    exposed_name=exposed,
                    server_name=server_name,
                    description=raw.get("description") or "",
                    input_schema=raw.get("inputSchema") or {},
                )
            )

        self._replace_server_entries(server_name, entries)

        for entry in entries:
            logger.info(f"Registered MCP tool {entry.exposed_name} (from {server_name})")
        return entries

    async def disconnect(self, server_name: str) -> bool:
        """Close a server's connection and purge its tools.

        Close errors are swallowed; the server is removed from the live set
        regardless. Returns False if the server has no live connection.
        """
        connection = self._connections.get(server_name)
        if connection is None or connection.transport is None:
            return False

        transport, connection.transport = connection.transport, None
        await self._close_transport(server_name, transport)
        self._mark_disconnected(server_name)
        logger.info(f"Disconnected MCP server {server_name}")
        return True

    async def disconnect_all(self) -> None:
        """Disconnect every server and forget all connection records."""
        for server_name in list(self._connections):
            await self.disconnect(server_name)

        self._connections.clear()
        self._tools.clear()
        logger.info("Disconnected all MCP servers")

    async def reconnect(self, server_name: str) -> bool:
        """Disconnect and connect again with the last known config."""
        connection = self._connections.get(server_name)
        if connection is None:
            logger.warning(f"No config on record for MCP server {server_name}")
            return False

        config = connection.config
        await self.disconnect(server_name)
        return await self.connect(server_name, config)

    # ── Execution ─────────────────────────────────────────────────────────

    async def execute(self, tool_name: str, arguments: dict[str, Any]) -> Any:
        """Call a remote tool and return its raw result.

        Args:
            tool_name: Exposed name (``mcp_`` prefix optional)
            arguments: Parsed arguments object

        Raises:
            UnknownToolError: The name is not in the index
            ServerDisconnectedError: The owning server is not connected
            ToolExecutionError: The server reported a failure
            ServerConnectionError: The transport broke; the server is marked disconnected
        """
        entry = self._lookup(tool_name)
        if entry is None:
            raise UnknownToolError(tool_name)

        connection = self._connections.get(entry.server_name)
        if connection is None or not connection.is_connected:
            raise ServerDisconnectedError(tool_name, entry.server_name)

        if self._is_stale(connection):
            logger.warning(f"Tool snapshot of {entry.server_name} is stale, refreshing")
            await self.register_server_tools(entry.server_name)
            entry = self._lookup(tool_name)
            if entry is None:
                raise UnknownToolError(tool_name)

        logger.info(f"Executing MCP tool {entry.exposed_name}: {json.dumps(arguments, ensure_ascii=False, default=str)}")
        try:
            call = connection.transport.call_tool(entry.name, arguments)
            if self.call_timeout:
                result = await asyncio.wait_for(call, timeout=self.call_timeout)
            else:
                result = await call
        except ServerConnectionError:
            logger.error(f"MCP server {entry.server_name} dropped during {entry.name}")
            if connection.transport is not None:
                transport, connection.transport = connection.transport, None
                await self._close_transport(entry.server_name, transport)
            self._mark_disconnected(entry.server_name)
            raise
        except asyncio.TimeoutError as e:
            raise ToolExecutionError(
                f"MCP tool {entry.name} timed out after {self.call_timeout}s"
            ) from e

        logger.info(f"MCP tool {entry.exposed_name} finished")
        return result

    # ── Read-side queries ─────────────────────────────────────────────────

    @staticmethod
    def is_remote_tool(tool_name: str | None) -> bool:
        return bool(tool_name) and tool_name.startswith(TOOL_PREFIX)

    @staticmethod
    def strip_prefix(tool_name: str) -> str:
        return tool_name[len(TOOL_PREFIX):] if tool_name.startswith(TOOL_PREFIX) else tool_name

    def is_known_tool(self, tool_name: str) -> bool:
        return self._lookup(tool_name) is not None

    def is_tool_available(self, tool_name: str) -> bool:
        """Known and its server is currently connected."""
        entry = self._lookup(tool_name)
        if entry is None:
            return False
        connection = self._connections.get(entry.server_name)
        return connection is not None and connection.is_connected

    def resolve_server(self, tool_name: str) -> str | None:
        entry = self._lookup(tool_name)
        return entry.server_name if entry else None

    def get_tool_info(self, tool_name: str) -> dict[str, Any] | None:
        entry = self._lookup(tool_name)
        if entry is None:
            return None
        return {
            "name": entry.name,
            "display_name": entry.exposed_name,
            "server_name": entry.server_name,
            "description": entry.description,
            "input_schema": entry.input_schema,
        }

    def list_server_tools(self, server_name: str) -> list[ToolIndexEntry]:
        return [e for e in self._tools.values() if e.server_name == server_name]

    def connected_servers(self) -> list[str]:
        return [name for name, c in self._connections.items() if c.is_connected]

    def get_connection(self, server_name: str) -> ServerConnection | None:
        return self._connections.get(server_name)

    @property
    def tool_count(self) -> int:
        return len(self._tools)

    def descriptors(self) -> list[CapabilityDescriptor]:
        """Descriptors for every tool whose server is connected."""
        descriptors = []
        for entry in self._tools.values():
            connection = self._connections.get(entry.server_name)
            if connection is None or not connection.is_connected:
                continue
            descriptors.append(
                CapabilityDescriptor(
                    name=entry.exposed_name,
                    description=entry.description,
                    parameter_schema=entry.input_schema,
                    origin=ToolOrigin.REMOTE,
                    server_name=entry.server_name,
                )
            )
        return descriptors

    def tool_summary(self) -> str:
        """Server-grouped one-line-per-server summary of loaded tools."""
        grouped: dict[str, list[str]] = {}
        for entry in self._tools.values():
            grouped.setdefault(entry.server_name, []).append(entry.exposed_name)

        lines = []
        for server_name, names in grouped.items():
            connection = self._connections.get(server_name)
            kind = connection.transport_kind.value if connection else TransportKind.STDIO.value
            lines.append(f"{server_name} ({kind}): {len(names)} tools ({', '.join(names)})")

        return "\n".join(lines) or "No MCP tools loaded"

    def servers_info(self) -> list[dict[str, Any]]:
        """Structured per-server records for admin surfaces."""
        info = []
        for name, connection in self._connections.items():
            config = connection.config
            info.append(
                {
                    "name": name,
                    "type": connection.transport_kind.value,
                    "description": config.description,
                    "enabled": config.enabled,
                    "state": connection.state.value,
                    "connected": connection.is_connected,
                    "tool_count": len(connection.tool_names),
                    "tool_names": list(connection.tool_names),
                    "has_system_prompt": bool(config.system_prompt),
                    "connected_at": connection.connected_at,
                    "error": connection.last_error,
                }
            )
        return info

    def status_summary(self) -> str:
        """Human-readable status block for every configured server."""
        servers = self.servers_info()
        if not servers:
            return "No MCP servers configured"

        lines = ["[MCP server status]"]
        for server in servers:
            marker = "up" if server["connected"] else "down"
            lines.append(f"\n{server['name']} [{marker}]")
            lines.append(f"   type: {server['type']}")
            lines.append(f"   tools: {server['tool_count']}")
            if server["description"]:
                lines.append(f"   description: {server['description']}")
            if server["error"]:
                lines.append(f"   error: {server['error']}")
            names = server["tool_names"]
            if names:
                more = "..." if len(names) > 5 else ""
                lines.append(f"   tool names: {', '.join(names[:5])}{more}")

        return "\n".join(lines)

    async def health_check(self) -> dict[str, Any]:
        """Re-list tools on every live connection and report the outcome."""
        live = [c for c in self._connections.values() if c.is_connected]
        report: dict[str, Any] = {
            "timestamp": _utcnow(),
            "total_servers": len(live),
            "total_tools": len(self._tools),
            "servers": [],
        }

        for connection in live:
            server_report: dict[str, Any] = {
                "name": connection.name,
                "type": connection.transport_kind.value,
                "status": "unknown",
                "tool_count": 0,
                "error": None,
            }
            try:
                tools = await connection.transport.list_tools()
                server_report["status"] = "healthy"
                server_report["tool_count"] = len(tools)
            except Exception as e:
                server_report["status"] = "unhealthy"
                server_report["error"] = str(e)
            report["servers"].append(server_report)

        return report

    # ── System prompts ────────────────────────────────────────────────────

    def get_system_prompts(self, context: PromptContext | None = None) -> str:
        """Combined system prompts of connected servers matching the context."""
        context = context or PromptContext()
        prompts = []
        for name, connection in self._connections.items():
            if not connection.is_connected or not connection.system_prompt:
                continue
            if not connection.matches_context(context):
                continue
            prompts.append(f"[{name}]\n{connection.system_prompt.strip()}")

        if not prompts:
            return ""
        return "\n\n[MCP capabilities]\n" + "\n\n".join(prompts)

    def get_server_system_prompt(self, server_name: str) -> str | None:
        connection = self._connections.get(server_name)
        if connection is None or not connection.is_connected:
            return None
        return connection.system_prompt or None

    def update_server_system_prompt(self, server_name: str, system_prompt: str) -> bool:
        connection = self._connections.get(server_name)
        if connection is None:
            return False
        connection.config = connection.config.model_copy(
            update={"system_prompt": system_prompt}
        )
        return True

    # ── Internals ─────────────────────────────────────────────────────────

    def _lookup(self, tool_name: str) -> ToolIndexEntry | None:
        if not tool_name:
            return None
        entry = self._tools.get(tool_name)
        if entry is None and not tool_name.startswith(TOOL_PREFIX):
            entry = self._tools.get(f"{TOOL_PREFIX}{tool_name}")
        return entry

    def _is_live(self, server_name: str) -> bool:
        connection = self._connections.get(server_name)
        return connection is not None and connection.transport is not None

    def _is_stale(self, connection: ServerConnection) -> bool:
        indexed = {
            name for name, e in self._tools.items() if e.server_name == connection.name
        }
        return indexed != set(connection.tool_names)

    def _replace_server_entries(
        self, server_name: str, entries: list[ToolIndexEntry]
    ) -> None:
        for name in [n for n, e in self._tools.items() if e.server_name == server_name]:
            del self._tools[name]
        for entry in entries:
            self._tools[entry.exposed_name] = entry
        connection = self._connections.get(server_name)
        if connection is not None:
            connection.tool_names = [entry.exposed_name for entry in entries]

    def _mark_disconnected(self, server_name: str) -> None:
        self._replace_server_entries(server_name, [])
        connection = self._connections.get(server_name)
        if connection is not None:
            connection.state = ConnectionState.DISCONNECTED
            connection.disconnected_at = _utcnow()

    def _record_failure(
        self,
        server_name: str,
        raw_config: Any,
        connection: ServerConnection | None,
        message: str,
    ) -> None:
        if connection is None:
            config = ServerConfig.model_construct(**dict(raw_config or {}))
            connection = ServerConnection(name=server_name, config=config)
            self._connections[server_name] = connection
        connection.transport = None
        connection.state = ConnectionState.FAILED
        connection.last_error = message
        self._replace_server_entries(server_name, [])

    @staticmethod
    async def _close_transport(server_name: str, transport: ServerTransport) -> None:
        try:
            await transport.close()
        except Exception as e:
            logger.debug(f"Ignoring close error for MCP server {server_name}: {e}")


def _describe_error(error: Exception) -> str:
    if isinstance(error, asyncio.TimeoutError):
        return "Timed out waiting for MCP handshake"
    if isinstance(error, ValidationError):
        return f"Invalid server config: {error.errors()[0].get('msg', str(error))}"
    return str(error) or error.__class__.__name__
