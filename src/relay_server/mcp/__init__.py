"""MCP tool-server connections and the ToolManager registry.

This package connects to external MCP servers over stdio or SSE, indexes
their tools under the ``mcp_`` prefix and routes tool calls to them.
"""

from relay_server.mcp.connection import (
    ConnectionState,
    PromptConditions,
    PromptContext,
    ServerConfig,
    ServerConnection,
    TransportKind,
)
from relay_server.mcp.manager import TOOL_PREFIX, ToolManager, flatten_tool_result
from relay_server.mcp.transport import (
    ServerTransport,
    SSETransport,
    StdioTransport,
    create_transport,
)

__all__ = [
    "ConnectionState",
    "PromptConditions",
    "PromptContext",
    "SSETransport",
    "ServerConfig",
    "ServerConnection",
    "ServerTransport",
    "StdioTransport",
    "TOOL_PREFIX",
    "ToolManager",
    "TransportKind",
    "create_transport",
    "flatten_tool_result",
]
