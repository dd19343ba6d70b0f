"""Tool descriptors, schema sanitizing and local tool registry.

Remote (MCP) tools live in ``relay_server.mcp``; this package holds the
pieces shared by both origins.
"""

from relay_server.tools.local import CurrentTimeTool, LocalTool, LocalToolRegistry
from relay_server.tools.schema import sanitize_schema
from relay_server.tools.types import (
    CapabilityDescriptor,
    ToolCallRequest,
    ToolCallResult,
    ToolOrigin,
)

__all__ = [
    "CapabilityDescriptor",
    "CurrentTimeTool",
    "LocalTool",
    "LocalToolRegistry",
    "ToolCallRequest",
    "ToolCallResult",
    "ToolOrigin",
    "sanitize_schema",
]
