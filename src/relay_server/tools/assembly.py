"""Assembly of the tool definitions sent to the completion provider."""

import logging
from typing import Any

from relay_server.mcp.manager import ToolManager
from relay_server.tools.local import LocalToolRegistry
from relay_server.tools.schema import EMPTY_PARAMETERS, sanitize_schema
from relay_server.tools.types import CapabilityDescriptor

logger = logging.getLogger(__name__)


def to_wire_format(descriptor: CapabilityDescriptor) -> dict[str, Any]:
    """Convert a descriptor to the OpenAI ``tools`` array entry shape."""
    parameters = sanitize_schema(descriptor.parameter_schema)
    if not parameters:
        parameters = dict(EMPTY_PARAMETERS)
    return {
        "type": "function",
        "function": {
            "name": descriptor.name,
            "description": descriptor.description or "",
            "parameters": parameters,
        },
    }


def collect_descriptors(
    local_registry: LocalToolRegistry,
    manager: ToolManager | None,
    allowed_local: list[str] | None,
) -> list[CapabilityDescriptor]:
    """Collect the active descriptors: allow-listed local tools, then MCP tools."""
    descriptors = [tool.descriptor() for tool in local_registry.select(allowed_local)]
    if manager is not None:
        descriptors.extend(manager.descriptors())
    return descriptors


def build_tool_definitions(
    descriptors: list[CapabilityDescriptor],
) -> list[dict[str, Any]]:
    """Build the provider ``tools`` array; a descriptor that fails to format is skipped."""
    definitions: list[dict[str, Any]] = []
    for descriptor in descriptors:
        try:
            definitions.append(to_wire_format(descriptor))
        except Exception as e:
            logger.error(f"Failed to format tool {descriptor.name}: {e}")
    return definitions


def describe_tools(descriptors: list[CapabilityDescriptor]) -> str:
    """Render a plain-text tool overview for system prompts."""
    local_lines = [
        f"{d.name}: {d.description}" for d in descriptors if not d.is_remote
    ]
    remote_lines = [
        f"{d.name}: [{d.server_name}] {d.description or 'No description'}"
        for d in descriptors
        if d.is_remote
    ]

    parts = []
    if local_lines:
        parts.append("Local tools:\n" + "\n".join(local_lines))
    if remote_lines:
        parts.append("MCP tools:\n" + "\n".join(remote_lines))

    return "\n\n".join(parts) if parts else "No tools are currently available."
