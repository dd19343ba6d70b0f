"""Data types shared by local tools, MCP tools and the invocation loop."""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ToolOrigin(str, Enum):
    """Where a tool is executed."""

    LOCAL = "local"
    REMOTE = "remote"


@dataclass
class CapabilityDescriptor:
    """Uniform description of an invocable tool.

    Attributes:
        name: Name exposed to the model (remote tools carry the ``mcp_`` prefix)
        description: Human-readable description for the model
        parameter_schema: JSON-Schema for the arguments object
        origin: LOCAL for in-process tools, REMOTE for MCP tools
        server_name: Owning MCP server (remote tools only)
    """

    name: str
    description: str = ""
    parameter_schema: dict[str, Any] | None = None
    origin: ToolOrigin = ToolOrigin.LOCAL
    server_name: str | None = None

    @property
    def is_remote(self) -> bool:
        return self.origin is ToolOrigin.REMOTE


@dataclass
class ToolCallRequest:
    """A single tool call requested by the model."""

    id: str
    tool_name: str
    raw_arguments: str = "{}"

    @classmethod
    def from_provider(cls, data: dict[str, Any]) -> "ToolCallRequest":
        """Build a request from an OpenAI-style ``tool_calls`` entry.

        Object-valued arguments are re-encoded as JSON text.

        Raises:
            ValueError: If the entry or its ``function`` is not an object
        """
        if not isinstance(data, dict):
            raise ValueError(f"Tool call must be an object, got {type(data).__name__}")
        function = data.get("function") or {}
        if not isinstance(function, dict):
            raise ValueError(
                f"Tool call function must be an object, got {type(function).__name__}"
            )

        arguments = function.get("arguments")
        if arguments is None:
            arguments = "{}"
        elif not isinstance(arguments, str):
            arguments = json.dumps(arguments, ensure_ascii=False)
        return cls(
            id=str(data.get("id", "")),
            tool_name=str(function.get("name", "")),
            raw_arguments=arguments,
        )

    @property
    def dedup_key(self) -> tuple[str, str]:
        return (self.tool_name, self.raw_arguments)

    def to_provider(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.tool_name, "arguments": self.raw_arguments},
        }


@dataclass
class ToolCallResult:
    """Outcome of one tool call, fed back to the model as a tool message."""

    request_id: str
    tool_name: str
    output: str
    succeeded: bool = True
    error_detail: str | None = None


@dataclass
class ToolIndexEntry:
    """A remote tool as stored in the ToolManager index."""

    name: str
    exposed_name: str
    server_name: str
    description: str = ""
    input_schema: dict[str, Any] = field(default_factory=dict)
