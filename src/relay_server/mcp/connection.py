"""Configuration and connection records for MCP tool-servers."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

if TYPE_CHECKING:
    from relay_server.mcp.transport import ServerTransport


class TransportKind(str, Enum):
    """Transport used to reach an MCP server."""

    STDIO = "stdio"
    SSE = "sse"


class ConnectionState(str, Enum):
    """Lifecycle state of one MCP server connection."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"


# Accepted spellings for the transport type in server config files.
_TRANSPORT_ALIASES = {
    "stdio": TransportKind.STDIO,
    "pipe": TransportKind.STDIO,
    "sse": TransportKind.SSE,
    "stream": TransportKind.SSE,
}


class PromptConditions(BaseModel):
    """Conditions restricting when a server's system prompt is injected."""

    model_config = ConfigDict(populate_by_name=True)

    message_types: list[str] | None = Field(
        default=None,
        validation_alias=AliasChoices("message_types", "messageTypes", "messageType"),
    )
    group_ids: list[str] | None = Field(
        default=None,
        validation_alias=AliasChoices("group_ids", "groupIds", "groups"),
    )
    keywords: list[str] | None = None

    @field_validator("group_ids", mode="before")
    @classmethod
    def _coerce_group_ids(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [str(v) for v in value]
        return value


class ServerConfig(BaseModel):
    """One entry of the MCP server configuration mapping.

    Both snake_case and the camelCase keys used by MCP config files are
    accepted (``baseUrl``, ``systemPrompt``, ``promptConditions``,
    ``transportKind``).
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    enabled: bool = False
    type: TransportKind = Field(
        default=TransportKind.STDIO,
        validation_alias=AliasChoices("type", "transport_kind", "transportKind"),
    )
    command: str | None = None
    args: list[str] = Field(default_factory=list)
    env: dict[str, Any] = Field(default_factory=dict)
    base_url: str | None = Field(
        default=None, validation_alias=AliasChoices("base_url", "baseUrl")
    )
    headers: dict[str, Any] = Field(default_factory=dict)
    description: str = ""
    system_prompt: str | None = Field(
        default=None, validation_alias=AliasChoices("system_prompt", "systemPrompt")
    )
    prompt_conditions: PromptConditions | None = Field(
        default=None,
        validation_alias=AliasChoices("prompt_conditions", "promptConditions"),
    )

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, value: Any) -> Any:
        if value is None:
            return TransportKind.STDIO
        if isinstance(value, str):
            kind = _TRANSPORT_ALIASES.get(value.strip().lower())
            if kind is None:
                raise ValueError(f"Unsupported transport type: {value}")
            return kind
        return value

    @field_validator("args", mode="before")
    @classmethod
    def _coerce_args(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, list):
            return [str(v) for v in value]
        return value

    @field_validator("env", "headers", mode="before")
    @classmethod
    def _default_mapping(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else {}


@dataclass
class PromptContext:
    """Inbound-message context used to filter server system prompts."""

    message_type: str | None = None
    group_id: str | None = None
    message: str | None = None


@dataclass
class ServerConnection:
    """Connection record for one MCP server, owned by the ToolManager."""

    name: str
    config: ServerConfig
    transport_kind: TransportKind = TransportKind.STDIO
    state: ConnectionState = ConnectionState.DISCONNECTED
    connected_at: datetime | None = None
    disconnected_at: datetime | None = None
    last_error: str | None = None
    tool_names: list[str] = field(default_factory=list)
    transport: "ServerTransport | None" = field(default=None, repr=False)

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED and self.transport is not None

    @property
    def system_prompt(self) -> str | None:
        return self.config.system_prompt

    @property
    def prompt_conditions(self) -> PromptConditions | None:
        return self.config.prompt_conditions

    def matches_context(self, context: PromptContext) -> bool:
        """Check the server's prompt conditions against an inbound message."""
        conditions = self.prompt_conditions
        if conditions is None:
            return True

        if conditions.message_types and context.message_type:
            if context.message_type not in conditions.message_types:
                return False

        if conditions.group_ids and context.group_id:
            if str(context.group_id) not in conditions.group_ids:
                return False

        if conditions.keywords and context.message:
            text = context.message.lower()
            if not any(kw.lower() in text for kw in conditions.keywords):
                return False

        return True
