"""Conversation message types.

A conversation is an ordered list of system, user, assistant and tool
messages. Assistant messages may carry tool calls; every tool message answers
one of the tool calls of the assistant message right before it.
"""

from dataclasses import dataclass, field
from typing import Any

from relay_server.tools.types import ToolCallRequest


@dataclass
class UserMessage:
    """A message from the user."""

    role: str = "user"
    content: str = ""

    def __post_init__(self) -> None:
        """Validate role is always 'user'."""
        self.role = "user"


@dataclass
class SystemMessage:
    """A system prompt message."""

    role: str = "system"
    content: str = ""

    def __post_init__(self) -> None:
        """Validate role is always 'system'."""
        self.role = "system"


@dataclass
class AssistantMessage:
    """A response from the model, either text or a batch of tool calls."""

    role: str = "assistant"
    content: str | None = None
    tool_calls: list[ToolCallRequest] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Validate role is always 'assistant'."""
        self.role = "assistant"


@dataclass
class ToolMessage:
    """A tool execution result answering one tool call."""

    role: str = "tool"
    tool_call_id: str = ""
    tool_name: str = ""
    content: str = ""

    def __post_init__(self) -> None:
        """Validate role is always 'tool'."""
        self.role = "tool"


# Union type for all message types
Message = UserMessage | SystemMessage | AssistantMessage | ToolMessage


def message_from_dict(data: dict[str, Any]) -> Message:
    """Convert a provider-style message dict to the matching Message type.

    Raises:
        ValueError: If role is unknown
    """
    role = data.get("role")

    if role == "user":
        return UserMessage(content=data.get("content") or "")
    elif role == "system":
        return SystemMessage(content=data.get("content") or "")
    elif role == "assistant":
        return AssistantMessage(
            content=data.get("content"),
            tool_calls=[
                ToolCallRequest.from_provider(call)
                for call in data.get("tool_calls") or []
            ],
        )
    elif role == "tool":
        return ToolMessage(
            tool_call_id=data.get("tool_call_id") or "",
            tool_name=data.get("name") or data.get("tool_name") or "",
            content=data.get("content") or "",
        )
    else:
        raise ValueError(f"Unknown message role: {role}")


def to_provider_messages(messages: list[Message]) -> list[dict[str, Any]]:
    """Convert session messages to the chat-completions ``messages`` format."""
    provider_messages = []

    for msg in messages:
        if isinstance(msg, AssistantMessage):
            entry: dict[str, Any] = {"role": "assistant", "content": msg.content}
            if msg.tool_calls:
                entry["tool_calls"] = [call.to_provider() for call in msg.tool_calls]
        elif isinstance(msg, ToolMessage):
            entry = {
                "role": "tool",
                "tool_call_id": msg.tool_call_id,
                "name": msg.tool_name,
                "content": msg.content,
            }
        else:
            entry = {"role": msg.role, "content": msg.content}

        provider_messages.append(entry)

    return provider_messages
