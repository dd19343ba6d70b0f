"""Types shared by the completion provider clients."""

import json
from dataclasses import dataclass, field
from typing import Any

from relay_server.errors import ProviderRequestError
from relay_server.tools.types import ToolCallRequest

# tool_choice is "auto", "none", or {"type": "function", "function": {"name": ...}}
ToolChoice = str | dict[str, Any]


@dataclass
class CompletionMessage:
    """The first choice of a chat completion response.

    Attributes:
        content: Text reply (None when the model only requested tools)
        tool_calls: Tool calls requested by the model
        raw: The unmodified ``choices[0].message`` payload
    """

    content: str | None = None
    tool_calls: list[ToolCallRequest] = field(default_factory=list)
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)

    @classmethod
    def from_provider(cls, message: dict[str, Any]) -> "CompletionMessage":
        """Build from ``choices[0].message``; non-function tool calls are dropped.

        Raises:
            ProviderRequestError: If ``tool_calls`` is malformed
        """
        raw_calls = message.get("tool_calls") or []
        if not isinstance(raw_calls, list):
            raise ProviderRequestError(
                f"Invalid tool_calls in response: {json.dumps(raw_calls, default=str)}"
            )

        tool_calls = []
        for call in raw_calls:
            if isinstance(call, dict) and (call.get("type") or "function") != "function":
                continue
            try:
                tool_calls.append(ToolCallRequest.from_provider(call))
            except ValueError as e:
                raise ProviderRequestError(f"Invalid tool call in response: {e}") from e

        return cls(content=message.get("content"), tool_calls=tool_calls, raw=message)


def forced_tool_choice(tool_name: str) -> dict[str, Any]:
    """tool_choice value forcing one named function."""
    return {"type": "function", "function": {"name": tool_name}}
