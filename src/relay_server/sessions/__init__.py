"""Per-turn sessions and conversation message types.

This package provides the TurnSession that scopes one run of the invocation
loop, the SessionStore that owns live sessions, and the message dataclasses.
"""

from relay_server.sessions.manager import SessionStore
from relay_server.sessions.session import TurnSession
from relay_server.sessions.types import (
    AssistantMessage,
    Message,
    SystemMessage,
    ToolMessage,
    UserMessage,
    message_from_dict,
    to_provider_messages,
)

__all__ = [
    # Core classes
    "SessionStore",
    "TurnSession",
    # Message types
    "Message",
    "UserMessage",
    "SystemMessage",
    "AssistantMessage",
    "ToolMessage",
    # Conversion
    "message_from_dict",
    "to_provider_messages",
]
