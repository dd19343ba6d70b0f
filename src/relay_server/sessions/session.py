"""Per-turn session state for one run of the invocation loop."""

import logging
import uuid
from datetime import datetime, timezone

from relay_server.sessions.types import AssistantMessage, Message, ToolMessage
from relay_server.tools.types import CapabilityDescriptor

logger = logging.getLogger(__name__)


class TurnSession:
    """State scoped to handling one inbound message.

    A session is created when a message arrives and released once the
    invocation loop reaches a terminal state. It is never persisted and never
    shared between two inbound messages.
    """

    def __init__(
        self,
        session_id: str,
        active_tools: list[CapabilityDescriptor] | None = None,
        messages: list[Message] | None = None,
    ) -> None:
        """Initialize a TurnSession.

        Args:
            session_id: Unique session identifier (10-char hex)
            active_tools: Tools the model may call during this turn
            messages: Initial message list (system prompt, history, new message)
        """
        self.session_id = session_id
        self.active_tools: list[CapabilityDescriptor] = active_tools or []
        self.messages: list[Message] = messages or []
        self.last_tool_used: str | None = None
        self.created_at = datetime.now(timezone.utc)

    def add_message(self, message: Message) -> None:
        self.messages.append(message)

    def add_tool_round(
        self, assistant: AssistantMessage, tool_messages: list[ToolMessage]
    ) -> None:
        """Append an assistant tool-call message and its answers in one step.

        Raises:
            ValueError: If a tool message answers a call the assistant did not make
        """
        call_ids = {call.id for call in assistant.tool_calls}
        for tool_message in tool_messages:
            if tool_message.tool_call_id not in call_ids:
                raise ValueError(
                    f"Tool message for unknown call id {tool_message.tool_call_id}"
                )
        self.messages.extend([assistant, *tool_messages])

    def active_tool_names(self) -> set[str]:
        return {tool.name for tool in self.active_tools}

    def find_tool(self, name: str) -> CapabilityDescriptor | None:
        for tool in self.active_tools:
            if tool.name == name:
                return tool
        return None

    @staticmethod
    def generate_session_id() -> str:
        """Generate a new unique session ID.

        Returns:
            10-character hexadecimal string
        """
        return uuid.uuid4().hex[:10]
