"""Pydantic models for chat API requests and responses.

This module defines the request and response schemas for the chat endpoints,
including the SSE event payloads of the streaming endpoint.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class HistoryMessage(BaseModel):
    """One prior conversation message supplied by the caller."""

    role: str = Field(description="Message role (user, assistant, system or tool)")
    content: str | None = Field(default=None, description="Message content")
    tool_calls: list[dict[str, Any]] | None = Field(
        default=None, description="Tool calls of an assistant message"
    )
    tool_call_id: str | None = Field(
        default=None, description="Call id answered by a tool message"
    )
    name: str | None = Field(default=None, description="Tool name of a tool message")


class PromptContextModel(BaseModel):
    """Where the message came from, used to select MCP server prompts."""

    message_type: str | None = Field(default=None, description="e.g. private or group")
    group_id: str | None = Field(default=None, description="Group identifier")


class ChatRequest(BaseModel):
    """Request body for chat endpoints.

    Used by both POST /api/v1/chat (non-streaming)
    and POST /api/v1/chat/stream (streaming).
    """

    message: str = Field(min_length=1, description="The new user message.")
    history: list[HistoryMessage] = Field(
        default_factory=list,
        description="Prior conversation, oldest first. Not stored by the server.",
    )
    system_prompt: str | None = Field(
        default=None, description="System prompt placed before the history."
    )
    tools: list[str] | None = Field(
        default=None,
        description="Allow-list of local tools. Defaults to the configured list.",
    )
    forced_tool: str | None = Field(
        default=None,
        description="Tool the model must call in the first round.",
    )
    context: PromptContextModel | None = Field(
        default=None,
        description="Message context used to filter MCP server system prompts.",
    )
    include_tool_overview: bool = Field(
        default=False,
        description="Append a plain-text overview of the active tools to the system prompt.",
    )

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "message": "What time is it?",
                    "system_prompt": "You are a helpful assistant.",
                    "tools": ["currentTimeTool"],
                },
                {
                    "message": "Search the docs for 'limiter'",
                    "forced_tool": "mcp_search",
                },
            ]
        }
    )


class ToolResultResponse(BaseModel):
    """One tool call result produced during the loop."""

    request_id: str = Field(description="Tool call id this result answers")
    tool_name: str = Field(description="Called tool")
    output: str = Field(description="Text fed back to the model")
    succeeded: bool = Field(description="Whether execution succeeded")
    error_detail: str | None = Field(default=None, description="Error message on failure")

    model_config = ConfigDict(from_attributes=True)


class ChatResponse(BaseModel):
    """Response body for the non-streaming chat endpoint."""

    session_id: str = Field(description="Identifier of the per-turn session")
    reply: str = Field(description="Final assistant reply")
    state: str = Field(description="Terminal loop state")
    rounds: int = Field(description="Number of tool-executing rounds")
    tool_results: list[ToolResultResponse] = Field(
        default_factory=list, description="Results of every executed tool call"
    )
    last_tool_used: str | None = Field(
        default=None, description="Last tool executed in the latest round"
    )

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "session_id": "a1b2c3d4e5",
                "reply": "It is 10:35 UTC.",
                "state": "done",
                "rounds": 1,
                "tool_results": [
                    {
                        "request_id": "call_1",
                        "tool_name": "currentTimeTool",
                        "output": "2025-01-15T10:35:00.000000Z",
                        "succeeded": True,
                        "error_detail": None,
                    }
                ],
                "last_tool_used": "currentTimeTool",
            }
        }
    )


# SSE Event Models


class ToolCallEvent(BaseModel):
    """SSE event emitted when the model requests a tool."""

    id: str = Field(description="Tool call id")
    name: str = Field(description="Tool name")
    arguments: str = Field(description="Raw JSON argument string")


class ToolResultEvent(BaseModel):
    """SSE event emitted when a tool call has a result."""

    id: str = Field(description="Tool call id")
    name: str = Field(description="Tool name")
    output: str = Field(description="Result text")
    succeeded: bool = Field(description="Whether execution succeeded")


class MessageEvent(BaseModel):
    """SSE event carrying the final reply."""

    content: str = Field(description="Final assistant reply")


class ErrorEvent(BaseModel):
    """SSE event emitted when the loop fails."""

    code: str = Field(description="Error code")
    message: str = Field(description="Human-readable error message")
    details: dict = Field(default_factory=dict, description="Additional details")


class DoneEvent(BaseModel):
    """SSE event emitted when the stream is complete."""

    session_id: str = Field(description="Session identifier")
    state: str = Field(description="Terminal loop state")
    rounds: int = Field(description="Number of tool-executing rounds")
