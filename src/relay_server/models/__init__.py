"""Pydantic models for API request and response schemas.

This package contains all Pydantic models used for validating and
serializing API requests and responses across all endpoints.
"""

from relay_server.models.chat import ChatRequest, ChatResponse, ToolResultResponse
from relay_server.models.health import HealthResponse
from relay_server.models.mcp import (
    MCPHealthResponse,
    ReconnectResponse,
    ReloadResponse,
    ServersInfoResponse,
    ServerSystemPromptRequest,
    ServerSystemPromptResponse,
    ToolsSummaryResponse,
)

__all__ = [
    "ChatRequest",
    "ChatResponse",
    "HealthResponse",
    "MCPHealthResponse",
    "ReconnectResponse",
    "ReloadResponse",
    "ServerSystemPromptRequest",
    "ServerSystemPromptResponse",
    "ServersInfoResponse",
    "ToolResultResponse",
    "ToolsSummaryResponse",
]
