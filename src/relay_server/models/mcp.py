"""Pydantic models for the MCP administration endpoints."""

from datetime import datetime

from pydantic import BaseModel, Field


class ReloadResponse(BaseModel):
    """Result of reloading every configured server."""

    results: dict[str, bool] = Field(description="Connect result per enabled server")
    connected: int = Field(description="Number of servers connected")
    total_tools: int = Field(description="Number of MCP tools loaded")


class ReconnectResponse(BaseModel):
    """Result of reconnecting one server."""

    server_name: str = Field(description="Server name")
    connected: bool = Field(description="Whether the reconnect succeeded")
    tool_count: int = Field(default=0, description="Tools registered by the server")
    error: str | None = Field(default=None, description="Last connection error")


class ToolsSummaryResponse(BaseModel):
    """Server-grouped tool summary."""

    summary: str = Field(description="One line per server")
    total_tools: int = Field(description="Number of MCP tools loaded")
    tools: list[str] = Field(default_factory=list, description="Exposed tool names")


class ServerInfo(BaseModel):
    """State of one configured MCP server."""

    name: str
    type: str
    description: str | None = None
    enabled: bool
    state: str
    connected: bool
    tool_count: int
    tool_names: list[str] = Field(default_factory=list)
    has_system_prompt: bool = False
    connected_at: datetime | None = None
    error: str | None = None


class ServersInfoResponse(BaseModel):
    """State of every configured MCP server."""

    servers: list[ServerInfo] = Field(default_factory=list)
    status: str = Field(description="Human-readable status block")


class ServerHealth(BaseModel):
    """Health of one connected server."""

    name: str
    type: str
    status: str = Field(description="healthy, unhealthy or unknown")
    tool_count: int = 0
    error: str | None = None


class MCPHealthResponse(BaseModel):
    """Result of re-listing tools on every connected server."""

    timestamp: datetime
    total_servers: int
    total_tools: int
    servers: list[ServerHealth] = Field(default_factory=list)


class ServerSystemPromptRequest(BaseModel):
    """Request body for replacing a server's system prompt."""

    system_prompt: str = Field(description="New system prompt text")


class ServerSystemPromptResponse(BaseModel):
    """A server's current system prompt."""

    server_name: str
    system_prompt: str | None = None
