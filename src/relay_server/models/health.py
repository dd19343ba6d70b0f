"""Health check response model."""

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Response model for the health check endpoint.

    Attributes:
        status: Health status indicator ("ok" or "error").
        version: The version of relay-server.
        provider: Configured completion provider.
        provider_connected: Whether the provider looks reachable.
        mcp_servers_connected: Number of connected MCP servers.
        mcp_tools: Number of MCP tools loaded.
    """

    status: str = Field(..., description="Health status of the service")
    version: str = Field(..., description="Version of relay-server")
    provider: str | None = Field(default=None, description="Completion provider")
    provider_connected: bool | None = Field(
        default=None,
        description="Whether the completion provider is reachable",
    )
    mcp_servers_connected: int = Field(default=0, description="Connected MCP servers")
    mcp_tools: int = Field(default=0, description="Loaded MCP tools")
