"""Health check endpoint router."""

import logging

from fastapi import APIRouter, Request

from relay_server import __version__
from relay_server.models.health import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """Health check endpoint.

    Returns the current health status and version of the relay-server.
    Also checks the completion provider and reports MCP server counts when
    they are initialized.

    Args:
        request: The FastAPI request object.

    Returns:
        HealthResponse: Health status and version information.
    """
    state = request.app.state
    provider = state.settings.provider if hasattr(state, "settings") else None
    provider_connected = None
    mcp_servers = 0
    mcp_tools = 0

    if hasattr(state, "completion_client"):
        try:
            provider_connected = await state.completion_client.check_connection()
            logger.debug(f"Completion provider check: {provider_connected}")
        except Exception as e:
            logger.warning(f"Completion provider check failed: {e}")
            provider_connected = False

    if hasattr(state, "tool_manager"):
        mcp_servers = len(state.tool_manager.connected_servers())
        mcp_tools = state.tool_manager.tool_count

    return HealthResponse(
        status="ok",
        version=__version__,
        provider=provider,
        provider_connected=provider_connected,
        mcp_servers_connected=mcp_servers,
        mcp_tools=mcp_tools,
    )
