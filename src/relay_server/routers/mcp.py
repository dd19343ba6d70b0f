"""MCP administration endpoints.

Reload, reconnect and inspect the MCP servers managed by the ToolManager.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from relay_server.dependencies import get_tool_manager
from relay_server.errors import ConfigError
from relay_server.mcp import ToolManager
from relay_server.models.mcp import (
    MCPHealthResponse,
    ReconnectResponse,
    ReloadResponse,
    ServerInfo,
    ServersInfoResponse,
    ServerSystemPromptRequest,
    ServerSystemPromptResponse,
    ToolsSummaryResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/mcp", tags=["mcp"])


def _server_not_found(server_name: str) -> HTTPException:
    return HTTPException(
        status_code=404,
        detail={
            "error": {
                "code": "server_not_found",
                "message": f"MCP server {server_name} not found",
                "details": {"server_name": server_name},
            }
        },
    )


@router.post("/reload", response_model=ReloadResponse)
async def reload_servers(
    request: Request,
    tool_manager: ToolManager = Depends(get_tool_manager),
) -> ReloadResponse:
    """Re-read the server config file, disconnect everything and reconnect.

    Raises:
        HTTPException: 500 if the config file cannot be loaded
    """
    settings = request.app.state.settings
    try:
        servers = settings.load_mcp_servers()
    except ConfigError as e:
        logger.error(f"Failed to reload MCP server config: {e}")
        raise HTTPException(
            status_code=500,
            detail={
                "error": {
                    "code": "config_error",
                    "message": str(e),
                    "details": {},
                }
            },
        )

    request.app.state.mcp_servers = servers
    results = await tool_manager.reload_all(servers)
    logger.info(f"Reloaded MCP servers: {results}")

    return ReloadResponse(
        results=results,
        connected=sum(results.values()),
        total_tools=tool_manager.tool_count,
    )


@router.post("/servers/{server_name}/reconnect", response_model=ReconnectResponse)
async def reconnect_server(
    server_name: str,
    tool_manager: ToolManager = Depends(get_tool_manager),
) -> ReconnectResponse:
    """Disconnect one server and connect it again with its last known config.

    Raises:
        HTTPException: 404 if the server has never been configured
    """
    if tool_manager.get_connection(server_name) is None:
        raise _server_not_found(server_name)

    connected = await tool_manager.reconnect(server_name)
    connection = tool_manager.get_connection(server_name)

    return ReconnectResponse(
        server_name=server_name,
        connected=connected,
        tool_count=len(connection.tool_names) if connection else 0,
        error=connection.last_error if connection else None,
    )


@router.get("/tools", response_model=ToolsSummaryResponse)
async def list_tools(
    tool_manager: ToolManager = Depends(get_tool_manager),
) -> ToolsSummaryResponse:
    """Server-grouped summary of every loaded MCP tool."""
    return ToolsSummaryResponse(
        summary=tool_manager.tool_summary(),
        total_tools=tool_manager.tool_count,
        tools=[d.name for d in tool_manager.descriptors()],
    )


@router.get("/servers", response_model=ServersInfoResponse)
async def list_servers(
    tool_manager: ToolManager = Depends(get_tool_manager),
) -> ServersInfoResponse:
    """State of every configured MCP server."""
    return ServersInfoResponse(
        servers=[ServerInfo(**info) for info in tool_manager.servers_info()],
        status=tool_manager.status_summary(),
    )


@router.get("/health", response_model=MCPHealthResponse)
async def mcp_health(
    tool_manager: ToolManager = Depends(get_tool_manager),
) -> MCPHealthResponse:
    """Re-list tools on every connected server and report healthy/unhealthy."""
    report = await tool_manager.health_check()
    return MCPHealthResponse(**report)


@router.get(
    "/servers/{server_name}/system-prompt", response_model=ServerSystemPromptResponse
)
async def get_server_system_prompt(
    server_name: str,
    tool_manager: ToolManager = Depends(get_tool_manager),
) -> ServerSystemPromptResponse:
    """Get a server's system prompt (null when unset or not connected).

    Raises:
        HTTPException: 404 if the server has never been configured
    """
    if tool_manager.get_connection(server_name) is None:
        raise _server_not_found(server_name)

    return ServerSystemPromptResponse(
        server_name=server_name,
        system_prompt=tool_manager.get_server_system_prompt(server_name),
    )


@router.put(
    "/servers/{server_name}/system-prompt", response_model=ServerSystemPromptResponse
)
async def update_server_system_prompt(
    server_name: str,
    request_body: ServerSystemPromptRequest,
    tool_manager: ToolManager = Depends(get_tool_manager),
) -> ServerSystemPromptResponse:
    """Replace a server's system prompt until the next reload.

    Raises:
        HTTPException: 404 if the server has never been configured
    """
    if not tool_manager.update_server_system_prompt(server_name, request_body.system_prompt):
        raise _server_not_found(server_name)

    logger.info(f"Updated system prompt of MCP server {server_name}")
    return ServerSystemPromptResponse(
        server_name=server_name,
        system_prompt=request_body.system_prompt,
    )
