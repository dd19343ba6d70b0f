"""Dependency injection providers for FastAPI endpoints.

This module provides FastAPI dependency functions that are used across
multiple routers to inject the objects created at startup.
"""

from functools import lru_cache

from fastapi import HTTPException, Request

from relay_server.completion import CompletionClient
from relay_server.config import RelaySettings
from relay_server.mcp import ToolManager
from relay_server.services import Orchestrator
from relay_server.sessions import SessionStore
from relay_server.tools import LocalToolRegistry


@lru_cache
def get_settings() -> RelaySettings:
    """Get the application settings instance.

    This function is cached so that the same settings instance is reused
    across all requests. Settings are loaded from environment variables
    with the RELAY_ prefix.

    Returns:
        RelaySettings: The application configuration settings.
    """
    return RelaySettings()


def _from_state(request: Request, name: str, label: str):
    if not hasattr(request.app.state, name):
        raise HTTPException(
            status_code=503,
            detail={
                "error": {
                    "code": "not_initialized",
                    "message": f"{label} not initialized",
                    "details": {},
                }
            },
        )
    return getattr(request.app.state, name)


def get_completion_client(request: Request) -> CompletionClient:
    """Get the completion client from app state.

    Raises:
        HTTPException: If the client is not initialized (503 Service Unavailable).
    """
    return _from_state(request, "completion_client", "Completion client")


def get_tool_manager(request: Request) -> ToolManager:
    """Get the MCP ToolManager from app state.

    Raises:
        HTTPException: If the manager is not initialized (503 Service Unavailable).
    """
    return _from_state(request, "tool_manager", "Tool manager")


def get_local_registry(request: Request) -> LocalToolRegistry:
    return _from_state(request, "local_registry", "Local tool registry")


def get_session_store(request: Request) -> SessionStore:
    return _from_state(request, "session_store", "Session store")


def get_orchestrator(request: Request) -> Orchestrator:
    """Get the Orchestrator from app state.

    The orchestrator shares the app-wide limiters, so concurrent chats are
    bounded together.
    """
    return _from_state(request, "orchestrator", "Orchestrator")
