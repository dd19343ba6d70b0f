"""FastAPI application factory and lifespan management.

This module contains the create_app() factory function that creates and configures
the FastAPI application instance, including lifespan management for startup/shutdown
and router registration.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from relay_server import __version__
from relay_server.completion import (
    CompletionClient,
    OllamaCompletionClient,
    OpenAICompletionClient,
)
from relay_server.config import RelaySettings
from relay_server.errors import ConfigError
from relay_server.mcp import ToolManager
from relay_server.routers import chat, health, mcp
from relay_server.services import ConcurrencyLimiter, Orchestrator
from relay_server.sessions import SessionStore
from relay_server.tools import CurrentTimeTool, LocalToolRegistry

logger = logging.getLogger(__name__)


def create_completion_client(settings: RelaySettings) -> CompletionClient:
    """Create the completion client for the configured provider."""
    if settings.provider == "ollama":
        return OllamaCompletionClient(
            host=settings.ollama_host,
            model=settings.model,
            temperature=settings.temperature,
            top_p=settings.top_p,
        )
    return OpenAICompletionClient(
        base_url=settings.completion_url,
        api_key=settings.api_key,
        model=settings.model,
        temperature=settings.temperature,
        top_p=settings.top_p,
        timeout=settings.request_timeout,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Lifespan context manager for FastAPI application.

    Expensive objects (completion client, MCP connections, limiters) are
    created once at startup and stored in app.state for reuse across all
    requests. Objects already placed in app.state (e.g. by tests) are kept.

    Args:
        app: The FastAPI application instance.

    Yields:
        None: Control is yielded while the app is running.
    """
    settings: RelaySettings = app.state.settings
    state = app.state

    if not hasattr(state, "completion_client"):
        state.completion_client = create_completion_client(settings)
        logger.info(f"Initialized {settings.provider} completion client for model {settings.model}")

    if not hasattr(state, "local_registry"):
        state.local_registry = LocalToolRegistry([CurrentTimeTool()])

    if not hasattr(state, "session_store"):
        state.session_store = SessionStore()

    if not hasattr(state, "tool_manager"):
        state.tool_manager = ToolManager(
            connect_timeout=settings.mcp_connect_timeout,
            call_timeout=settings.mcp_call_timeout,
        )
        try:
            state.mcp_servers = settings.load_mcp_servers()
        except ConfigError as e:
            logger.error(f"MCP servers not loaded: {e}")
            state.mcp_servers = {}
        await state.tool_manager.connect_all(state.mcp_servers)

    if not hasattr(state, "orchestrator"):
        state.orchestrator = Orchestrator(
            completion_client=state.completion_client,
            tool_manager=state.tool_manager,
            local_registry=state.local_registry,
            tool_limiter=ConcurrencyLimiter(settings.concurrent_limit),
            request_limiter=ConcurrencyLimiter(settings.concurrent_limit),
            max_rounds=settings.max_tool_rounds,
            request_retries=settings.request_retries,
        )

    if await state.completion_client.check_connection():
        logger.info("Completion provider is reachable")
    else:
        logger.warning("Completion provider is not reachable - check provider settings")

    yield

    # Shutdown: Clean up resources
    await state.tool_manager.disconnect_all()
    logger.info("MCP servers disconnected")
    await state.completion_client.close()
    logger.info("Completion client closed")


def create_app(settings: RelaySettings | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    This factory function creates a FastAPI instance with all routers,
    middleware, and configuration applied. It can accept an optional
    settings object for testing or explicit configuration.

    Args:
        settings: Optional RelaySettings instance. If not provided,
                  settings will be loaded from environment variables.

    Returns:
        FastAPI: Configured FastAPI application instance.
    """
    if settings is None:
        from relay_server.dependencies import get_settings

        settings = get_settings()

    app = FastAPI(
        title="relay-server",
        description="Headless FastAPI server orchestrating LLM tool calls over local and MCP tools",
        version=__version__,
        lifespan=lifespan,
    )

    # Store settings in app.state for lifespan access
    app.state.settings = settings

    # Configure CORS
    # Note: FastAPI's type hints for add_middleware are overly strict
    app.add_middleware(
        CORSMiddleware,  # type: ignore[arg-type]
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register routers
    app.include_router(health.router)
    app.include_router(chat.router)
    app.include_router(mcp.router)

    return app
