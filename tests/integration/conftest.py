"""Pytest configuration for integration tests.

This module provides integration-test-specific fixtures that ensure
proper test isolation and mocking for API endpoint tests.
"""

from typing import Any
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio

from relay_server.tools import LocalTool


class EchoTool(LocalTool):
    name = "echoTool"
    description = "Echo the x argument."
    parameters = {"type": "object", "properties": {"x": {"type": "integer"}}, "required": ["x"]}

    async def execute(self, arguments: dict[str, Any]) -> Any:
        return str(arguments["x"])


@pytest.fixture(autouse=True)
def mock_completion_client():
    """Mock the completion client for all integration tests.

    This fixture patches the OpenAICompletionClient class before the app is
    created, ensuring the lifespan uses our mock instead of a real client.
    Tests script replies through ``complete.side_effect``.
    """
    with patch("relay_server.app.OpenAICompletionClient") as mock_client_class:
        mock_instance = AsyncMock()
        mock_instance.check_connection.return_value = True

        # Return the mock instance when OpenAICompletionClient is instantiated
        mock_client_class.return_value = mock_instance

        yield mock_instance


@pytest_asyncio.fixture
async def echo_tool(async_client, test_app) -> EchoTool:
    """Register an echo tool in the running app's local registry."""
    tool = EchoTool()
    test_app.state.local_registry.register(tool)
    return tool
