"""Unit tests for the health check endpoint."""

from unittest.mock import AsyncMock

import pytest


@pytest.mark.asyncio
async def test_health_check_returns_ok(async_client):
    """Test that health check returns status ok."""
    response = await async_client.get("/api/v1/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["version"] == "0.1.0"


@pytest.mark.asyncio
async def test_health_check_response_structure(async_client):
    """Test that health check response has correct structure."""
    response = await async_client.get("/api/v1/health")

    assert response.status_code == 200
    data = response.json()

    # Required fields
    assert "status" in data
    assert "version" in data
    assert "provider" in data
    assert "provider_connected" in data
    assert "mcp_servers_connected" in data
    assert "mcp_tools" in data


@pytest.mark.asyncio
async def test_health_check_reports_provider(async_client):
    """Test that the configured provider is reported as reachable."""
    response = await async_client.get("/api/v1/health")

    data = response.json()
    assert data["provider"] == "openai"
    assert data["provider_connected"] is True


@pytest.mark.asyncio
async def test_health_check_with_provider_disconnected(async_client, test_app):
    """Test health check when the provider is not reachable."""
    mock_client = AsyncMock()
    mock_client.check_connection.return_value = False
    test_app.state.completion_client = mock_client

    response = await async_client.get("/api/v1/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"  # Server is still healthy
    assert data["provider_connected"] is False


@pytest.mark.asyncio
async def test_health_check_provider_check_exception(async_client, test_app):
    """Test health check when the provider check raises."""
    mock_client = AsyncMock()
    mock_client.check_connection.side_effect = Exception("Connection error")
    test_app.state.completion_client = mock_client

    response = await async_client.get("/api/v1/health")

    assert response.status_code == 200
    assert response.json()["provider_connected"] is False


@pytest.mark.asyncio
async def test_health_check_counts_mcp_servers(
    async_client, tool_manager, fake_mcp, stdio_config
):
    """Test that connected MCP servers and tools are counted."""
    fake_mcp.add("docs", tools=[{"name": "search"}, {"name": "fetch"}])
    await tool_manager.connect("docs", stdio_config)

    response = await async_client.get("/api/v1/health")

    data = response.json()
    assert data["mcp_servers_connected"] == 1
    assert data["mcp_tools"] == 2
