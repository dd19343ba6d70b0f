"""Integration tests for chat API endpoints.

Tests POST /api/v1/chat and POST /api/v1/chat/stream with a full app setup,
a scripted completion client and in-memory MCP servers.
"""

import json

import pytest
from httpx import AsyncClient

from relay_server.completion import CompletionMessage
from relay_server.errors import ProviderRequestError
from relay_server.tools import ToolCallRequest


def _text(content: str) -> CompletionMessage:
    return CompletionMessage(content=content)


def _call(call_id: str, name: str, arguments: str) -> CompletionMessage:
    return CompletionMessage(
        tool_calls=[ToolCallRequest(id=call_id, tool_name=name, raw_arguments=arguments)]
    )


def _parse_sse(body: str) -> list[tuple[str, dict]]:
    """Split an SSE body into (event, data) pairs."""
    events = []
    for block in body.replace("\r\n", "\n").split("\n\n"):
        event = None
        data = None
        for line in block.splitlines():
            if line.startswith("event:"):
                event = line[len("event:"):].strip()
            elif line.startswith("data:"):
                data = json.loads(line[len("data:"):].strip())
        if event:
            events.append((event, data))
    return events


class TestChat:
    """Tests for POST /api/v1/chat endpoint."""

    @pytest.mark.asyncio
    async def test_plain_reply(self, async_client: AsyncClient, mock_completion_client):
        """Test a message answered without tools."""
        mock_completion_client.complete.side_effect = [_text("Paris.")]

        response = await async_client.post(
            "/api/v1/chat", json={"message": "Capital of France?"}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["reply"] == "Paris."
        assert data["state"] == "done"
        assert data["rounds"] == 0
        assert data["tool_results"] == []
        assert len(data["session_id"]) == 10

    @pytest.mark.asyncio
    async def test_context_assembly(self, async_client: AsyncClient, mock_completion_client):
        """Test that system prompt, history and message reach the provider in order."""
        mock_completion_client.complete.side_effect = [_text("ok")]

        await async_client.post(
            "/api/v1/chat",
            json={
                "message": "And now?",
                "system_prompt": "Be brief.",
                "history": [
                    {"role": "user", "content": "Hi"},
                    {"role": "assistant", "content": "Hello!"},
                ],
                "tools": ["currentTimeTool"],
            },
        )

        args = mock_completion_client.complete.await_args.args
        messages, tools, tool_choice = args
        assert [m["role"] for m in messages] == ["system", "user", "assistant", "user"]
        assert messages[0]["content"] == "Be brief."
        assert messages[-1]["content"] == "And now?"
        assert [t["function"]["name"] for t in tools] == ["currentTimeTool"]
        assert tool_choice == "auto"

    @pytest.mark.asyncio
    async def test_tool_round(self, async_client: AsyncClient, mock_completion_client, echo_tool):
        """Test a local tool round followed by the final reply."""
        mock_completion_client.complete.side_effect = [
            _call("c1", "echoTool", '{"x":1}'),
            _text("It echoed 1"),
        ]

        response = await async_client.post(
            "/api/v1/chat", json={"message": "Echo 1", "tools": ["echoTool"]}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["reply"] == "It echoed 1"
        assert data["rounds"] == 1
        assert data["last_tool_used"] == "echoTool"
        assert data["tool_results"] == [
            {
                "request_id": "c1",
                "tool_name": "echoTool",
                "output": "1",
                "succeeded": True,
                "error_detail": None,
            }
        ]

    @pytest.mark.asyncio
    async def test_mcp_tool_round(
        self, async_client: AsyncClient, mock_completion_client, tool_manager, fake_mcp, stdio_config
    ):
        """Test that MCP tools are offered and executed."""
        fake_mcp.add(
            "docs",
            tools=[{"name": "search", "inputSchema": {"type": "object", "$schema": "x"}}],
            handlers={"search": {"content": [{"type": "text", "text": "3 hits"}]}},
        )
        await tool_manager.connect("docs", stdio_config)
        mock_completion_client.complete.side_effect = [
            _call("c1", "mcp_search", '{"q":"limiter"}'),
            _text("Found 3"),
        ]

        response = await async_client.post("/api/v1/chat", json={"message": "search", "tools": []})

        assert response.status_code == 200
        assert response.json()["tool_results"][0]["output"] == "3 hits"
        first_tools = mock_completion_client.complete.await_args_list[0].args[1]
        assert first_tools == [
            {
                "type": "function",
                "function": {"name": "mcp_search", "description": "", "parameters": {"type": "object"}},
            }
        ]

    @pytest.mark.asyncio
    async def test_mcp_system_prompt_is_appended(
        self, async_client: AsyncClient, mock_completion_client, tool_manager, fake_mcp, stdio_config
    ):
        """Test that matching server prompts are added to the system message."""
        fake_mcp.add("docs", tools=[{"name": "search"}])
        await tool_manager.connect(
            "docs",
            {
                **stdio_config,
                "systemPrompt": "Use search for docs.",
                "promptConditions": {"messageTypes": ["group"]},
            },
        )
        mock_completion_client.complete.side_effect = [_text("ok"), _text("ok")]

        await async_client.post(
            "/api/v1/chat",
            json={"message": "hi", "system_prompt": "Base.", "context": {"message_type": "group"}},
        )
        grouped = mock_completion_client.complete.await_args_list[0].args[0][0]["content"]
        await async_client.post(
            "/api/v1/chat",
            json={"message": "hi", "system_prompt": "Base.", "context": {"message_type": "private"}},
        )
        private = mock_completion_client.complete.await_args_list[1].args[0][0]["content"]

        assert grouped.startswith("Base.")
        assert "[docs]\nUse search for docs." in grouped
        assert private == "Base."

    @pytest.mark.asyncio
    async def test_tool_overview_in_system_prompt(
        self, async_client: AsyncClient, mock_completion_client, echo_tool
    ):
        """Test that include_tool_overview appends the active tools to the system prompt."""
        mock_completion_client.complete.side_effect = [_text("ok"), _text("ok")]

        await async_client.post(
            "/api/v1/chat",
            json={
                "message": "hi",
                "system_prompt": "Base.",
                "tools": ["echoTool"],
                "include_tool_overview": True,
            },
        )
        await async_client.post(
            "/api/v1/chat",
            json={"message": "hi", "system_prompt": "Base.", "tools": ["echoTool"]},
        )

        with_overview, without_overview = [
            call.args[0][0]["content"]
            for call in mock_completion_client.complete.await_args_list
        ]
        assert with_overview == (
            "Base.\n\n[Available tools]\nLocal tools:\nechoTool: Echo the x argument."
        )
        assert without_overview == "Base."

    @pytest.mark.asyncio
    async def test_forced_tool(self, async_client: AsyncClient, mock_completion_client, echo_tool):
        """Test that forced_tool pins the first request."""
        mock_completion_client.complete.side_effect = [
            _call("c1", "echoTool", '{"x":5}'),
            _text("5"),
        ]

        await async_client.post(
            "/api/v1/chat",
            json={"message": "Echo 5", "tools": ["currentTimeTool", "echoTool"], "forced_tool": "echoTool"},
        )

        first, second = mock_completion_client.complete.await_args_list
        assert first.args[2] == {"type": "function", "function": {"name": "echoTool"}}
        assert [t["function"]["name"] for t in first.args[1]] == ["echoTool"]
        assert second.args[2] == "auto"

    @pytest.mark.asyncio
    async def test_provider_failure_returns_no_answer(
        self, async_client: AsyncClient, mock_completion_client, test_app
    ):
        """Test that an aborted loop maps to 502 no_answer and releases the session."""
        mock_completion_client.complete.side_effect = ProviderRequestError("down")

        response = await async_client.post("/api/v1/chat", json={"message": "hi"})

        assert response.status_code == 502
        error = response.json()["detail"]["error"]
        assert error["code"] == "no_answer"
        assert "down" in error["details"]["reason"]
        # One request plus one retry
        assert mock_completion_client.complete.await_count == 2
        assert test_app.state.session_store.active_count == 0

    @pytest.mark.asyncio
    async def test_invalid_history_role(self, async_client: AsyncClient):
        """Test that unknown history roles are rejected."""
        response = await async_client.post(
            "/api/v1/chat",
            json={"message": "hi", "history": [{"role": "narrator", "content": "..."}]},
        )

        assert response.status_code == 422
        assert response.json()["detail"]["error"]["code"] == "invalid_history"

    @pytest.mark.asyncio
    async def test_empty_message_rejected(self, async_client: AsyncClient):
        """Test request validation."""
        response = await async_client.post("/api/v1/chat", json={"message": ""})

        assert response.status_code == 422


class TestChatStreaming:
    """Tests for POST /api/v1/chat/stream endpoint."""

    @pytest.mark.asyncio
    async def test_stream_events(self, async_client: AsyncClient, mock_completion_client, echo_tool):
        """Test the event sequence of a tool round and reply."""
        mock_completion_client.complete.side_effect = [
            _call("c1", "echoTool", '{"x":2}'),
            _text("2"),
        ]

        response = await async_client.post(
            "/api/v1/chat/stream", json={"message": "Echo 2", "tools": ["echoTool"]}
        )

        assert response.status_code == 200
        assert "text/event-stream" in response.headers["content-type"]
        events = _parse_sse(response.text)
        assert [name for name, _ in events] == ["tool_call", "tool_result", "message", "done"]
        assert events[0][1] == {"id": "c1", "name": "echoTool", "arguments": '{"x":2}'}
        assert events[1][1]["output"] == "2"
        assert events[2][1] == {"content": "2"}
        assert events[3][1]["state"] == "done"
        assert events[3][1]["rounds"] == 1

    @pytest.mark.asyncio
    async def test_stream_abort(self, async_client: AsyncClient, mock_completion_client):
        """Test that an aborted loop streams an error then done."""
        mock_completion_client.complete.side_effect = ProviderRequestError("down")

        response = await async_client.post("/api/v1/chat/stream", json={"message": "hi"})

        events = _parse_sse(response.text)
        assert [name for name, _ in events] == ["error", "done"]
        assert events[0][1]["code"] == "no_answer"
        assert events[1][1]["state"] == "aborted"
