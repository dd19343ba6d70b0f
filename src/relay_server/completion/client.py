"""Async clients for chat-completion providers.

Two providers are supported: any OpenAI-compatible ``/v1/chat/completions``
endpoint (via httpx) and a local Ollama server (via the ollama library).
Both normalize responses to CompletionMessage and raise
ProviderRequestError on any failure so the invocation loop can retry.
"""

import json
import logging
import uuid
from abc import ABC, abstractmethod
from typing import Any

import httpx
import ollama

from relay_server.completion.types import CompletionMessage, ToolChoice
from relay_server.errors import ProviderRequestError

logger = logging.getLogger(__name__)


class CompletionClient(ABC):
    """Base class for completion providers.

    Attributes:
        model: Model name sent with every request
        temperature: Sampling temperature
        top_p: Nucleus sampling parameter
    """

    def __init__(self, model: str, temperature: float = 0.7, top_p: float = 0.9) -> None:
        self.model = model
        self.temperature = temperature
        self.top_p = top_p

    def build_request_data(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        tool_choice: ToolChoice = "auto",
    ) -> dict[str, Any]:
        """Build the request body.

        ``tools`` and ``tool_choice`` are only included when tools are given
        and tool_choice is not "none".
        """
        data: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
            "top_p": self.top_p,
        }
        if tools and tool_choice != "none":
            data["tools"] = tools
            data["tool_choice"] = tool_choice
        return data

    @abstractmethod
    async def complete(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        tool_choice: ToolChoice = "auto",
    ) -> CompletionMessage | None:
        """Request one completion.

        Returns:
            The first choice's message, or None if the response had no choices

        Raises:
            ProviderRequestError: On transport, HTTP or provider-reported errors
        """

    async def check_connection(self) -> bool:
        return True

    async def close(self) -> None:
        pass


class OpenAICompletionClient(CompletionClient):
    """Client for OpenAI-compatible chat-completions endpoints."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        model: str,
        temperature: float = 0.7,
        top_p: float = 0.9,
        timeout: float = 120.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(model=model, temperature=temperature, top_p=top_p)
        self.url = completions_url(base_url)
        self.api_key = api_key
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        logger.info(f"OpenAICompletionClient initialized with url: {self.url}")

    async def complete(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        tool_choice: ToolChoice = "auto",
    ) -> CompletionMessage | None:
        if not self.api_key:
            raise ProviderRequestError("Completion API key is not configured")

        data = self.build_request_data(messages, tools, tool_choice)
        data["stream"] = False
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        logger.debug(
            f"Completion request: {len(messages)} messages, "
            f"{len(data.get('tools', []))} tools, tool_choice={data.get('tool_choice')}"
        )
        try:
            response = await self._client.post(self.url, json=data, headers=headers)
        except httpx.HTTPError as e:
            raise ProviderRequestError(f"Completion request failed: {e}") from e

        if response.status_code >= 400:
            raise ProviderRequestError(
                f"Completion request failed: {response.status_code} "
                f"{response.reason_phrase} - {response.text}"
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise ProviderRequestError(f"Failed to parse completion response JSON: {e}") from e

        return parse_completion_payload(payload)

    async def check_connection(self) -> bool:
        return bool(self.api_key)

    async def close(self) -> None:
        await self._client.aclose()
        logger.debug("OpenAICompletionClient closed")


class OllamaCompletionClient(CompletionClient):
    """Client for a local Ollama server.

    Ollama does not support ``tool_choice``; a forced tool is expressed by
    the invocation loop narrowing the tool list to that one tool. Ollama tool
    calls carry no ids and dict arguments, so ids are synthesized and
    arguments are re-encoded as JSON strings.
    """

    def __init__(
        self,
        host: str,
        model: str,
        temperature: float = 0.7,
        top_p: float = 0.9,
    ) -> None:
        super().__init__(model=model, temperature=temperature, top_p=top_p)
        self.host = host
        self._client = ollama.AsyncClient(host=host)
        logger.info(f"OllamaCompletionClient initialized with host: {host}")

    async def check_connection(self) -> bool:
        """Check if the Ollama server is reachable."""
        try:
            await self._client.list()
            logger.debug("Ollama connection check: successful")
            return True
        except Exception as e:
            logger.warning(f"Ollama connection check failed: {e}")
            return False

    async def complete(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        tool_choice: ToolChoice = "auto",
    ) -> CompletionMessage | None:
        use_tools = bool(tools) and tool_choice != "none"
        try:
            response = await self._client.chat(
                model=self.model,
                messages=_to_ollama_messages(messages),
                tools=tools if use_tools else None,
                options={"temperature": self.temperature, "top_p": self.top_p},
                stream=False,
            )
        except Exception as e:
            raise ProviderRequestError(f"Ollama chat request failed: {e}") from e

        if hasattr(response, "model_dump"):
            response = response.model_dump()
        message = (response or {}).get("message")
        if not message:
            return None

        tool_calls = []
        for call in message.get("tool_calls") or []:
            function = call.get("function") or {}
            arguments = function.get("arguments")
            tool_calls.append(
                {
                    "id": call.get("id") or f"call_{uuid.uuid4().hex[:12]}",
                    "type": "function",
                    "function": {
                        "name": function.get("name", ""),
                        "arguments": arguments
                        if isinstance(arguments, str)
                        else json.dumps(arguments or {}, ensure_ascii=False),
                    },
                }
            )

        return CompletionMessage.from_provider(
            {"role": "assistant", "content": message.get("content") or None, "tool_calls": tool_calls}
        )

    async def close(self) -> None:
        # ollama.AsyncClient uses httpx internally which handles cleanup
        logger.debug("OllamaCompletionClient closed")


def completions_url(base_url: str) -> str:
    """Append ``/v1/chat/completions`` unless the URL already points at it."""
    if base_url.endswith("completions"):
        return base_url
    return f"{base_url.rstrip('/')}/v1/chat/completions"


def parse_completion_payload(payload: Any) -> CompletionMessage | None:
    """Normalize a chat-completions response body.

    List bodies are unwrapped to their first element; ``detail`` and
    non-empty ``error`` fields are provider errors.

    Raises:
        ProviderRequestError: If the payload reports an error or is malformed
    """
    if isinstance(payload, list) and payload:
        return parse_completion_payload(payload[0])

    if not isinstance(payload, dict):
        raise ProviderRequestError(f"Invalid response format: {json.dumps(payload, default=str)}")

    if payload.get("detail"):
        raise ProviderRequestError(str(payload["detail"]))

    error = payload.get("error")
    if error:
        message = error.get("message") if isinstance(error, dict) else None
        raise ProviderRequestError(message or json.dumps(error, default=str))

    choices = payload.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return None

    message = choices[0].get("message")
    if not isinstance(message, dict):
        return None
    return CompletionMessage.from_provider(message)


def _to_ollama_messages(messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
    converted = []
    for msg in messages:
        entry = {"role": msg["role"], "content": msg.get("content") or ""}
        if msg.get("tool_calls"):
            entry["tool_calls"] = [
                {
                    "function": {
                        "name": call["function"]["name"],
                        "arguments": _loads_or_empty(call["function"].get("arguments")),
                    }
                }
                for call in msg["tool_calls"]
            ]
        if msg["role"] == "tool" and msg.get("name"):
            entry["tool_name"] = msg["name"]
        converted.append(entry)
    return converted


def _loads_or_empty(arguments: Any) -> dict[str, Any]:
    if isinstance(arguments, dict):
        return arguments
    try:
        value = json.loads(arguments or "{}")
    except (TypeError, ValueError):
        return {}
    return value if isinstance(value, dict) else {}
