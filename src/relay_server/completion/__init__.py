"""Chat-completion provider clients.

This package provides async clients for OpenAI-compatible endpoints and
Ollama. Both return CompletionMessage and raise ProviderRequestError.
"""

from relay_server.completion.client import (
    CompletionClient,
    OllamaCompletionClient,
    OpenAICompletionClient,
)
from relay_server.completion.types import CompletionMessage, ToolChoice, forced_tool_choice

__all__ = [
    "CompletionClient",
    "CompletionMessage",
    "OllamaCompletionClient",
    "OpenAICompletionClient",
    "ToolChoice",
    "forced_tool_choice",
]
