"""relay-server: Headless FastAPI server orchestrating LLM tool calls.

This package runs inbound chat messages through a multi-round invocation
loop over local tools and tools hosted on MCP servers.
"""

__version__ = "0.1.0"

from relay_server.app import create_app  # noqa: E402

__all__ = ["create_app", "__version__"]
