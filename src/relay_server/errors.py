"""Error taxonomy for relay-server.

Errors local to one tool call or one MCP server are converted into failed
results by the layer that owns them. Only an exhausted ProviderRequestError
ends an invocation loop.
"""


class RelayError(Exception):
    """Base class for all relay-server errors."""


class ConfigError(RelayError):
    """A server configuration is missing a field its transport requires."""


class ServerConnectionError(RelayError):
    """Spawning, handshaking with, or talking to an MCP server failed."""


class UnknownToolError(RelayError):
    """The requested tool name is not present in the tool index."""

    def __init__(self, tool_name: str) -> None:
        super().__init__(f"Unknown tool: {tool_name}")
        self.tool_name = tool_name


class ServerDisconnectedError(RelayError):
    """The tool is indexed but its owning server is not connected."""

    def __init__(self, tool_name: str, server_name: str) -> None:
        super().__init__(
            f"MCP server '{server_name}' for tool '{tool_name}' is not connected"
        )
        self.tool_name = tool_name
        self.server_name = server_name


class ArgumentParseError(RelayError):
    """Tool call arguments are not a JSON object."""


class ProviderRequestError(RelayError):
    """The completion provider request failed or returned an error payload."""


class ToolExecutionError(RelayError):
    """A tool raised while executing."""
