"""In-process tools and the registry that selects them by allow-list."""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any

from relay_server.tools.types import CapabilityDescriptor, ToolOrigin

logger = logging.getLogger(__name__)


class LocalTool(ABC):
    """Base class for tools executed inside the server process.

    Subclasses set ``name``, ``description`` and ``parameters`` (a JSON-Schema
    object) and implement ``execute``. The return value may be a string or any
    JSON-serializable value; the invocation loop converts it to text.
    """

    name: str = ""
    description: str = ""
    parameters: dict[str, Any] = {"type": "object", "properties": {}}

    @abstractmethod
    async def execute(self, arguments: dict[str, Any]) -> Any:
        """Run the tool with already-parsed arguments."""

    def descriptor(self) -> CapabilityDescriptor:
        return CapabilityDescriptor(
            name=self.name,
            description=self.description,
            parameter_schema={
                "type": "object",
                "properties": self.parameters.get("properties", {}),
                "required": self.parameters.get("required", []),
            },
            origin=ToolOrigin.LOCAL,
        )


class CurrentTimeTool(LocalTool):
    """Report the current date and time."""

    name = "currentTimeTool"
    description = "Get the current date and time (UTC, ISO 8601)."
    parameters = {"type": "object", "properties": {}, "required": []}

    async def execute(self, arguments: dict[str, Any]) -> Any:
        return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class LocalToolRegistry:
    """Holds the local tool instances known to this process."""

    def __init__(self, tools: list[LocalTool] | None = None) -> None:
        self._tools: dict[str, LocalTool] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: LocalTool) -> None:
        if not tool.name:
            raise ValueError("Local tool must define a name")
        if tool.name in self._tools:
            logger.warning(f"Replacing local tool {tool.name}")
        self._tools[tool.name] = tool

    def get(self, name: str) -> LocalTool | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def select(self, allowed: list[str] | None) -> list[LocalTool]:
        """Return the tools named in ``allowed``, in allow-list order.

        Unknown names are skipped with a warning.
        """
        selected: list[LocalTool] = []
        for name in allowed or []:
            tool = self._tools.get(name)
            if tool is None:
                logger.warning(f'Tool "{name}" not found.')
                continue
            selected.append(tool)
        return selected
