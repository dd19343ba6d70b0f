"""Configuration module for relay-server using pydantic-settings."""

import json
import logging
from pathlib import Path
from typing import Literal

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from relay_server.errors import ConfigError
from relay_server.mcp.connection import ServerConfig

logger = logging.getLogger(__name__)


class RelaySettings(BaseSettings):
    """Main configuration settings for relay-server.

    All settings can be overridden via environment variables with the RELAY_ prefix.
    For example, RELAY_COMPLETION_URL will override the completion_url setting.
    """

    # Server
    host: str = "127.0.0.1"
    port: int = 8000

    # Completion provider
    provider: Literal["openai", "ollama"] = "openai"
    completion_url: str = "https://api.openai.com"
    api_key: str = ""
    model: str = "gpt-4o-mini"
    ollama_host: str = "http://localhost:11434"
    temperature: float = 0.7
    top_p: float = 0.9
    request_timeout: float = 120.0
    request_retries: int = 1

    # Invocation loop
    max_tool_rounds: int = 5
    concurrent_limit: int = 5

    # Tools
    local_tools: list[str] = Field(default_factory=lambda: ["currentTimeTool"])
    mcp_servers_file: str | None = None
    mcp_connect_timeout: float = 30.0
    mcp_call_timeout: float | None = None

    # CORS
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])

    # Logging
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_prefix="RELAY_")

    def load_mcp_servers(self) -> dict[str, ServerConfig]:
        """Load the MCP server table from ``mcp_servers_file``.

        The file holds a JSON object mapping server names to server configs,
        optionally nested under an ``mcpServers`` key. Entries that fail
        validation are skipped with an error log.

        Returns:
            Mapping of server name to ServerConfig (empty when no file is set)

        Raises:
            ConfigError: If the file cannot be read or is not a JSON object
        """
        if not self.mcp_servers_file:
            return {}

        path = Path(self.mcp_servers_file)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError as e:
            raise ConfigError(f"MCP servers file not found: {path}") from e
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Failed to read MCP servers file {path}: {e}") from e

        if isinstance(data, dict) and isinstance(data.get("mcpServers"), dict):
            data = data["mcpServers"]
        if not isinstance(data, dict):
            raise ConfigError(f"MCP servers file {path} must contain a JSON object")

        servers: dict[str, ServerConfig] = {}
        for name, raw in data.items():
            try:
                servers[name] = ServerConfig.model_validate(raw or {})
            except ValidationError as e:
                logger.error(f"Invalid config for MCP server {name}: {e}")
        logger.info(f"Loaded {len(servers)} MCP server configs from {path}")
        return servers
