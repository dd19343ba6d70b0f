"""CLI entry point for relay-server.

This module provides the command-line interface for starting the relay-server.
It can be invoked as `relay-server` (via the script entry point) or
`python -m relay_server`.
"""

import argparse
import logging
import sys

import uvicorn

from relay_server import __version__, create_app
from relay_server.config import RelaySettings


def main() -> None:
    """Main entry point for the relay-server CLI.

    Parses command-line arguments and starts the uvicorn server with the
    FastAPI application.
    """
    parser = argparse.ArgumentParser(
        prog="relay-server",
        description="Headless FastAPI server orchestrating LLM tool calls over local and MCP tools",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"relay-server {__version__}",
    )

    parser.add_argument(
        "--host",
        type=str,
        default=None,
        help="Host to bind the server to (default: 127.0.0.1, can be set via RELAY_HOST)",
    )

    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port to bind the server to (default: 8000, can be set via RELAY_PORT)",
    )

    parser.add_argument(
        "--provider",
        type=str,
        default=None,
        choices=["openai", "ollama"],
        help="Completion provider (default: openai, can be set via RELAY_PROVIDER)",
    )

    parser.add_argument(
        "--model",
        type=str,
        default=None,
        help="Model name sent to the provider (can be set via RELAY_MODEL)",
    )

    parser.add_argument(
        "--mcp-servers",
        type=str,
        default=None,
        help="JSON file with MCP server configs (can be set via RELAY_MCP_SERVERS_FILE)",
    )

    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: INFO, can be set via RELAY_LOG_LEVEL)",
    )

    args = parser.parse_args()

    # Build settings, CLI args override environment variables
    settings_kwargs = {}
    if args.host is not None:
        settings_kwargs["host"] = args.host
    if args.port is not None:
        settings_kwargs["port"] = args.port
    if args.provider is not None:
        settings_kwargs["provider"] = args.provider
    if args.model is not None:
        settings_kwargs["model"] = args.model
    if args.mcp_servers is not None:
        settings_kwargs["mcp_servers_file"] = args.mcp_servers
    if args.log_level is not None:
        settings_kwargs["log_level"] = args.log_level

    settings = RelaySettings(**settings_kwargs)

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    # Create the FastAPI app
    app = create_app(settings=settings)

    # Start uvicorn
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    sys.exit(main())
