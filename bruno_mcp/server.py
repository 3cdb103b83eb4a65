"""
Bruno MCP Server

The main entry point that exposes a Bruno collection to MCP clients
over stdio, one tool per request file.

This file is intentionally kept as a thin routing layer.
All per-call logic is in handlers.py.

Usage:
  bruno-mcp --collection ./my-collection [--env dev] [--prefix billing]
  bruno-mcp --bru ./my-collection/auth/login.bru [--name login]
"""

import asyncio
import logging
import sys
from collections.abc import Sequence
from typing import Optional

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from .config import ServerConfig, parse_args
from .discovery import discover_bru_files
from .errors import AppError, ensure
from .handlers import Handlers
from .naming import (
    ToolRegistry,
    build_collection_tool_map,
    build_single_tool_map,
    derive_prefix,
)
from .runner import BrunoRunner


logger = logging.getLogger(__name__)


def create_server(handlers: Handlers) -> Server:
    """Create the MCP server and route tool requests to handlers."""
    server = Server("bruno-mcp")

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        """List one tool per request file."""
        return handlers.list_tools()

    @server.call_tool(validate_input=False)
    async def call_tool(name: str, arguments: dict) -> list[TextContent]:
        """Errors raised here come back to the client as isError results."""
        return await handlers.call_tool(name, arguments)

    return server


async def build_registry(config: ServerConfig) -> ToolRegistry:
    """Discover and name every tool. Any error here aborts startup."""
    prefix = derive_prefix(config.prefix, config.collection_root)

    if config.mode == "single":
        ensure(config.bru_file, "E_ARGS", "Single mode requires a resolved --bru path.")
        return await build_single_tool_map(
            bru_file=config.bru_file,
            collection_root=config.collection_root,
            prefix=prefix,
            name_override=config.name,
        )

    bru_files = discover_bru_files(config.collection_root)
    ensure(bru_files, "E_DISCOVERY", "No .bru files were found in the collection path.")
    return await build_collection_tool_map(
        bru_files=bru_files,
        collection_root=config.collection_root,
        prefix=prefix,
    )


async def serve(config: ServerConfig) -> None:
    registry = await build_registry(config)
    logger.info("Serving %d tools from %s", len(registry), config.collection_root)

    handlers = Handlers(
        registry=registry,
        runner=BrunoRunner(bru_bin=config.bru_bin),
        env_name=config.env_name,
        timeout_seconds=config.timeout_seconds,
        body_limit_bytes=config.body_limit_bytes,
    )
    server = create_server(handlers)

    async with stdio_server() as (read_stream, write_stream):
        await server.run(read_stream, write_stream, server.create_initialization_options())


def configure_logging(level_name: str) -> None:
    """Log to stderr; stdout belongs to the MCP transport."""
    level = getattr(logging, level_name.upper(), None)
    logging.basicConfig(
        level=level if isinstance(level, int) else logging.WARNING,
        format="[%(name)s] %(levelname)s: %(message)s",
        stream=sys.stderr,
    )


def main(argv: Optional[Sequence[str]] = None):
    """Main entry point."""
    argv = sys.argv[1:] if argv is None else argv

    try:
        config = parse_args(argv)
        configure_logging(config.log_level)
        asyncio.run(serve(config))
    except AppError as e:
        print(str(e), file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"[E_UNKNOWN] {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
