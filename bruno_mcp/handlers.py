"""
Bruno MCP Handlers - Request processing logic

Each tool call:
1. Resolves the tool name against the registry
2. Validates the arguments ({"vars": {...}} only)
3. Delegates to the runner and returns its text

Failures raise AppError. The MCP server turns them into error results,
so one bad call never takes the server down.
"""

import logging
from typing import Any, Optional

from mcp.types import TextContent, Tool

from .config import DEFAULT_BODY_LIMIT_BYTES, DEFAULT_TIMEOUT_SECONDS
from .errors import AppError
from .naming import ToolRegistry
from .runner import BrunoRunner, RunOptions
from .schema import TOOL_INPUT_SCHEMA, validate_vars


logger = logging.getLogger(__name__)


class Handlers:
    """
    Central handler class for all request tools.

    Holds the read-only registry and the runner; keeps no per-call state.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        runner: BrunoRunner,
        env_name: Optional[str] = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        body_limit_bytes: int = DEFAULT_BODY_LIMIT_BYTES,
    ):
        self.registry = registry
        self.runner = runner
        self.env_name = env_name
        self.timeout_seconds = timeout_seconds
        self.body_limit_bytes = body_limit_bytes

    # -------------------------------------------------------------------------
    # List
    # -------------------------------------------------------------------------

    def list_tools(self) -> list[Tool]:
        return [
            Tool(
                name=target.tool_name,
                description=target.description,
                inputSchema=TOOL_INPUT_SCHEMA,
            )
            for target in self.registry.values()
        ]

    # -------------------------------------------------------------------------
    # Call
    # -------------------------------------------------------------------------

    async def call_tool(self, name: str, arguments: Any) -> list[TextContent]:
        """Run the request behind a tool and return its formatted output."""
        try:
            target = self.registry.resolve(name)
            variables = validate_vars(arguments)
            options = RunOptions(
                timeout_seconds=self.timeout_seconds,
                body_limit_bytes=self.body_limit_bytes,
                env_name=self.env_name,
                variables=variables,
            )
            text = await self.runner.run(target, options)
        except AppError as e:
            logger.info("Tool %s failed: %s", name, e)
            raise
        except Exception as e:
            logger.exception("Unexpected failure in tool %s", name)
            raise AppError("E_UNKNOWN", str(e)) from e

        return [TextContent(type="text", text=text)]
