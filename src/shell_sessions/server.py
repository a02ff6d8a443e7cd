"""shell-sessions MCP server.

Exposes shell execution and background shell management as MCP tools:
- run_shell_command: run a command (optionally moving it to the background)
- list_background_shells / read_background_shell
- write_background_shell / dismiss_background_shell
- read_history
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from mcp.server import Server
from mcp.types import TextContent, Tool

from .config import Config, get_config
from .handlers import HANDLERS, ToolContext
from .orchestrator import CommandRegistry
from .response_formatter import format_error_response
from .shell.processor import ShellCommandProcessor
from .tool_schema import SUPPORTED_TOOLS

__all__ = ["create_server", "handle_tool_call", "list_tool_definitions"]

logger = logging.getLogger(__name__)

SERVER_NAME = "shell-sessions"


def list_tool_definitions() -> list[Tool]:
    return [
        Tool(
            name=name,
            description=HANDLERS[name].description,
            inputSchema=HANDLERS[name].get_input_schema(),
        )
        for name in SUPPORTED_TOOLS
    ]


async def handle_tool_call(
    name: str,
    arguments: dict[str, Any] | None,
    ctx: ToolContext,
) -> list[TextContent]:
    """Dispatch one tool call.

    Unexpected exceptions become ``<response><error>`` payloads;
    cancellation always propagates.
    """
    arguments = arguments or {}
    logger.debug(
        f"[MCP] call_tool request: tool={name} arguments="
        f"{json.dumps(arguments, ensure_ascii=False, default=str)[:500]}"
    )

    handler = HANDLERS.get(name)
    if handler is None:
        return format_error_response(f"Unknown tool '{name}'")

    try:
        return await handler.handle(arguments, ctx)

    except asyncio.CancelledError:
        logger.info(f"Tool '{name}' cancelled")
        raise

    except Exception as e:
        logger.error(f"Tool '{name}' failed: {type(e).__name__}: {e}", exc_info=True)
        return format_error_response(str(e))


def create_server(
    processor: ShellCommandProcessor,
    registry: CommandRegistry | None = None,
    config: Config | None = None,
) -> Server:
    """Create the MCP server.

    Args:
        processor: Shell command processor shared by every tool call
        registry: Running foreground commands (for SIGINT cancellation)
        config: Configuration (default: global config)

    Returns:
        Configured mcp Server
    """
    ctx = ToolContext(config=config or get_config(), processor=processor, registry=registry)
    server = Server(SERVER_NAME)

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        tools = list_tool_definitions()
        logger.debug(f"[MCP] list_tools called, returning {len(tools)} tools")
        return tools

    @server.call_tool()
    async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
        return await handle_tool_call(name, arguments, ctx)

    return server
