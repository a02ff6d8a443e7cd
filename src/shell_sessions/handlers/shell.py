"""run_shell_command tool handler."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import anyio
from mcp.types import TextContent

from ..response_formatter import format_command_result, format_error_response, to_text_content
from ..runtime.cancellation import CancellationToken
from ..tool_schema import RUN_SHELL_COMMAND
from .base import ToolContext, ToolHandler

__all__ = ["RunShellCommandHandler"]

logger = logging.getLogger(__name__)


class RunShellCommandHandler(ToolHandler):
    """Runs one foreground command, optionally backgrounding it on a timer.

    The command is registered in the CommandRegistry for its whole run so
    SIGINT can cancel it. When the MCP request itself is cancelled the
    command's token is cancelled before the cancellation propagates.
    """

    @property
    def name(self) -> str:
        return RUN_SHELL_COMMAND

    def validate(self, arguments: dict[str, Any]) -> str | None:
        command = arguments.get("command")
        if not isinstance(command, str) or not command.strip():
            return "Missing required argument: 'command'"

        background_after = arguments.get("background_after_sec")
        if background_after is not None:
            if isinstance(background_after, bool) or not isinstance(background_after, (int, float)):
                return "'background_after_sec' must be a number"
            if background_after < 0:
                return "'background_after_sec' must not be negative"
        return None

    async def handle(
        self,
        arguments: dict[str, Any],
        ctx: ToolContext,
    ) -> list[TextContent]:
        error = self.validate(arguments)
        if error:
            return format_error_response(error)

        command: str = arguments["command"]
        background_after = arguments.get("background_after_sec")
        processor = ctx.processor

        token = CancellationToken()
        session = processor.create_session(command, token)
        call_id = session.call_id

        current_task = asyncio.current_task()
        if ctx.registry is not None and current_task is not None:
            ctx.registry.register(call_id, command, current_task, token)

        timer: asyncio.TimerHandle | None = None
        if background_after is not None:
            timer = asyncio.get_running_loop().call_later(
                float(background_after), session.background
            )
            logger.debug(f"Background timer armed call_id={call_id} after={background_after}s")

        try:
            result = await processor.run_session(session)

        except (anyio.get_cancelled_exc_class(), asyncio.CancelledError):
            logger.info(f"Tool '{self.name}' cancelled call_id={call_id}")
            token.cancel("request cancelled")
            raise

        finally:
            if timer is not None:
                timer.cancel()
            if ctx.registry is not None:
                ctx.registry.unregister(call_id)

        return to_text_content(format_command_result(result, call_id))
