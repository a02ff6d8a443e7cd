"""Background shell and history tool handlers."""

from __future__ import annotations

import logging
from typing import Any

from mcp.types import TextContent

from ..response_formatter import (
    format_error_response,
    format_history,
    format_message,
    format_shell,
    format_shell_list,
    to_text_content,
)
from ..shell.history import InMemoryHistory
from ..tool_schema import (
    DISMISS_BACKGROUND_SHELL,
    LIST_BACKGROUND_SHELLS,
    READ_BACKGROUND_SHELL,
    READ_HISTORY,
    WRITE_BACKGROUND_SHELL,
)
from .base import ToolContext, ToolHandler, parse_pid

__all__ = [
    "ListBackgroundShellsHandler",
    "ReadBackgroundShellHandler",
    "WriteBackgroundShellHandler",
    "DismissBackgroundShellHandler",
    "ReadHistoryHandler",
]

logger = logging.getLogger(__name__)


def _unknown_pid(pid: int) -> list[TextContent]:
    return format_error_response(f"No background shell with PID {pid}")


class _PidHandler(ToolHandler):
    """Handler whose only required argument is ``pid``."""

    def validate(self, arguments: dict[str, Any]) -> str | None:
        if parse_pid(arguments) is None:
            return "Missing or invalid argument: 'pid'"
        return None


class ListBackgroundShellsHandler(ToolHandler):
    @property
    def name(self) -> str:
        return LIST_BACKGROUND_SHELLS

    async def handle(self, arguments: dict[str, Any], ctx: ToolContext) -> list[TextContent]:
        registry = ctx.processor.registry
        return to_text_content(format_shell_list(registry.shells(), registry.running_count))


class ReadBackgroundShellHandler(_PidHandler):
    @property
    def name(self) -> str:
        return READ_BACKGROUND_SHELL

    async def handle(self, arguments: dict[str, Any], ctx: ToolContext) -> list[TextContent]:
        error = self.validate(arguments)
        if error:
            return format_error_response(error)

        pid = parse_pid(arguments)
        shell = ctx.processor.registry.get(pid)
        if shell is None:
            return _unknown_pid(pid)
        return to_text_content(f"<response>\n{format_shell(shell)}\n</response>")


class WriteBackgroundShellHandler(_PidHandler):
    @property
    def name(self) -> str:
        return WRITE_BACKGROUND_SHELL

    def validate(self, arguments: dict[str, Any]) -> str | None:
        error = super().validate(arguments)
        if error:
            return error
        if not isinstance(arguments.get("input"), str):
            return "Missing required argument: 'input'"
        return None

    async def handle(self, arguments: dict[str, Any], ctx: ToolContext) -> list[TextContent]:
        error = self.validate(arguments)
        if error:
            return format_error_response(error)

        pid = parse_pid(arguments)
        registry = ctx.processor.registry
        if pid not in registry:
            return _unknown_pid(pid)
        if not registry.write_input(pid, arguments["input"]):
            return format_error_response(f"Background shell {pid} has already exited")
        return to_text_content(format_message(f"Wrote {len(arguments['input'])} character(s) to PID {pid}"))


class DismissBackgroundShellHandler(_PidHandler):
    @property
    def name(self) -> str:
        return DISMISS_BACKGROUND_SHELL

    async def handle(self, arguments: dict[str, Any], ctx: ToolContext) -> list[TextContent]:
        error = self.validate(arguments)
        if error:
            return format_error_response(error)

        pid = parse_pid(arguments)
        shell = ctx.processor.registry.get(pid)
        if shell is None:
            return _unknown_pid(pid)

        was_running = shell.is_running
        ctx.processor.dismiss_background_shell(pid)
        action = "Killed and dismissed" if was_running else "Dismissed"
        return to_text_content(format_message(f"{action} background shell {pid}"))


class ReadHistoryHandler(ToolHandler):
    @property
    def name(self) -> str:
        return READ_HISTORY

    def validate(self, arguments: dict[str, Any]) -> str | None:
        limit = arguments.get("limit")
        if limit is not None and (isinstance(limit, bool) or not isinstance(limit, int) or limit < 1):
            return "'limit' must be a positive integer"
        return None

    async def handle(self, arguments: dict[str, Any], ctx: ToolContext) -> list[TextContent]:
        error = self.validate(arguments)
        if error:
            return format_error_response(error)

        history = ctx.processor.history
        if not isinstance(history, InMemoryHistory):
            return format_error_response("History is not readable on this server")
        return to_text_content(format_history(history.recent(arguments.get("limit"))))
