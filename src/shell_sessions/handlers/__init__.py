"""Tool handlers.

Handler interface plus one implementation per MCP tool.
"""

from .background import (
    DismissBackgroundShellHandler,
    ListBackgroundShellsHandler,
    ReadBackgroundShellHandler,
    ReadHistoryHandler,
    WriteBackgroundShellHandler,
)
from .base import ToolContext, ToolHandler, parse_pid
from .shell import RunShellCommandHandler

__all__ = [
    "ToolContext",
    "ToolHandler",
    "parse_pid",
    "RunShellCommandHandler",
    "ListBackgroundShellsHandler",
    "ReadBackgroundShellHandler",
    "WriteBackgroundShellHandler",
    "DismissBackgroundShellHandler",
    "ReadHistoryHandler",
    "HANDLERS",
]

HANDLERS: dict[str, ToolHandler] = {
    handler.name: handler
    for handler in (
        RunShellCommandHandler(),
        ListBackgroundShellsHandler(),
        ReadBackgroundShellHandler(),
        WriteBackgroundShellHandler(),
        DismissBackgroundShellHandler(),
        ReadHistoryHandler(),
    )
}
