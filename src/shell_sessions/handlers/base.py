"""Tool handler base classes.

Defines the handler interface and the context handlers run with.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from mcp.types import TextContent

from ..tool_schema import TOOL_DESCRIPTIONS, create_tool_schema

if TYPE_CHECKING:
    from ..config import Config
    from ..orchestrator import CommandRegistry
    from ..shell.processor import ShellCommandProcessor

__all__ = [
    "ToolContext",
    "ToolHandler",
    "parse_pid",
]


@dataclass
class ToolContext:
    """Dependencies shared by every tool call."""

    config: "Config"
    processor: "ShellCommandProcessor"
    registry: "CommandRegistry | None" = None


def parse_pid(arguments: dict[str, Any]) -> int | None:
    """``pid`` argument as an int, or None if missing or malformed."""
    pid = arguments.get("pid")
    if isinstance(pid, bool):
        return None
    if isinstance(pid, int):
        return pid
    if isinstance(pid, str) and pid.strip().isdigit():
        return int(pid.strip())
    return None


class ToolHandler(ABC):
    """Interface every tool handler implements."""

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @property
    def description(self) -> str:
        return TOOL_DESCRIPTIONS[self.name]

    def get_input_schema(self) -> dict[str, Any]:
        return create_tool_schema(self.name)

    @abstractmethod
    async def handle(
        self,
        arguments: dict[str, Any],
        ctx: ToolContext,
    ) -> list[TextContent]:
        """Handle one tool call.

        Args:
            arguments: Tool arguments
            ctx: Execution context

        Returns:
            TextContent list
        """
        ...

    def validate(self, arguments: dict[str, Any]) -> str | None:
        """Check the arguments.

        Returns:
            Error message, or None if the arguments are valid
        """
        return None
