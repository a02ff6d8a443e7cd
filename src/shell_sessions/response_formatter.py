"""MCP response formatting.

Tool results are XML-wrapped text, which LLM clients read reliably:

    <response>
      <status>Success</status>
      <pid>1234</pid>
      <output>
    ...
      </output>
    </response>

Errors always use ``<response><error>...</error></response>``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterable

from .shell.aggregator import BINARY_DETECTED_MESSAGE, binary_progress_message
from .shell.types import BackgroundShell, ForegroundResult, HistoryEntry

if TYPE_CHECKING:
    from mcp.types import TextContent

__all__ = [
    "format_command_result",
    "format_shell",
    "format_shell_list",
    "format_history",
    "format_message",
    "format_error",
    "to_text_content",
    "format_error_response",
]


def format_command_result(result: ForegroundResult, call_id: str) -> str:
    parts = ["<response>", f"  <call_id>{call_id}</call_id>"]
    parts.append(f"  <status>{result.status.value}</status>")
    if result.pid is not None:
        parts.append(f"  <pid>{result.pid}</pid>")
    if result.exit_code is not None and not result.aborted and not result.backgrounded:
        parts.append(f"  <exit_code>{result.exit_code}</exit_code>")
    if result.signal:
        parts.append(f"  <signal>{result.signal}</signal>")
    if result.backgrounded:
        parts.append("  <backgrounded>true</backgrounded>")
    parts.append(f"  <output>\n{result.output}\n  </output>")
    parts.append("</response>")
    return "\n".join(parts)


def _shell_display(shell: BackgroundShell) -> str:
    if shell.is_binary:
        if shell.binary_bytes_received > 0:
            return binary_progress_message(shell.binary_bytes_received)
        return BINARY_DETECTED_MESSAGE
    return shell.to_dict()["output"]


def format_shell(shell: BackgroundShell, include_output: bool = True) -> str:
    attrs = f'pid="{shell.pid}" status="{shell.status.value}"'
    if shell.exit_code is not None:
        attrs += f' exit_code="{shell.exit_code}"'
    lines = [f"  <shell {attrs}>", f"    <command>{shell.command}</command>"]
    if include_output:
        lines.append(f"    <output>\n{_shell_display(shell)}\n    </output>")
    lines.append("  </shell>")
    return "\n".join(lines)


def format_shell_list(shells: Iterable[BackgroundShell], running_count: int) -> str:
    parts = [f'<response running="{running_count}">']
    parts.extend(format_shell(shell, include_output=False) for shell in shells)
    parts.append("</response>")
    return "\n".join(parts)


def format_history(entries: Iterable[HistoryEntry]) -> str:
    parts = ["<response>"]
    for entry in entries:
        parts.append(f'  <entry role="{entry.role}">\n{entry.text}\n  </entry>')
    parts.append("</response>")
    return "\n".join(parts)


def format_message(message: str) -> str:
    return f"<response>\n  <answer>{message}</answer>\n</response>"


def format_error(error: str) -> str:
    return f"<response>\n  <error>{error}</error>\n</response>"


def to_text_content(text: str) -> list[TextContent]:
    from mcp.types import TextContent

    return [TextContent(type="text", text=text)]


def format_error_response(error: str) -> list[TextContent]:
    """Error payload for a tool call, always ``<response><error>``."""
    return to_text_content(format_error(error))
