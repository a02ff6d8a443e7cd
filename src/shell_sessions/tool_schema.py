"""Tool schema definitions.

Tool names, descriptions and input schemas for the MCP server.
"""

from __future__ import annotations

from typing import Any

__all__ = [
    "RUN_SHELL_COMMAND",
    "LIST_BACKGROUND_SHELLS",
    "READ_BACKGROUND_SHELL",
    "WRITE_BACKGROUND_SHELL",
    "DISMISS_BACKGROUND_SHELL",
    "READ_HISTORY",
    "SUPPORTED_TOOLS",
    "TOOL_DESCRIPTIONS",
    "create_tool_schema",
]

RUN_SHELL_COMMAND = "run_shell_command"
LIST_BACKGROUND_SHELLS = "list_background_shells"
READ_BACKGROUND_SHELL = "read_background_shell"
WRITE_BACKGROUND_SHELL = "write_background_shell"
DISMISS_BACKGROUND_SHELL = "dismiss_background_shell"
READ_HISTORY = "read_history"

SUPPORTED_TOOLS = (
    RUN_SHELL_COMMAND,
    LIST_BACKGROUND_SHELLS,
    READ_BACKGROUND_SHELL,
    WRITE_BACKGROUND_SHELL,
    DISMISS_BACKGROUND_SHELL,
    READ_HISTORY,
)

TOOL_DESCRIPTIONS = {
    RUN_SHELL_COMMAND: """Run a shell command and return its output.

STATELESS:
- Every command runs in a fresh shell launched in the target directory.
- `cd` does not carry over to later commands (a warning is returned).

BACKGROUND:
- Set background_after_sec to move a long-running command (dev servers,
  watchers) to the background after that many seconds. The call returns
  at once with the PID; follow it with read_background_shell.

OUTPUT:
- Binary output is not shown, only its size.
- Non-zero exit codes and signals are reported as errors.""",

    LIST_BACKGROUND_SHELLS: """List background shells (running and exited) in display order.

Exited shells stay listed until dismissed.""",

    READ_BACKGROUND_SHELL: """Read the current output and status of a background shell.""",

    WRITE_BACKGROUND_SHELL: """Send input to a running background shell's stdin.

Include a trailing newline to submit a line.""",

    DISMISS_BACKGROUND_SHELL: """Dismiss a background shell.

A running shell is killed first; an exited one is just removed.""",

    READ_HISTORY: """Read recent transcript entries (finished commands, errors, notices).""",
}

_PID_PROPERTY = {
    "type": "integer",
    "description": "Process id of the background shell.",
}


def create_tool_schema(name: str) -> dict[str, Any]:
    """Input schema for tool ``name``.

    Raises:
        KeyError: Unknown tool name
    """
    if name == RUN_SHELL_COMMAND:
        return {
            "type": "object",
            "properties": {
                "command": {
                    "type": "string",
                    "description": "Shell command to run.",
                },
                "background_after_sec": {
                    "type": "number",
                    "minimum": 0,
                    "description": (
                        "Move the command to the background if it is still "
                        "running after this many seconds. Omit to wait for exit."
                    ),
                },
            },
            "required": ["command"],
        }

    if name == LIST_BACKGROUND_SHELLS:
        return {"type": "object", "properties": {}, "required": []}

    if name in (READ_BACKGROUND_SHELL, DISMISS_BACKGROUND_SHELL):
        return {
            "type": "object",
            "properties": {"pid": _PID_PROPERTY},
            "required": ["pid"],
        }

    if name == WRITE_BACKGROUND_SHELL:
        return {
            "type": "object",
            "properties": {
                "pid": _PID_PROPERTY,
                "input": {
                    "type": "string",
                    "description": "Text written to the shell's stdin.",
                },
            },
            "required": ["pid", "input"],
        }

    if name == READ_HISTORY:
        return {
            "type": "object",
            "properties": {
                "limit": {
                    "type": "integer",
                    "minimum": 1,
                    "description": "Most recent entries to return (default: all).",
                },
            },
            "required": [],
        }

    raise KeyError(f"Unknown tool '{name}'")
