"""Shell session record types.

Defines background shell records, foreground results, display updates and
history entries, plus the fixed messages shown to users.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Literal, Union

from ..runtime.events import AnsiOutput

__all__ = [
    "ShellOutput",
    "ShellStatus",
    "ToolCallStatus",
    "BackgroundShell",
    "ForegroundResult",
    "DisplayUpdate",
    "HistoryEntry",
    "SHELL_COMMAND_NAME",
    "NO_OUTPUT_MESSAGE",
    "BINARY_RESULT_MESSAGE",
    "CANCELLED_MESSAGE",
    "NO_BACKGROUND_SHELLS_MESSAGE",
    "background_message",
]

# Text (text mode) or the latest terminal frame (interactive mode)
ShellOutput = Union[str, AnsiOutput]

SHELL_COMMAND_NAME = "Shell Command"

NO_OUTPUT_MESSAGE = "(Command produced no output)"
BINARY_RESULT_MESSAGE = "[Command produced binary output, which is not shown.]"
CANCELLED_MESSAGE = "Command was cancelled."
NO_BACKGROUND_SHELLS_MESSAGE = "No background shells are currently active."


def background_message(pid: int | None) -> str:
    """Result text for a command that was moved to the background."""
    return f"Command moved to background (PID: {pid}). Output hidden. Press Ctrl+B to view."


class ShellStatus(str, Enum):
    """Lifecycle of a background shell. ``EXITED`` is terminal."""

    RUNNING = "running"
    EXITED = "exited"


class ToolCallStatus(str, Enum):
    """Status reported to the display for one command."""

    EXECUTING = "Executing"
    SUCCESS = "Success"
    ERROR = "Error"
    CANCELED = "Canceled"


@dataclass
class BackgroundShell:
    """A process continuing independently of the primary display.

    Attributes:
        pid: Process id (identity)
        command: Literal command as typed, before wrapping
        output: Current output, text or latest frame, never mixed
        is_binary: Sticky once binary content was seen
        binary_bytes_received: Monotonic byte counter (valid while is_binary)
        status: running / exited
        exit_code: Present iff status is exited
    """

    pid: int
    command: str
    output: ShellOutput = ""
    is_binary: bool = False
    binary_bytes_received: int = 0
    status: ShellStatus = ShellStatus.RUNNING
    exit_code: int | None = None

    @property
    def is_running(self) -> bool:
        return self.status == ShellStatus.RUNNING

    def to_dict(self) -> dict:
        """Convert to a JSON-friendly dict."""
        output = self.output
        if not isinstance(output, str):
            output = "\n".join("".join(token.text for token in line) for line in output)
        result = {
            "pid": self.pid,
            "command": self.command,
            "status": self.status.value,
            "is_binary": self.is_binary,
            "output": output,
        }
        if self.is_binary:
            result["binary_bytes_received"] = self.binary_bytes_received
        if self.exit_code is not None:
            result["exit_code"] = self.exit_code
        return result


@dataclass
class ForegroundResult:
    """Final disposition of one ``execute`` call.

    Exactly one of normal completion, error, aborted or backgrounded
    describes the outcome; ``exit_code`` is meaningless when ``aborted``.

    Attributes:
        output: Finalized output as shown to the user
        status: Derived display status
        exit_code: Exit code reported by the process
        signal: Terminating signal
        error: Execution failure message
        aborted: Cancelled by the caller
        backgrounded: Moved to the background
        pid: Process id, when one was assigned
    """

    output: str
    status: ToolCallStatus
    exit_code: int | None = None
    signal: int | None = None
    error: str | None = None
    aborted: bool = False
    backgrounded: bool = False
    pid: int | None = None


@dataclass
class DisplayUpdate:
    """One status transition emitted to the display collaborator."""

    call_id: str
    status: ToolCallStatus
    result_display: ShellOutput
    pid: int | None = None
    description: str = ""
    name: str = SHELL_COMMAND_NAME


@dataclass
class HistoryEntry:
    """Role-tagged transcript entry handed to the history collaborator."""

    role: Literal["user", "error", "info"]
    text: str
    timestamp: float = field(default_factory=time.time)
