"""Execution capability contract.

shell-sessions runtime module v0.1.0

Defines what the orchestration layer expects from the component that
actually spawns processes: the result shape, the handle returned by
``execute`` and the capability protocol itself.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Protocol

if TYPE_CHECKING:
    from .cancellation import CancellationToken
    from .events import ShellOutputEvent

__all__ = [
    "PtyConfig",
    "ExecResult",
    "ExecutionHandle",
    "ExecutionCapability",
    "OutputEventHandler",
    "ExitHandler",
    "Unsubscribe",
]

# Type aliases for callbacks
OutputEventHandler = Callable[["ShellOutputEvent"], None]
ExitHandler = Callable[[int | None, int | None], None]
Unsubscribe = Callable[[], None]


@dataclass
class PtyConfig:
    """Terminal geometry and colours for interactive runs.

    Attributes:
        terminal_width: Columns of the frame
        terminal_height: Rows of the frame (older lines scroll off)
        show_color: Whether frames carry colour information
        default_fg: Foreground colour applied to tokens
        default_bg: Background colour applied to tokens
    """

    terminal_width: int = 80
    terminal_height: int = 24
    show_color: bool = False
    default_fg: str | None = None
    default_bg: str | None = None


@dataclass
class ExecResult:
    """Final outcome of one ``execute`` call.

    Attributes:
        output: Decoded output
        raw_output: Every byte the process wrote
        exit_code: Exit code (None when killed by a signal or never started)
        signal: Terminating signal number
        error: Failure raised while starting or running the process
        aborted: The run was cancelled through its token
        backgrounded: The run was moved to the background while still running
        pid: Process id
    """

    output: str = ""
    raw_output: bytes = b""
    exit_code: int | None = None
    signal: int | None = None
    error: BaseException | None = None
    aborted: bool = False
    backgrounded: bool = False
    pid: int | None = None


@dataclass
class ExecutionHandle:
    """Returned by ``execute``: the pid plus a future for the final result."""

    pid: int | None
    result: asyncio.Future[ExecResult]


class ExecutionCapability(Protocol):
    """Raw process/PTY primitive consumed by the orchestrator."""

    async def execute(
        self,
        command: str,
        cwd: str,
        on_event: OutputEventHandler,
        cancel_token: CancellationToken | None = None,
        interactive: bool = False,
        pty_config: PtyConfig | None = None,
    ) -> ExecutionHandle: ...

    def kill(self, pid: int) -> None: ...

    def background(self, pid: int) -> None: ...

    def resize_pty(self, pid: int, cols: int, rows: int) -> None: ...

    def write_to_pty(self, pid: int, data: str) -> None: ...

    def on_exit(self, pid: int, handler: ExitHandler) -> Unsubscribe: ...

    def subscribe(self, pid: int, handler: OutputEventHandler) -> Unsubscribe: ...
