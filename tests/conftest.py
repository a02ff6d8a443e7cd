"""Pytest configuration and fixtures."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Callable

import pytest

PROJECT_ROOT = Path(__file__).parent.parent

# Add src to the Python path (development checkout)
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from shell_sessions.runtime.event_hub import EventHub  # noqa: E402
from shell_sessions.runtime.events import ExitEvent  # noqa: E402
from shell_sessions.runtime.types import (  # noqa: E402
    ExecResult,
    ExecutionHandle,
    OutputEventHandler,
    PtyConfig,
)


class FakeExecution:
    """In-memory execution capability.

    ``execute`` hands out increasing pids and records each call; tests then
    drive the process through ``emit``, ``finish`` and ``exit``.
    """

    def __init__(self, first_pid: int = 1000) -> None:
        self.hub = EventHub()
        self.next_pid = first_pid
        self.calls: list[dict] = []
        self.handles: dict[int, ExecutionHandle] = {}
        self.killed: list[int] = []
        self.backgrounded: list[int] = []
        self.written: list[tuple[int, str]] = []
        self.resized: list[tuple[int, int, int]] = []
        self.outputs: dict[int, str] = {}
        self.raw_outputs: dict[int, bytes] = {}
        self.spawn_error: Exception | None = None
        self.on_started: Callable[[int], None] | None = None

    async def execute(
        self,
        command: str,
        cwd: str,
        on_event: OutputEventHandler,
        cancel_token=None,
        interactive: bool = False,
        pty_config: PtyConfig | None = None,
    ) -> ExecutionHandle:
        loop = asyncio.get_running_loop()
        future: asyncio.Future[ExecResult] = loop.create_future()
        self.calls.append(
            {
                "command": command,
                "cwd": cwd,
                "interactive": interactive,
                "pty_config": pty_config,
                "cancel_token": cancel_token,
            }
        )
        if self.spawn_error is not None:
            future.set_result(ExecResult(error=self.spawn_error))
            return ExecutionHandle(pid=None, result=future)

        pid = self.next_pid
        self.next_pid += 1
        self.hub.forget(pid)
        self.hub.subscribe(pid, on_event)
        handle = ExecutionHandle(pid=pid, result=future)
        self.handles[pid] = handle

        if cancel_token is not None:
            cancel_token.add_listener(lambda: self.finish(pid, aborted=True))
        if self.on_started is not None:
            loop.call_soon(self.on_started, pid)
        return handle

    # Driving the fake process
    def emit(self, pid: int, event) -> None:
        self.hub.publish(pid, event)

    def finish(
        self,
        pid: int,
        exit_code: int | None = 0,
        signal: int | None = None,
        output: str | None = None,
        raw_output: bytes | None = None,
        aborted: bool = False,
        error: BaseException | None = None,
    ) -> None:
        """Resolve the result (if pending) and publish the exit."""
        future = self.handles[pid].result
        text = output if output is not None else self.outputs.get(pid, "")
        if not future.done():
            future.set_result(
                ExecResult(
                    output=text,
                    raw_output=raw_output if raw_output is not None else text.encode(),
                    exit_code=None if aborted else exit_code,
                    signal=signal,
                    aborted=aborted,
                    error=error,
                    pid=pid,
                )
            )
        if not self.hub.has_exited(pid):
            self.hub.publish(pid, ExitEvent(exit_code=exit_code, signal=signal))

    def exit(self, pid: int, exit_code: int | None = 0, signal: int | None = None) -> None:
        self.hub.publish(pid, ExitEvent(exit_code=exit_code, signal=signal))

    # Capability surface
    def kill(self, pid: int) -> None:
        self.killed.append(pid)

    def background(self, pid: int) -> None:
        self.backgrounded.append(pid)
        future = self.handles[pid].result
        if not future.done():
            future.set_result(
                ExecResult(output=self.outputs.get(pid, ""), backgrounded=True, pid=pid)
            )

    def resize_pty(self, pid: int, cols: int, rows: int) -> None:
        self.resized.append((pid, cols, rows))

    def write_to_pty(self, pid: int, data: str) -> None:
        self.written.append((pid, data))

    def on_exit(self, pid, handler):
        return self.hub.on_exit(pid, handler)

    def subscribe(self, pid, handler):
        return self.hub.subscribe(pid, handler)


@pytest.fixture
def project_root() -> Path:
    return PROJECT_ROOT


@pytest.fixture
def fake_execution() -> FakeExecution:
    return FakeExecution()
