"""Shell execution service with subprocess isolation and reliable termination.

shell-sessions runtime module v0.1.0

This module provides:
- Cross-platform subprocess isolation (new session/process group)
- Reliable termination with graceful shutdown (SIGTERM -> timeout -> SIGKILL)
- Incremental output streaming with binary sniffing
- Moving a running process to the background without restarting it

Key design points:
- POSIX: start_new_session=True to create new process group
- Windows: CREATE_NEW_PROCESS_GROUP for signal isolation
- Cancellation terminates the process group, not just the main process
- All events go through the EventHub, so any number of consumers can
  follow one process
"""

from __future__ import annotations

import asyncio
import codecs
import dataclasses
import logging
import os
import shutil
import signal
import subprocess
import sys
from dataclasses import dataclass, field
from typing import Any, Mapping

from .binary import MAX_SNIFF_SIZE, is_binary
from .cancellation import CancellationToken
from .event_hub import EventHub
from .events import (
    AnsiOutput,
    AnsiToken,
    BinaryDetectedEvent,
    BinaryProgressEvent,
    DataEvent,
    ExitEvent,
)
from .types import (
    ExecResult,
    ExecutionHandle,
    ExitHandler,
    OutputEventHandler,
    PtyConfig,
    Unsubscribe,
)

__all__ = [
    "IS_WINDOWS",
    "ShellExecutionService",
    "build_shell_argv",
]

logger = logging.getLogger(__name__)

# Platform detection
IS_WINDOWS = sys.platform == "win32"

# Default timeouts
DEFAULT_TERM_TIMEOUT = 2.0  # seconds to wait after SIGTERM
DEFAULT_KILL_TIMEOUT = 1.0  # seconds to wait after SIGKILL

READ_CHUNK_SIZE = 4096


def build_shell_argv(command: str, shell: str | None = None) -> list[str]:
    """Build the argv that runs ``command`` through a shell.

    Args:
        command: Shell command text
        shell: Shell executable (auto-detected if not provided)

    Returns:
        Argument list for asyncio.create_subprocess_exec
    """
    if IS_WINDOWS:
        return [shell or "powershell.exe", "-NoProfile", "-Command", command]

    executable = shell or shutil.which("bash") or "/bin/sh"
    return [executable, "-c", command]


def _utf8_decoder() -> codecs.IncrementalDecoder:
    return codecs.getincrementaldecoder("utf-8")(errors="replace")


@dataclass
class _ActiveProcess:
    """Per-process streaming state.

    Attributes:
        process: The subprocess
        result: Future resolved on completion or backgrounding
        interactive: Emit whole frames instead of text chunks
        pty_config: Frame geometry and colours
        chunks: Every raw chunk read so far
        text: Decoded text so far (text streams only)
        streaming_text: False once the stream was classified binary
        sniffed_bytes: Bytes inspected by the binary sniffer
        total_bytes: Bytes received so far
        aborted: Cancelled through its token
    """

    process: asyncio.subprocess.Process
    result: asyncio.Future[ExecResult]
    interactive: bool
    pty_config: PtyConfig
    chunks: list[bytes] = field(default_factory=list)
    text: str = ""
    decoder: codecs.IncrementalDecoder = field(default_factory=_utf8_decoder)
    streaming_text: bool = True
    sniffed_bytes: int = 0
    total_bytes: int = 0
    aborted: bool = False
    remove_cancel_listener: Unsubscribe | None = None
    reader: asyncio.Task[None] | None = None

    @property
    def pid(self) -> int:
        return self.process.pid

    def raw_output(self) -> bytes:
        return b"".join(self.chunks)

    def decoded_output(self) -> str:
        if self.streaming_text:
            return self.text
        return self.raw_output().decode("utf-8", errors="replace")


class ShellExecutionService:
    """Runs shell commands and streams their events through an EventHub.

    Example:
        service = ShellExecutionService()
        handle = await service.execute(
            "ls -la", "/workspace", on_event=print, cancel_token=token,
        )
        service.background(handle.pid)     # result resolves now
        result = await handle.result       # result.backgrounded is True
        service.on_exit(handle.pid, lambda code, sig: ...)
    """

    def __init__(
        self,
        hub: EventHub | None = None,
        shell: str | None = None,
        env: Mapping[str, str] | None = None,
        term_timeout: float = DEFAULT_TERM_TIMEOUT,
        kill_timeout: float = DEFAULT_KILL_TIMEOUT,
    ) -> None:
        """Initialize the service.

        Args:
            hub: Event hub to publish on (a private one is created if omitted)
            shell: Shell executable (auto-detected if not provided)
            env: Environment variables (None = inherit parent)
            term_timeout: Seconds to wait after SIGTERM before SIGKILL
            kill_timeout: Seconds to wait after SIGKILL
        """
        self.hub = hub or EventHub()
        self.shell = shell
        self.env = env
        self.term_timeout = term_timeout
        self.kill_timeout = kill_timeout
        self._active: dict[int, _ActiveProcess] = {}
        self._termination_tasks: set[asyncio.Task[None]] = set()

    # =========================================================================
    # Execution
    # =========================================================================

    async def execute(
        self,
        command: str,
        cwd: str,
        on_event: OutputEventHandler,
        cancel_token: CancellationToken | None = None,
        interactive: bool = False,
        pty_config: PtyConfig | None = None,
    ) -> ExecutionHandle:
        """Start ``command`` and return its pid with a future for the result.

        Spawn failures do not raise: the returned handle has ``pid=None`` and
        a result whose ``error`` is set.

        Args:
            command: Shell command text (already wrapped by the caller)
            cwd: Working directory for the process
            on_event: Streaming callback for output events
            cancel_token: Cancelling it terminates the process
            interactive: Emit whole frames instead of text chunks
            pty_config: Frame geometry and colours

        Returns:
            ExecutionHandle
        """
        loop = asyncio.get_running_loop()
        result: asyncio.Future[ExecResult] = loop.create_future()
        argv = build_shell_argv(command, self.shell)

        try:
            # stdin is a pipe so write_to_pty() can feed the process
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                cwd=cwd,
                **self._build_subprocess_kwargs(),
            )
        except OSError as e:
            logger.warning(f"Failed to start shell command cwd={cwd}: {e}")
            result.set_result(ExecResult(error=e))
            return ExecutionHandle(pid=None, result=result)

        logger.debug(f"Started shell pid={process.pid} argv={argv[0]} cwd={cwd}")

        state = _ActiveProcess(
            process=process,
            result=result,
            interactive=interactive,
            pty_config=dataclasses.replace(pty_config) if pty_config else PtyConfig(),
        )
        self._active[process.pid] = state
        self.hub.forget(process.pid)
        self.hub.subscribe(process.pid, on_event)

        if cancel_token is not None:
            state.remove_cancel_listener = cancel_token.add_listener(
                lambda: self._abort(state)
            )

        state.reader = loop.create_task(
            self._read_output(state), name=f"shell-reader-{process.pid}"
        )
        return ExecutionHandle(pid=process.pid, result=result)

    def _build_subprocess_kwargs(self) -> dict[str, Any]:
        """Build platform-specific subprocess kwargs."""
        kwargs: dict[str, Any] = {}

        if self.env is not None:
            kwargs["env"] = dict(self.env)

        if IS_WINDOWS:
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            kwargs["start_new_session"] = True

        return kwargs

    async def _read_output(self, state: _ActiveProcess) -> None:
        """Pump stdout into events until EOF, then resolve and publish exit."""
        process = state.process

        try:
            if process.stdout is None:
                raise RuntimeError(f"Shell pid={state.pid} has no stdout pipe")
            while True:
                chunk = await process.stdout.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                self._handle_chunk(state, chunk)

            if state.streaming_text:
                state.text += state.decoder.decode(b"", final=True)

            returncode = await process.wait()

        except Exception as e:
            await self._fail(state, e)
            return

        self._complete(state, returncode)

    def _handle_chunk(self, state: _ActiveProcess, chunk: bytes) -> None:
        pid = state.pid
        state.chunks.append(chunk)
        state.total_bytes += len(chunk)

        if state.streaming_text and state.sniffed_bytes < MAX_SNIFF_SIZE:
            sniff = b"".join(state.chunks)[:MAX_SNIFF_SIZE]
            state.sniffed_bytes = len(sniff)
            if is_binary(sniff):
                state.streaming_text = False
                logger.debug(f"Binary output detected pid={pid}")
                self.hub.publish(pid, BinaryDetectedEvent())

        if not state.streaming_text:
            self.hub.publish(pid, BinaryProgressEvent(bytes_received=state.total_bytes))
            return

        text = state.decoder.decode(chunk)
        state.text += text
        if state.interactive:
            self.hub.publish(pid, DataEvent(chunk=self._render_frame(state)))
        elif text:
            self.hub.publish(pid, DataEvent(chunk=text))

    @staticmethod
    def _render_frame(state: _ActiveProcess) -> AnsiOutput:
        """Render the tail of the decoded text as a terminal frame."""
        config = state.pty_config
        width = max(1, config.terminal_width)
        rows: list[str] = []
        for line in state.text.split("\n"):
            if not line:
                rows.append("")
                continue
            rows.extend(line[i:i + width] for i in range(0, len(line), width))

        fg = (config.default_fg or "") if config.show_color else ""
        bg = (config.default_bg or "") if config.show_color else ""
        visible = rows[-max(1, config.terminal_height):]
        return [[AnsiToken(text=row, fg=fg, bg=bg)] for row in visible]

    def _complete(self, state: _ActiveProcess, returncode: int) -> None:
        pid = state.pid
        self._release(state)

        # Negative return codes mean "killed by signal N" on POSIX
        if returncode < 0:
            exit_code, sig = None, -returncode
        else:
            exit_code, sig = returncode, None

        if not state.result.done():
            state.result.set_result(
                ExecResult(
                    output=state.decoded_output(),
                    raw_output=state.raw_output(),
                    exit_code=exit_code,
                    signal=sig,
                    aborted=state.aborted,
                    pid=pid,
                )
            )

        logger.debug(
            f"Shell completed pid={pid} exit_code={exit_code} signal={sig} "
            f"bytes={state.total_bytes} aborted={state.aborted}"
        )
        self._publish_exit(pid, ExitEvent(exit_code=exit_code, signal=sig))

    async def _fail(self, state: _ActiveProcess, error: Exception) -> None:
        """A subscriber or the pipe failed: stop the process and surface it."""
        pid = state.pid
        logger.error(f"Shell stream failed pid={pid}: {type(error).__name__}: {error}")

        await self._terminate_process(state.process)
        self._release(state)

        if not state.result.done():
            state.result.set_exception(error)
        else:
            logger.error(
                f"Shell stream failure after result was delivered pid={pid}",
                exc_info=error,
            )

        returncode = state.process.returncode
        if returncode is not None and returncode < 0:
            exit_event = ExitEvent(signal=-returncode)
        else:
            exit_event = ExitEvent(exit_code=returncode)
        self._publish_exit(pid, exit_event)

    def _publish_exit(self, pid: int, event: ExitEvent) -> None:
        try:
            self.hub.publish(pid, event)
        except Exception as e:
            # Nobody awaits the reader task; report instead of losing it
            logger.error(f"Exit handler failed pid={pid}: {e}", exc_info=True)

    def _release(self, state: _ActiveProcess) -> None:
        self._active.pop(state.pid, None)
        if state.remove_cancel_listener is not None:
            state.remove_cancel_listener()
            state.remove_cancel_listener = None

    def _abort(self, state: _ActiveProcess) -> None:
        if state.process.returncode is not None:
            return
        logger.info(f"Aborting shell pid={state.pid}")
        state.aborted = True
        self._schedule_termination(state.process)

    # =========================================================================
    # Process control
    # =========================================================================

    def background(self, pid: int) -> None:
        """Resolve the pending result now and let the process keep running."""
        state = self._active.get(pid)
        if state is None or state.result.done():
            logger.debug(f"background() ignored, no pending foreground pid={pid}")
            return

        # The original request no longer owns the process
        if state.remove_cancel_listener is not None:
            state.remove_cancel_listener()
            state.remove_cancel_listener = None

        state.result.set_result(
            ExecResult(
                output=state.decoded_output(),
                raw_output=state.raw_output(),
                backgrounded=True,
                pid=pid,
            )
        )
        logger.info(f"Shell moved to background pid={pid}")

    def kill(self, pid: int) -> None:
        """Request termination of ``pid`` without waiting for it."""
        state = self._active.get(pid)
        if state is None:
            logger.debug(f"kill() ignored, pid={pid} is not active")
            return
        self._schedule_termination(state.process)

    def write_to_pty(self, pid: int, data: str) -> None:
        """Feed ``data`` to the process's stdin."""
        state = self._active.get(pid)
        if state is None or state.process.stdin is None:
            logger.debug(f"write_to_pty() ignored, pid={pid} is not active")
            return
        try:
            state.process.stdin.write(data.encode("utf-8"))
        except (BrokenPipeError, ConnectionResetError) as e:
            logger.debug(f"stdin closed pid={pid}: {e}")

    def resize_pty(self, pid: int, cols: int, rows: int) -> None:
        """Change the frame geometry; interactive runs get a redrawn frame."""
        state = self._active.get(pid)
        if state is None:
            return
        state.pty_config = dataclasses.replace(
            state.pty_config,
            terminal_width=max(1, cols),
            terminal_height=max(1, rows),
        )
        logger.debug(f"Resized pid={pid} to {cols}x{rows}")
        if state.interactive and state.streaming_text:
            self.hub.publish(pid, DataEvent(chunk=self._render_frame(state)))

    def on_exit(self, pid: int, handler: ExitHandler) -> Unsubscribe:
        return self.hub.on_exit(pid, handler)

    def subscribe(self, pid: int, handler: OutputEventHandler) -> Unsubscribe:
        return self.hub.subscribe(pid, handler)

    def is_active(self, pid: int) -> bool:
        return pid in self._active

    @property
    def active_pids(self) -> list[int]:
        return list(self._active)

    async def aclose(self) -> None:
        """Terminate every live process and wait for the readers to finish."""
        states = list(self._active.values())
        if states:
            logger.info(f"Terminating {len(states)} shell process(es)")
        await asyncio.gather(
            *(self._terminate_process(s.process) for s in states),
            return_exceptions=True,
        )
        readers = [s.reader for s in states if s.reader is not None]
        await asyncio.gather(*readers, *self._termination_tasks, return_exceptions=True)

    # =========================================================================
    # Termination
    # =========================================================================

    def _schedule_termination(self, process: asyncio.subprocess.Process) -> None:
        task = asyncio.get_running_loop().create_task(self._terminate_process(process))
        self._termination_tasks.add(task)
        task.add_done_callback(self._termination_tasks.discard)

    async def _terminate_process(self, process: asyncio.subprocess.Process) -> None:
        """Terminate the process group, shielded from caller cancellation."""
        if process.returncode is not None:
            return
        try:
            await asyncio.shield(self._do_terminate(process))
        except asyncio.CancelledError:
            # If shield itself is cancelled, still try cleanup
            await self._do_terminate(process)
            raise

    async def _do_terminate(self, process: asyncio.subprocess.Process) -> None:
        """Terminate subprocess gracefully, then forcefully if needed.

        Termination strategy:
        1. Send SIGTERM (or CTRL_BREAK_EVENT on Windows)
        2. Wait up to term_timeout for graceful exit
        3. If still running, send SIGKILL (or kill() on Windows)
        4. Wait up to kill_timeout for forced exit
        """
        pid = process.pid
        logger.debug(f"Terminating shell pid={pid}")

        try:
            if IS_WINDOWS:
                self._windows_terminate(process)
            else:
                self._posix_signal(process, signal.SIGTERM)

            try:
                await asyncio.wait_for(process.wait(), timeout=self.term_timeout)
                logger.debug(f"Shell terminated gracefully pid={pid} returncode={process.returncode}")
                return
            except asyncio.TimeoutError:
                pass

            logger.debug(f"Force killing shell pid={pid}")
            if IS_WINDOWS:
                process.kill()
            else:
                self._posix_signal(process, signal.SIGKILL)

            try:
                await asyncio.wait_for(process.wait(), timeout=self.kill_timeout)
                logger.debug(f"Shell killed pid={pid} returncode={process.returncode}")
            except asyncio.TimeoutError:
                logger.warning(f"Shell did not exit after kill pid={pid}")

        except ProcessLookupError:
            logger.debug(f"Shell already exited pid={pid}")
        except OSError as e:
            logger.warning(f"Error terminating shell pid={pid}: {e}")

    @staticmethod
    def _posix_signal(process: asyncio.subprocess.Process, sig: signal.Signals) -> None:
        """Send ``sig`` to the process group, falling back to the process."""
        try:
            pgid = os.getpgid(process.pid)
            os.killpg(pgid, sig)
            logger.debug(f"Sent {sig.name} to process group pgid={pgid}")
        except ProcessLookupError:
            pass
        except OSError as e:
            logger.debug(f"killpg failed, falling back to send_signal: {e}")
            process.send_signal(sig)

    @staticmethod
    def _windows_terminate(process: asyncio.subprocess.Process) -> None:
        """Send CTRL_BREAK_EVENT to the process group on Windows."""
        try:
            os.kill(process.pid, signal.CTRL_BREAK_EVENT)
            logger.debug(f"Sent CTRL_BREAK_EVENT to pid={process.pid}")
        except (ProcessLookupError, OSError) as e:
            logger.debug(f"CTRL_BREAK_EVENT failed, falling back: {e}")
            process.terminate()
