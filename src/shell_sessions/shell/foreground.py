"""Foreground execution of a single shell command.

A ForegroundSession drives one command from start to its final result:

1. Wrap the command for working-directory capture (POSIX only)
2. Start it through the execution capability and relay streamed events to
   the display, or into the background registry once the pid was handed
   over
3. Await the result and turn it into a status, a final display and a
   history entry

Marker file deletion, abort listener removal and the active-pid reset run
on every exit path. The marker file of a backgrounded command belongs to
the background registry, which deletes it once the process exits.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from ..runtime.binary import is_binary
from ..runtime.cancellation import CancellationToken
from ..runtime.events import (
    BinaryDetectedEvent,
    BinaryProgressEvent,
    DataEvent,
    ShellOutputEvent,
    UnhandledEventError,
)
from ..runtime.types import ExecResult
from .aggregator import OutputAggregator
from .history import format_shell_history_entry
from .types import (
    BINARY_RESULT_MESSAGE,
    CANCELLED_MESSAGE,
    NO_OUTPUT_MESSAGE,
    DisplayUpdate,
    ForegroundResult,
    HistoryEntry,
    ShellOutput,
    ToolCallStatus,
    background_message,
)
from .wrapping import MarkerFile, directory_change_warning, prepare_command

if TYPE_CHECKING:
    from .processor import ShellCommandProcessor

__all__ = ["ForegroundSession", "derive_status"]

logger = logging.getLogger(__name__)


def derive_status(result: ExecResult, main_content: str) -> tuple[ToolCallStatus, str]:
    """Status and final output for a finished run.

    The first matching rule wins: error, aborted, backgrounded, signal,
    non-zero exit code, success.

    Args:
        result: Result reported by the execution capability
        main_content: Output (or placeholder) to show under the status line

    Returns:
        (status, final_output)
    """
    if result.error is not None:
        return ToolCallStatus.ERROR, f"{result.error}\n{main_content}"
    if result.aborted:
        return ToolCallStatus.CANCELED, f"{CANCELLED_MESSAGE}\n{main_content}"
    if result.backgrounded:
        return ToolCallStatus.SUCCESS, background_message(result.pid)
    if result.signal:
        return (
            ToolCallStatus.ERROR,
            f"Command terminated by signal: {result.signal}.\n{main_content}",
        )
    if result.exit_code != 0:
        return (
            ToolCallStatus.ERROR,
            f"Command exited with code {result.exit_code}.\n{main_content}",
        )
    return ToolCallStatus.SUCCESS, main_content


class ForegroundSession:
    """One in-flight foreground command.

    Attributes:
        call_id: Display identifier, ``shell-<epoch ms>``
        raw_command: Command exactly as the user typed it
        pid: Process id once the capability assigned one
    """

    def __init__(
        self,
        processor: ShellCommandProcessor,
        raw_command: str,
        cancel_token: CancellationToken | None = None,
        call_id: str | None = None,
    ) -> None:
        self._processor = processor
        self.raw_command = raw_command
        self.cancel_token = cancel_token or CancellationToken()
        self.call_id = call_id or processor.next_call_id()
        self.pid: int | None = None
        self.result: ForegroundResult | None = None
        self._aggregator = OutputAggregator(interactive=processor.interactive)
        self._marker: MarkerFile | None = None
        self._background_requested = False
        self._handed_off = False

    @property
    def aggregator(self) -> OutputAggregator:
        return self._aggregator

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def run(self) -> ForegroundResult:
        """Execute the command and return its final result.

        Raises:
            UnhandledEventError: The capability emitted an event outside the
                closed event protocol
        """
        processor = self._processor
        target_dir = processor.target_dir
        command, self._marker = prepare_command(self.raw_command, processor.is_windows)

        self._emit(ToolCallStatus.EXECUTING, "")
        remove_abort_listener = self.cancel_token.add_listener(self._on_abort)
        processor.debug(f"Executing in {target_dir}: {command}")

        try:
            handle = await processor.capability.execute(
                command,
                target_dir,
                self._on_event,
                self.cancel_token,
                processor.interactive,
                processor.pty_config,
            )
            self.pid = handle.pid
            if handle.pid is not None:
                processor.set_active_shell_pid(handle.pid)
                self._emit(ToolCallStatus.EXECUTING, self._aggregator.display)
                if self._background_requested:
                    processor.capability.background(handle.pid)

            result = await handle.result
            self.result = self._finalize(result)

        except UnhandledEventError:
            logger.error(f"Shell event protocol violation call_id={self.call_id}")
            raise

        except Exception as e:
            logger.error(
                f"Unexpected error running shell command call_id={self.call_id}: {e}",
                exc_info=True,
            )
            message = f"An unexpected error occurred: {e}"
            self._emit(ToolCallStatus.ERROR, message)
            processor.history.append_history(HistoryEntry(role="error", text=message))
            self.result = ForegroundResult(
                output=message,
                status=ToolCallStatus.ERROR,
                error=str(e),
                pid=self.pid,
            )

        finally:
            remove_abort_listener()
            if self._marker is not None and not self._handed_off:
                self._marker.cleanup()
            processor.release_active_shell_pid(self.pid)
            processor.set_shell_input_focused(False)

        return self.result

    def background(self) -> bool:
        """Ask the capability to move this session's process to the background.

        A request made before the process started is applied as soon as it
        has a pid.
        """
        if self.result is not None:
            return False
        if self.pid is None:
            self._background_requested = True
            return True
        self._processor.capability.background(self.pid)
        return True

    def _on_abort(self) -> None:
        pid = self.pid if self.pid is not None else "unknown"
        self._processor.debug(f"Aborting shell command (PID: {pid})")

    # =========================================================================
    # Streaming
    # =========================================================================

    def _on_event(self, event: ShellOutputEvent) -> None:
        aggregator = self._aggregator

        if isinstance(event, DataEvent):
            should_update = aggregator.append(event.chunk)
        elif isinstance(event, BinaryDetectedEvent):
            aggregator.mark_binary()
            should_update = True
        elif isinstance(event, BinaryProgressEvent):
            aggregator.update_binary_progress(event.bytes_received)
            should_update = True
        else:
            raise UnhandledEventError(event)

        registry = self._processor.registry
        if self.pid is not None and self.pid in registry:
            # Already backgrounded: the registry entry gets the update instead
            registry.update_from_foreground(
                self.pid,
                aggregator.output,
                aggregator.is_binary,
                aggregator.binary_bytes_received,
            )
            return
        if self._handed_off:
            # Dismissed after the handoff
            return

        if should_update:
            self._processor.last_shell_output_time = time.time()
            self._emit(ToolCallStatus.EXECUTING, aggregator.display)

    # =========================================================================
    # Finalization
    # =========================================================================

    def _finalize(self, result: ExecResult) -> ForegroundResult:
        processor = self._processor
        aggregator = self._aggregator

        if result.backgrounded and result.pid is not None:
            processor.registry.adopt(
                result.pid,
                self.raw_command,
                aggregator.output,
                is_binary=aggregator.is_binary,
                binary_bytes_received=aggregator.binary_bytes_received,
                on_release=self._marker.cleanup if self._marker is not None else None,
            )
            self._handed_off = True
            processor.release_active_shell_pid(result.pid)

        if is_binary(result.raw_output):
            main_content = BINARY_RESULT_MESSAGE
        else:
            main_content = result.output.strip() or NO_OUTPUT_MESSAGE

        status, final_output = derive_status(result, main_content)

        if self._marker is not None:
            warning = directory_change_warning(self._marker.read(), processor.target_dir)
            if warning:
                final_output = f"{warning}\n\n{final_output}"

        self._emit(status, final_output)

        if status != ToolCallStatus.CANCELED:
            processor.history.append_history(
                format_shell_history_entry(
                    self.raw_command, final_output, processor.max_history_output
                )
            )

        logger.info(
            f"Shell command finished call_id={self.call_id} pid={result.pid} "
            f"status={status.value}"
        )
        return ForegroundResult(
            output=final_output,
            status=status,
            exit_code=result.exit_code,
            signal=result.signal,
            error=str(result.error) if result.error is not None else None,
            aborted=result.aborted,
            backgrounded=result.backgrounded,
            pid=result.pid if result.pid is not None else self.pid,
        )

    def _emit(self, status: ToolCallStatus, display: ShellOutput) -> None:
        self._processor.emit_display(
            DisplayUpdate(
                call_id=self.call_id,
                status=status,
                result_display=display,
                pid=self.pid,
                description=self.raw_command,
            )
        )
