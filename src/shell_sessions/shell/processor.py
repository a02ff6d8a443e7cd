"""Shell command processor.

Owns the state shared by every shell command of one client: the execution
capability, the background registry and its view, the history recorder and
the display callback. Foreground commands are run through
:class:`ForegroundSession`.

Example:
    processor = ShellCommandProcessor(service, target_dir="/workspace")
    result = await processor.execute("ls -la", CancellationToken())
    print(result.status, result.output)
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable

from ..runtime.cancellation import CancellationToken
from ..runtime.process_runner import IS_WINDOWS
from ..runtime.types import ExecutionCapability, PtyConfig
from .background import BackgroundRegistry, BackgroundView
from .foreground import ForegroundSession
from .history import MAX_OUTPUT_LENGTH, HistoryRecorder, InMemoryHistory
from .types import (
    NO_BACKGROUND_SHELLS_MESSAGE,
    BackgroundShell,
    DisplayUpdate,
    ForegroundResult,
    HistoryEntry,
    ShellOutput,
)

__all__ = ["ShellCommandProcessor"]

logger = logging.getLogger(__name__)

DisplayCallback = Callable[[DisplayUpdate], None]
ExecCallback = Callable[[Awaitable[ForegroundResult | None]], None]


class ShellCommandProcessor:
    """Runs shell commands and tracks the ones moved to the background.

    Attributes:
        capability: Execution capability used for every process operation
        target_dir: Launch directory for commands
        interactive: Stream whole terminal frames instead of text
        pty_config: Frame geometry for interactive runs
        max_history_output: History truncation limit
        is_windows: Skip working-directory capture
        registry: Background shells
        view: Background panel view state
        history: Transcript collaborator
        active_shell_pid: Pid of the current foreground command
        last_shell_output_time: Epoch seconds of the last displayed output
    """

    def __init__(
        self,
        capability: ExecutionCapability,
        target_dir: str,
        history: HistoryRecorder | None = None,
        on_display: DisplayCallback | None = None,
        on_exec: ExecCallback | None = None,
        on_debug_message: Callable[[str], None] | None = None,
        set_shell_input_focused: Callable[[bool], None] | None = None,
        interactive: bool = False,
        pty_config: PtyConfig | None = None,
        max_history_output: int = MAX_OUTPUT_LENGTH,
        is_windows: bool = IS_WINDOWS,
    ) -> None:
        self.capability = capability
        self.target_dir = target_dir
        self.history: HistoryRecorder = history if history is not None else InMemoryHistory()
        self.interactive = interactive
        self.pty_config = pty_config or PtyConfig()
        self.max_history_output = max_history_output
        self.is_windows = is_windows

        self._on_display = on_display
        self._on_exec = on_exec
        self._on_debug_message = on_debug_message
        self._set_shell_input_focused = set_shell_input_focused

        self.registry = BackgroundRegistry(capability)
        self.view = BackgroundView(self.registry)

        self.active_shell_pid: int | None = None
        self.last_shell_output_time: float = 0.0
        self._last_call_ms = 0
        self._sessions: dict[str, ForegroundSession] = {}

    # =========================================================================
    # Foreground commands
    # =========================================================================

    def create_session(
        self,
        raw_command: str,
        cancel_token: CancellationToken | None = None,
    ) -> ForegroundSession:
        """Create (but do not start) a session for ``raw_command``."""
        return ForegroundSession(self, raw_command, cancel_token)

    async def execute(
        self,
        raw_command: object,
        cancel_token: CancellationToken | None = None,
    ) -> ForegroundResult | None:
        """Run one command in the foreground.

        Args:
            raw_command: Command text; anything else, or blank text, is not
                handled
            cancel_token: Cancelling it aborts the command

        Returns:
            ForegroundResult, or None if the input was not a command
        """
        if not isinstance(raw_command, str) or not raw_command.strip():
            return None
        return await self.run_session(self.create_session(raw_command, cancel_token))

    async def run_session(self, session: ForegroundSession) -> ForegroundResult:
        self._sessions[session.call_id] = session
        try:
            return await session.run()
        finally:
            self._sessions.pop(session.call_id, None)

    def handle_shell_command(
        self,
        raw_command: object,
        cancel_token: CancellationToken | None = None,
    ) -> bool:
        """Schedule ``raw_command`` and hand the task to ``on_exec``.

        Returns:
            False if the input was not a command
        """
        if not isinstance(raw_command, str) or not raw_command.strip():
            return False

        task = asyncio.get_running_loop().create_task(
            self.execute(raw_command, cancel_token), name="shell-command"
        )
        if self._on_exec is not None:
            self._on_exec(task)
        return True

    def next_call_id(self) -> str:
        """``shell-<epoch ms>``, unique within this processor."""
        now_ms = int(time.time() * 1000)
        self._last_call_ms = max(now_ms, self._last_call_ms + 1)
        return f"shell-{self._last_call_ms}"

    def session(self, call_id: str) -> ForegroundSession | None:
        return self._sessions.get(call_id)

    # =========================================================================
    # Background shells
    # =========================================================================

    def background_current_shell(self, active_tool_pid: int | None = None) -> bool:
        """Move the current foreground process to the background.

        Args:
            active_tool_pid: Fallback pid when no shell command is active

        Returns:
            True if a background request was issued
        """
        pid = self.active_shell_pid or active_tool_pid
        if not pid:
            return False
        self.capability.background(pid)
        return True

    def toggle_background_shell(self) -> bool:
        """Show or hide the background panel."""
        if self.view.toggle():
            return True
        self.history.append_history(
            HistoryEntry(role="info", text=NO_BACKGROUND_SHELLS_MESSAGE)
        )
        return False

    def register_background_shell(
        self, pid: int, command: str, initial_output: ShellOutput = ""
    ) -> bool:
        return self.registry.register(pid, command, initial_output)

    def dismiss_background_shell(self, pid: int) -> bool:
        return self.registry.dismiss(pid)

    @property
    def background_shells(self) -> list[BackgroundShell]:
        return self.registry.shells()

    @property
    def background_shell_count(self) -> int:
        """Background shells that are still running."""
        return self.registry.running_count

    @property
    def is_background_shell_visible(self) -> bool:
        return self.view.visible

    # =========================================================================
    # Collaborator plumbing
    # =========================================================================

    def emit_display(self, update: DisplayUpdate) -> None:
        if self._on_display is not None:
            self._on_display(update)

    def debug(self, message: str) -> None:
        if self._on_debug_message is not None:
            self._on_debug_message(message)
        else:
            logger.debug(message)

    def set_shell_input_focused(self, focused: bool) -> None:
        if self._set_shell_input_focused is not None:
            self._set_shell_input_focused(focused)

    def set_active_shell_pid(self, pid: int) -> None:
        self.active_shell_pid = pid

    def release_active_shell_pid(self, pid: int | None) -> None:
        """Clear the active pid if it still belongs to ``pid``."""
        if pid is not None and self.active_shell_pid == pid:
            self.active_shell_pid = None
