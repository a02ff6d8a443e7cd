"""Background shell tracking.

BackgroundRegistry owns every process that was moved out of the foreground:
it keeps one BackgroundShell record per pid in insertion order, follows the
process through the execution capability's event channels and is the only
component that kills, writes to or resizes a backgrounded pid.

BackgroundView is pure view state on top of the registry (visibility, list
mode, which entry is active). The registry itself has no notion of an
active entry.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Callable, Iterator, Literal

from ..runtime.events import (
    BinaryDetectedEvent,
    BinaryProgressEvent,
    DataEvent,
    ShellOutputEvent,
    UnhandledEventError,
)
from ..runtime.types import ExecutionCapability, Unsubscribe
from .types import BackgroundShell, ShellOutput, ShellStatus

__all__ = [
    "BackgroundRegistry",
    "BackgroundView",
    "ChangeKind",
    "ChangeListener",
    "exit_code_from",
]

logger = logging.getLogger(__name__)

ChangeKind = Literal["added", "updated", "exited", "removed"]
ChangeListener = Callable[[ChangeKind, int], None]


def exit_code_from(exit_code: int | None, signal: int | None) -> int:
    """Exit code recorded for a finished shell.

    Signal deaths follow the shell convention ``128 + signal``. A process
    that reported neither is recorded as a generic failure (1).
    """
    if exit_code is not None:
        return exit_code
    if signal is not None:
        return 128 + signal
    return 1


class BackgroundRegistry:
    """Insertion-ordered pid -> BackgroundShell mapping.

    Exited entries are moved to the end of the iteration order when they
    exit; their identity does not change.

    Example:
        registry = BackgroundRegistry(service)
        registry.register(pid, "npm run dev", "")
        registry.running_count      # 1
        registry.dismiss(pid)       # kills, then removes
    """

    def __init__(self, capability: ExecutionCapability) -> None:
        self._capability = capability
        self._shells: OrderedDict[int, BackgroundShell] = OrderedDict()
        self._exit_unsubscribers: dict[int, Unsubscribe] = {}
        self._stream_unsubscribers: dict[int, Unsubscribe] = {}
        self._release_callbacks: dict[int, Callable[[], None]] = {}
        self._listeners: list[ChangeListener] = []
        self._running_count = 0

    # =========================================================================
    # Registration
    # =========================================================================

    def register(self, pid: int, command: str, initial_output: ShellOutput = "") -> bool:
        """Start tracking a running process.

        Installs one exit listener and one streaming listener. Registering a
        pid that is already tracked does nothing.

        Returns:
            True if a new entry was created
        """
        if pid in self._shells:
            logger.debug(f"register() ignored, pid={pid} already tracked")
            return False

        self._shells[pid] = BackgroundShell(pid=pid, command=command, output=initial_output)
        logger.info(f"Background shell registered pid={pid}")
        self._install_stream_listener(pid)
        self._notify("added", pid)
        self._install_exit_listener(pid)
        self._recount()
        return True

    def adopt(
        self,
        pid: int,
        command: str,
        output: ShellOutput,
        is_binary: bool = False,
        binary_bytes_received: int = 0,
        on_release: Callable[[], None] | None = None,
    ) -> BackgroundShell:
        """Take over a process the foreground just released.

        Creates the record, or augments an existing one, with the state the
        foreground accumulated. Only the exit listener is installed: the
        foreground's stream callback keeps forwarding updates through
        :meth:`update_from_foreground`.

        Args:
            on_release: Called once the process has exited, even when the
                entry was dismissed first. The foreground deletes its
                working-directory marker file here.
        """
        shell = self._shells.get(pid)
        if shell is None:
            shell = BackgroundShell(
                pid=pid,
                command=command,
                output=output,
                is_binary=is_binary,
                binary_bytes_received=binary_bytes_received,
            )
            self._shells[pid] = shell
            logger.info(f"Background shell adopted pid={pid}")
            self._notify("added", pid)
        else:
            self._merge(shell, output, is_binary, binary_bytes_received)
            self._notify("updated", pid)

        if on_release is not None:
            self._release_callbacks[pid] = on_release
            if not shell.is_running:
                self._release(pid)

        # Installed last: an exit that already happened is delivered at once
        self._install_exit_listener(pid)
        self._recount()
        return shell

    def update_from_foreground(
        self,
        pid: int,
        output: ShellOutput,
        is_binary: bool,
        binary_bytes_received: int,
    ) -> None:
        """Apply a redirected foreground update to a tracked entry.

        Ignored while the registry follows the pid's stream itself.
        """
        shell = self._shells.get(pid)
        if shell is None or pid in self._stream_unsubscribers:
            return
        self._merge(shell, output, is_binary, binary_bytes_received)
        self._notify("updated", pid)

    @staticmethod
    def _merge(
        shell: BackgroundShell,
        output: ShellOutput,
        is_binary: bool,
        binary_bytes_received: int,
    ) -> None:
        shell.output = output
        shell.is_binary = shell.is_binary or is_binary
        shell.binary_bytes_received = max(shell.binary_bytes_received, binary_bytes_received)

    def _install_exit_listener(self, pid: int) -> None:
        if pid in self._exit_unsubscribers:
            return
        self._exit_unsubscribers[pid] = self._capability.on_exit(
            pid, lambda exit_code, signal: self._handle_exit(pid, exit_code, signal)
        )

    def _install_stream_listener(self, pid: int) -> None:
        if pid in self._stream_unsubscribers:
            return
        self._stream_unsubscribers[pid] = self._capability.subscribe(
            pid, lambda event: self._handle_event(pid, event)
        )

    # =========================================================================
    # Event handling
    # =========================================================================

    def _handle_exit(self, pid: int, exit_code: int | None, signal: int | None) -> None:
        self._exit_unsubscribers.pop(pid, None)
        self._stream_unsubscribers.pop(pid, None)
        self._release(pid)

        shell = self._shells.get(pid)
        if shell is None:
            return

        shell.status = ShellStatus.EXITED
        shell.exit_code = exit_code_from(exit_code, signal)
        self._shells.move_to_end(pid)
        logger.info(f"Background shell exited pid={pid} exit_code={shell.exit_code}")
        self._recount()
        self._notify("exited", pid)

    def _release(self, pid: int) -> None:
        callback = self._release_callbacks.pop(pid, None)
        if callback is not None:
            callback()

    def _handle_event(self, pid: int, event: ShellOutputEvent) -> None:
        shell = self._shells.get(pid)
        if shell is None:
            return

        if isinstance(event, DataEvent):
            # Text arrives as deltas, interactive frames as whole screens
            if isinstance(event.chunk, str) and isinstance(shell.output, str):
                shell.output += event.chunk
            else:
                shell.output = event.chunk
        elif isinstance(event, BinaryDetectedEvent):
            shell.is_binary = True
        elif isinstance(event, BinaryProgressEvent):
            shell.is_binary = True
            shell.binary_bytes_received = max(
                shell.binary_bytes_received, event.bytes_received
            )
        else:
            raise UnhandledEventError(event)
        self._notify("updated", pid)

    # =========================================================================
    # Process control
    # =========================================================================

    def dismiss(self, pid: int) -> bool:
        """Stop tracking ``pid``, killing it first if it is still running.

        Removal does not wait for the process to die.

        Returns:
            True if an entry was removed
        """
        shell = self._shells.get(pid)
        if shell is None:
            return False

        if shell.is_running:
            logger.info(f"Killing background shell pid={pid}")
            self._capability.kill(pid)

        tables = [self._stream_unsubscribers]
        # The release callback runs when the killed process exits
        if pid not in self._release_callbacks:
            tables.append(self._exit_unsubscribers)
        for unsubscribers in tables:
            unsubscribe = unsubscribers.pop(pid, None)
            if unsubscribe is not None:
                unsubscribe()

        del self._shells[pid]
        self._recount()
        self._notify("removed", pid)
        return True

    def write_input(self, pid: int, data: str) -> bool:
        shell = self._shells.get(pid)
        if shell is None or not shell.is_running:
            return False
        self._capability.write_to_pty(pid, data)
        return True

    def resize(self, pid: int, cols: int, rows: int) -> bool:
        shell = self._shells.get(pid)
        if shell is None or not shell.is_running:
            return False
        self._capability.resize_pty(pid, max(1, cols), max(1, rows))
        return True

    # =========================================================================
    # Queries
    # =========================================================================

    def count_running(self) -> int:
        return sum(1 for shell in self._shells.values() if shell.is_running)

    def _recount(self) -> None:
        self._running_count = self.count_running()

    @property
    def running_count(self) -> int:
        """Running entries as of the last registry change."""
        return self._running_count

    def get(self, pid: int) -> BackgroundShell | None:
        return self._shells.get(pid)

    def shells(self) -> list[BackgroundShell]:
        return list(self._shells.values())

    def pids(self) -> list[int]:
        return list(self._shells)

    def __contains__(self, pid: object) -> bool:
        return pid in self._shells

    def __len__(self) -> int:
        return len(self._shells)

    def __iter__(self) -> Iterator[BackgroundShell]:
        return iter(list(self._shells.values()))

    # =========================================================================
    # Change notification
    # =========================================================================

    def add_listener(self, listener: ChangeListener) -> Unsubscribe:
        """Register ``listener(kind, pid)`` for every registry change."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _notify(self, kind: ChangeKind, pid: int) -> None:
        for listener in list(self._listeners):
            listener(kind, pid)


class BackgroundView:
    """Which background shell is shown and how.

    Attributes:
        visible: Background panel shown; False whenever the registry is empty
        list_open: Showing the list of shells rather than a single shell
        active_pid: Shell that is rendered and receives input
        selection_index: Highlighted row while the list is open
    """

    def __init__(self, registry: BackgroundRegistry) -> None:
        self.registry = registry
        self.visible = False
        self.list_open = False
        self.active_pid: int | None = None
        self.selection_index = 0
        self._remove_listener = registry.add_listener(self._on_change)

    def close(self) -> None:
        self._remove_listener()

    def _on_change(self, kind: ChangeKind, pid: int) -> None:
        if kind == "added":
            self.active_pid = pid
            self.visible = True
            self.list_open = len(self.registry) >= 2
            self._sync_selection()
        elif kind == "removed":
            if not len(self.registry):
                self.visible = False
                self.list_open = False
                self.active_pid = None
                self.selection_index = 0
                return
            if self.active_pid == pid or self.active_pid not in self.registry:
                self.active_pid = self.registry.pids()[0]
            self._sync_selection()
        elif kind == "exited":
            self._sync_selection()

    def _sync_selection(self) -> None:
        pids = self.registry.pids()
        if self.active_pid in pids:
            self.selection_index = pids.index(self.active_pid)
        else:
            self.selection_index = 0

    @property
    def active_shell(self) -> BackgroundShell | None:
        if self.active_pid is None:
            return None
        return self.registry.get(self.active_pid)

    def toggle(self) -> bool:
        """Show or hide the panel.

        Returns:
            False (and no change) when there is nothing to show
        """
        if not len(self.registry):
            self.visible = False
            return False
        self.visible = not self.visible
        return True

    def set_active(self, pid: int) -> bool:
        if pid not in self.registry:
            return False
        self.active_pid = pid
        self._sync_selection()
        return True

    # List navigation
    def open_list(self) -> None:
        if len(self.registry):
            self.list_open = True
            self._sync_selection()

    def close_list(self) -> None:
        self.list_open = False

    def select_next(self) -> None:
        count = len(self.registry)
        if count:
            self.selection_index = (self.selection_index + 1) % count

    def select_previous(self) -> None:
        count = len(self.registry)
        if count:
            self.selection_index = (self.selection_index - 1 + count) % count

    def confirm_selection(self) -> int | None:
        """Activate the highlighted shell and leave the list."""
        pids = self.registry.pids()
        if 0 <= self.selection_index < len(pids):
            self.active_pid = pids[self.selection_index]
        self.list_open = False
        return self.active_pid

    # Routed to the active shell through the registry
    def send_input(self, data: str) -> bool:
        if self.active_pid is None:
            return False
        return self.registry.write_input(self.active_pid, data)

    def resize(self, cols: int, rows: int) -> bool:
        if self.active_pid is None:
            return False
        return self.registry.resize(self.active_pid, cols, rows)

    def dismiss_active(self) -> bool:
        if self.active_pid is None:
            return False
        return self.registry.dismiss(self.active_pid)
