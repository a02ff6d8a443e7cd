"""In-flight foreground command tracking.

CommandRegistry keeps every foreground command the server is currently
running so that they can be cancelled individually or all at once (for
example on SIGINT). Cancelling goes through the command's
CancellationToken, so the command finishes with a Canceled result instead
of its task being torn down.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Optional

from .runtime.cancellation import CancellationToken

__all__ = ["CommandRegistry", "CommandInfo"]

logger = logging.getLogger(__name__)


@dataclass
class CommandInfo:
    """A running foreground command.

    Attributes:
        call_id: Display identifier of the command
        command: Raw command text
        task: Task running the command
        token: Cancellation token of the command
        created_at: Registration time
    """

    call_id: str
    command: str
    task: asyncio.Task
    token: CancellationToken
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def done(self) -> bool:
        return self.task.done()

    def __repr__(self) -> str:
        elapsed = (datetime.now() - self.created_at).total_seconds()
        status = "running" if not self.task.done() else "done"
        return (
            f"CommandInfo(id={self.call_id}, "
            f"command={self.command[:32]!r}, "
            f"status={status}, "
            f"elapsed={elapsed:.1f}s)"
        )


class CommandRegistry:
    """Registry of running foreground commands.

    All operations are synchronous and must be called from the event loop
    thread.

    Example:
        ```python
        registry = CommandRegistry()
        token = CancellationToken()
        task = asyncio.create_task(processor.run_session(session))
        registry.register(session.call_id, "sleep 10", task, token)

        registry.cancel_all()            # token cancelled, task ends Canceled
        registry.unregister(session.call_id)
        ```
    """

    def __init__(self) -> None:
        self._commands: Dict[str, CommandInfo] = {}
        self._on_empty_callbacks: list[Callable[[], None]] = []

    def register(
        self,
        call_id: str,
        command: str,
        task: asyncio.Task,
        token: CancellationToken,
    ) -> CommandInfo:
        """Register a running command.

        Raises:
            ValueError: If ``call_id`` is already registered
        """
        if call_id in self._commands:
            raise ValueError(f"Command {call_id} already registered")

        info = CommandInfo(call_id=call_id, command=command, task=task, token=token)
        self._commands[call_id] = info
        logger.debug(f"Registered command: {info}")
        return info

    def unregister(self, call_id: str) -> bool:
        """Remove a command; runs the on-empty callbacks when none are left."""
        info = self._commands.pop(call_id, None)
        if info is None:
            return False

        logger.debug(f"Unregistered command: {info}")
        if not self._commands:
            for callback in list(self._on_empty_callbacks):
                try:
                    callback()
                except Exception as e:
                    logger.warning(f"Error in on_empty callback: {e}")
        return True

    def get(self, call_id: str) -> Optional[CommandInfo]:
        return self._commands.get(call_id)

    def cancel(self, call_id: str, reason: str = "cancelled") -> bool:
        """Cancel one command through its token.

        Returns:
            True if the command exists, is still running and was not
            cancelled before
        """
        info = self._commands.get(call_id)
        if info is None or info.task.done():
            return False
        if info.token.cancel(reason):
            logger.info(f"Cancelled command: {info}")
            return True
        return False

    def cancel_all(self, reason: str = "cancelled") -> int:
        """Cancel every running command.

        Returns:
            Number of commands cancelled by this call
        """
        cancelled = sum(
            1 for call_id in list(self._commands) if self.cancel(call_id, reason)
        )
        if cancelled > 0:
            logger.info(f"Cancelled {cancelled} active command(s)")
        return cancelled

    def has_active_commands(self) -> bool:
        return any(not info.task.done() for info in self._commands.values())

    @property
    def active_count(self) -> int:
        return sum(1 for info in self._commands.values() if not info.task.done())

    def list_active(self) -> list[CommandInfo]:
        """Running commands, oldest first."""
        active = [info for info in self._commands.values() if not info.task.done()]
        return sorted(active, key=lambda x: x.created_at)

    def add_on_empty_callback(self, callback: Callable[[], None]) -> None:
        self._on_empty_callbacks.append(callback)

    def remove_on_empty_callback(self, callback: Callable[[], None]) -> None:
        if callback in self._on_empty_callbacks:
            self._on_empty_callbacks.remove(callback)

    def cleanup_done(self) -> int:
        """Unregister commands whose task already finished."""
        done_ids = [call_id for call_id, info in self._commands.items() if info.task.done()]
        for call_id in done_ids:
            self.unregister(call_id)
        if done_ids:
            logger.debug(f"Cleaned up {len(done_ids)} finished command(s)")
        return len(done_ids)

    def __len__(self) -> int:
        return len(self._commands)

    def __contains__(self, call_id: str) -> bool:
        return call_id in self._commands
