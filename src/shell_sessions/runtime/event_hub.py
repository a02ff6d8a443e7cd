"""Per-process publish/subscribe channel.

shell-sessions runtime module v0.1.0

The hub is the only path by which process events reach consumers. It
guarantees:
- FIFO delivery per hub (events published from inside a handler are
  queued behind the current delivery instead of nesting)
- independent subscribers per pid (a foreground display and a background
  registry listener both see every event)
- late exit listeners still learn about an exit that already happened
"""

from __future__ import annotations

import logging
from collections import OrderedDict, deque
from typing import Callable

from .events import ExitEvent, ShellEvent
from .types import ExitHandler, OutputEventHandler, Unsubscribe

__all__ = ["EventHub"]

logger = logging.getLogger(__name__)

# Number of exit statuses remembered for late on_exit() registrations
MAX_REMEMBERED_EXITS = 256


class EventHub:
    """Publish/subscribe keyed by process id.

    Example:
        hub = EventHub()
        unsubscribe = hub.subscribe(pid, lambda event: print(event.type))
        hub.on_exit(pid, lambda code, sig: print("exit", code))

        hub.publish(pid, DataEvent(chunk="hello"))
        hub.publish(pid, ExitEvent(exit_code=0))
    """

    def __init__(self) -> None:
        self._subscribers: dict[int, list[OutputEventHandler]] = {}
        self._exit_handlers: dict[int, list[ExitHandler]] = {}
        self._exits: OrderedDict[int, ExitEvent] = OrderedDict()
        self._queue: deque[tuple[int, ShellEvent]] = deque()
        self._dispatching = False

    # =========================================================================
    # Subscription
    # =========================================================================

    def subscribe(self, pid: int, handler: OutputEventHandler) -> Unsubscribe:
        """Receive every output event for ``pid``.

        Subscribing to a pid that already exited is a no-op.
        """
        if pid in self._exits:
            logger.debug(f"subscribe() after exit ignored: pid={pid}")
            return lambda: None

        handlers = self._subscribers.setdefault(pid, [])
        handlers.append(handler)
        return self._remover(self._subscribers, pid, handler)

    def on_exit(self, pid: int, handler: ExitHandler) -> Unsubscribe:
        """Receive ``(exit_code, signal)`` once ``pid`` exits.

        If the process already exited the handler runs immediately.
        """
        exited = self._exits.get(pid)
        if exited is not None:
            handler(exited.exit_code, exited.signal)
            return lambda: None

        handlers = self._exit_handlers.setdefault(pid, [])
        handlers.append(handler)
        return self._remover(self._exit_handlers, pid, handler)

    @staticmethod
    def _remover(table: dict[int, list], pid: int, handler: Callable) -> Unsubscribe:
        def unsubscribe() -> None:
            handlers = table.get(pid)
            if handlers and handler in handlers:
                handlers.remove(handler)
                if not handlers:
                    del table[pid]

        return unsubscribe

    # =========================================================================
    # Publishing
    # =========================================================================

    def publish(self, pid: int, event: ShellEvent) -> None:
        """Deliver ``event`` to every handler registered for ``pid``.

        Handler exceptions propagate to the caller; events still queued at
        that point are dropped.
        """
        self._queue.append((pid, event))
        if self._dispatching:
            return

        self._dispatching = True
        try:
            while self._queue:
                queued_pid, queued_event = self._queue.popleft()
                self._deliver(queued_pid, queued_event)
        except BaseException:
            self._queue.clear()
            raise
        finally:
            self._dispatching = False

    def _deliver(self, pid: int, event: ShellEvent) -> None:
        if isinstance(event, ExitEvent):
            self._remember_exit(pid, event)
            # Stream subscribers are done once the process is gone
            self._subscribers.pop(pid, None)
            for handler in self._exit_handlers.pop(pid, []):
                handler(event.exit_code, event.signal)
            return

        # Snapshot so handlers may unsubscribe while being called
        for handler in list(self._subscribers.get(pid, ())):
            handler(event)

    def forget(self, pid: int) -> None:
        """Drop the remembered exit of ``pid`` before a new process reuses it."""
        if self._exits.pop(pid, None) is not None:
            logger.debug(f"Forgot previous exit of reused pid={pid}")

    def _remember_exit(self, pid: int, event: ExitEvent) -> None:
        self._exits[pid] = event
        self._exits.move_to_end(pid)
        while len(self._exits) > MAX_REMEMBERED_EXITS:
            self._exits.popitem(last=False)

    # =========================================================================
    # Queries
    # =========================================================================

    def has_exited(self, pid: int) -> bool:
        return pid in self._exits

    def exit_status(self, pid: int) -> ExitEvent | None:
        """Exit event for ``pid`` if it is still remembered."""
        return self._exits.get(pid)

    def subscriber_count(self, pid: int) -> int:
        return len(self._subscribers.get(pid, ()))
