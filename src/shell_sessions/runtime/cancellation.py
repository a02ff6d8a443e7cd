"""Cancellation token shared between a caller and a running command."""

from __future__ import annotations

import logging
from typing import Callable

__all__ = ["CancellationToken"]

logger = logging.getLogger(__name__)


class CancellationToken:
    """One-shot cancellation signal with listeners.

    Listeners registered before cancellation run exactly once when
    ``cancel()`` is first called; listeners registered afterwards run
    immediately. All operations are synchronous and must be called from
    the event loop thread.

    Example:
        token = CancellationToken()
        remove = token.add_listener(lambda: print("aborting"))
        token.cancel()   # prints once
        token.cancel()   # no-op
        remove()
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._reason: str | None = None
        self._listeners: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        """Whether ``cancel()`` has been called."""
        return self._cancelled

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str | None = None) -> bool:
        """Cancel the token.

        Args:
            reason: Optional human readable reason, kept for logging

        Returns:
            True if this call performed the cancellation, False if the
            token was already cancelled
        """
        if self._cancelled:
            return False

        self._cancelled = True
        self._reason = reason
        listeners, self._listeners = self._listeners, []
        logger.debug(f"Cancellation requested ({reason or 'no reason'}), {len(listeners)} listener(s)")

        for listener in listeners:
            self._invoke(listener)
        return True

    def add_listener(self, listener: Callable[[], None]) -> Callable[[], None]:
        """Register a listener and return a function that removes it."""
        if self._cancelled:
            self._invoke(listener)
            return lambda: None

        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    @staticmethod
    def _invoke(listener: Callable[[], None]) -> None:
        # Best-effort: one failing listener must not stop the others
        try:
            listener()
        except Exception as e:
            logger.error(f"Cancellation listener failed: {e}", exc_info=True)

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self._cancelled}, listeners={len(self._listeners)})"
