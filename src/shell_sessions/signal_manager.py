"""Signal management.

Turns OS signals into command-level operations:
- SIGINT: cancel running commands (instead of killing the server)
- SIGTERM: graceful shutdown (cancel everything, clean up, exit)

Configured through:
- SHS_SIGINT_MODE: cancel | exit | cancel_then_exit
- SHS_SIGINT_DOUBLE_TAP_WINDOW: double tap window in seconds
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
import time
from typing import Callable, Optional

from .config import SigintMode, get_config
from .orchestrator import CommandRegistry

__all__ = ["SignalManager", "SigintMode"]

logger = logging.getLogger(__name__)


class SignalManager:
    """Maps SIGINT/SIGTERM onto the command registry.

    Example:
        ```python
        registry = CommandRegistry()
        signal_manager = SignalManager(registry)

        async def main():
            await signal_manager.start()
            try:
                await serve()
            finally:
                await signal_manager.stop()
        ```

    Attributes:
        registry: Running foreground commands
        sigint_mode: SIGINT handling mode
        double_tap_window: Seconds within which a second SIGINT forces exit
    """

    def __init__(
        self,
        registry: CommandRegistry,
        sigint_mode: Optional[SigintMode] = None,
        double_tap_window: Optional[float] = None,
        on_shutdown: Optional[Callable[[], None]] = None,
    ) -> None:
        """Initialize the manager.

        Args:
            registry: Running foreground commands
            sigint_mode: SIGINT handling mode (default from config)
            double_tap_window: Double tap window (default from config)
            on_shutdown: Called when shutdown is requested
        """
        self.registry = registry

        config = get_config()
        self.sigint_mode = sigint_mode if sigint_mode is not None else config.sigint_mode
        self.double_tap_window = (
            double_tap_window if double_tap_window is not None else config.sigint_double_tap_window
        )
        self._on_shutdown = on_shutdown

        self._last_sigint_time: float = 0.0
        self._shutdown_requested: bool = False
        self._force_exit: bool = False
        self._shutdown_event: Optional[asyncio.Event] = None
        self._original_sigint_handler = None
        self._running: bool = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def is_shutdown_requested(self) -> bool:
        return self._shutdown_requested

    @property
    def is_force_exit(self) -> bool:
        """A double SIGINT asked for an immediate exit."""
        return self._force_exit

    async def start(self) -> None:
        """Install the signal handlers. Must run inside the event loop."""
        if self._running:
            logger.warning("SignalManager already running")
            return

        self._loop = asyncio.get_running_loop()
        self._shutdown_event = asyncio.Event()
        self._running = True

        if sys.platform != "win32":
            self._loop.add_signal_handler(signal.SIGINT, self._handle_sigint)
            self._loop.add_signal_handler(signal.SIGTERM, self._handle_sigterm)
            logger.debug(
                f"Signal handlers installed (mode={self.sigint_mode.value}, "
                f"double_tap_window={self.double_tap_window}s)"
            )
        else:
            self._original_sigint_handler = signal.signal(
                signal.SIGINT,
                lambda sig, frame: self._loop.call_soon_threadsafe(self._handle_sigint),
            )
            logger.debug(f"SIGINT handler installed on Windows (mode={self.sigint_mode.value})")

    async def stop(self) -> None:
        """Restore the original signal handlers."""
        if not self._running:
            return

        self._running = False

        if sys.platform != "win32" and self._loop:
            try:
                self._loop.remove_signal_handler(signal.SIGINT)
                self._loop.remove_signal_handler(signal.SIGTERM)
            except (RuntimeError, ValueError) as e:
                logger.debug(f"Error removing signal handlers: {e}")
        elif sys.platform == "win32" and self._original_sigint_handler is not None:
            try:
                signal.signal(signal.SIGINT, self._original_sigint_handler)
            except (OSError, ValueError) as e:
                logger.debug(f"Error restoring SIGINT handler: {e}")

        logger.debug("Signal handlers removed")

    async def wait_for_shutdown(self) -> None:
        """Return once SIGTERM (or a qualifying SIGINT) arrived."""
        if self._shutdown_event:
            await self._shutdown_event.wait()

    def _handle_sigint(self) -> None:
        """Cancel running commands or shut down, depending on the mode.

        A second SIGINT within the double tap window after shutdown was
        requested forces exit.
        """
        current_time = time.time()
        time_since_last = current_time - self._last_sigint_time
        self._last_sigint_time = current_time

        if time_since_last < self.double_tap_window and self._shutdown_requested:
            logger.warning("Double SIGINT detected, forcing shutdown")
            self._force_shutdown()
            return

        if self.sigint_mode == SigintMode.EXIT:
            logger.info("SIGINT received (mode=exit), requesting shutdown")
            self._request_shutdown()

        elif self.sigint_mode == SigintMode.CANCEL:
            if self.registry.has_active_commands():
                count = self.registry.cancel_all("SIGINT")
                logger.info(f"SIGINT received (mode=cancel), cancelled {count} command(s)")
            else:
                logger.info("SIGINT received (mode=cancel), no active commands, requesting shutdown")
                self._request_shutdown()

        elif self.sigint_mode == SigintMode.CANCEL_THEN_EXIT:
            if self.registry.has_active_commands():
                count = self.registry.cancel_all("SIGINT")
                logger.info(
                    f"SIGINT received (mode=cancel_then_exit), cancelled {count} command(s). "
                    f"Press Ctrl+C again within {self.double_tap_window}s to exit."
                )
                # Armed for the double tap, no actual shutdown yet
                self._shutdown_requested = True
            else:
                logger.info(
                    "SIGINT received (mode=cancel_then_exit), no active commands, requesting shutdown"
                )
                self._request_shutdown()

    def _handle_sigterm(self) -> None:
        logger.info("SIGTERM received, initiating graceful shutdown")
        self._cancel_active("SIGTERM")
        self._request_shutdown()

    def _cancel_active(self, reason: str) -> None:
        if self.registry.has_active_commands():
            count = self.registry.cancel_all(reason)
            logger.info(f"Cancelled {count} active command(s) ({reason})")

    def _request_shutdown(self) -> None:
        self._shutdown_requested = True
        self._run_shutdown_callback()
        if self._shutdown_event and self._loop:
            self._loop.call_soon_threadsafe(self._shutdown_event.set)

    def _force_shutdown(self) -> None:
        """Flag a forced exit; run_server exits once cleanup finished."""
        logger.warning("Forcing immediate shutdown")
        self._force_exit = True
        self._cancel_active("forced shutdown")
        self._request_shutdown()

    def _run_shutdown_callback(self) -> None:
        if self._on_shutdown:
            try:
                self._on_shutdown()
            except Exception as e:
                logger.warning(f"Error in shutdown callback: {e}")

    def request_graceful_shutdown(self) -> None:
        """Trigger the shutdown sequence from code."""
        logger.info("Programmatic shutdown requested")
        self._cancel_active("shutdown")
        self._request_shutdown()
