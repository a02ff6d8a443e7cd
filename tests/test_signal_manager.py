"""SignalManager tests.

Test coverage:
- SIGINT handling per mode
- Double tap forced exit
- SIGTERM and programmatic shutdown
"""

from __future__ import annotations

import asyncio
import os
import sys
from unittest import mock

import pytest

from shell_sessions.config import SigintMode, reload_config
from shell_sessions.orchestrator import CommandRegistry
from shell_sessions.runtime.cancellation import CancellationToken
from shell_sessions.signal_manager import SignalManager


def registry_with_running_command() -> tuple[CommandRegistry, CancellationToken]:
    registry = CommandRegistry()
    task = mock.MagicMock(spec=asyncio.Task)
    task.done.return_value = False
    token = CancellationToken()
    registry.register("shell-1", "sleep 100", task, token)
    return registry, token


def make_manager(registry: CommandRegistry, **kwargs) -> SignalManager:
    manager = SignalManager(registry, **kwargs)
    manager._shutdown_event = asyncio.Event()
    manager._loop = mock.MagicMock()
    return manager


class TestSigintMode:
    def test_from_string(self):
        assert SigintMode.from_string("cancel") == SigintMode.CANCEL
        assert SigintMode.from_string("Exit") == SigintMode.EXIT
        assert SigintMode.from_string("CANCEL_THEN_EXIT") == SigintMode.CANCEL_THEN_EXIT
        assert SigintMode.from_string("") == SigintMode.CANCEL


class TestInit:
    def test_defaults_from_config(self):
        env = {k: v for k, v in os.environ.items() if not k.startswith("SHS_")}
        with mock.patch.dict(os.environ, env, clear=True):
            reload_config()
            manager = SignalManager(CommandRegistry())
        assert manager.sigint_mode == SigintMode.CANCEL
        assert manager.double_tap_window == 1.0

    def test_custom_values(self):
        manager = SignalManager(
            CommandRegistry(), sigint_mode=SigintMode.EXIT, double_tap_window=2.0
        )
        assert manager.sigint_mode == SigintMode.EXIT
        assert manager.double_tap_window == 2.0


class TestSigintCancel:
    def test_cancels_running_commands(self):
        registry, token = registry_with_running_command()
        manager = make_manager(registry, sigint_mode=SigintMode.CANCEL)

        manager._handle_sigint()

        assert token.cancelled
        assert token.reason == "SIGINT"
        assert manager.is_shutdown_requested is False

    def test_without_commands_shuts_down(self):
        manager = make_manager(CommandRegistry(), sigint_mode=SigintMode.CANCEL)
        manager._handle_sigint()
        assert manager.is_shutdown_requested is True


class TestSigintExit:
    def test_always_shuts_down(self):
        registry, token = registry_with_running_command()
        manager = make_manager(registry, sigint_mode=SigintMode.EXIT)

        manager._handle_sigint()

        assert manager.is_shutdown_requested is True
        assert not token.cancelled


class TestSigintCancelThenExit:
    def test_first_sigint_cancels(self):
        registry, token = registry_with_running_command()
        manager = make_manager(registry, sigint_mode=SigintMode.CANCEL_THEN_EXIT)

        manager._handle_sigint()

        assert token.cancelled
        assert manager._shutdown_requested is True
        manager._loop.call_soon_threadsafe.assert_not_called()

    def test_without_commands_shuts_down(self):
        manager = make_manager(CommandRegistry(), sigint_mode=SigintMode.CANCEL_THEN_EXIT)
        manager._handle_sigint()
        assert manager.is_shutdown_requested is True
        manager._loop.call_soon_threadsafe.assert_called()


class TestDoubleTap:
    def test_double_tap_forces_exit(self):
        registry, _ = registry_with_running_command()
        manager = make_manager(
            registry, sigint_mode=SigintMode.CANCEL_THEN_EXIT, double_tap_window=1.0
        )

        manager._handle_sigint()
        manager._handle_sigint()

        assert manager.is_force_exit is True
        manager._loop.call_soon_threadsafe.assert_called()

    def test_slow_second_sigint_is_not_forced(self):
        registry, _ = registry_with_running_command()
        manager = make_manager(
            registry, sigint_mode=SigintMode.CANCEL_THEN_EXIT, double_tap_window=1.0
        )

        manager._handle_sigint()
        manager._last_sigint_time -= 5.0
        manager._handle_sigint()

        assert manager.is_force_exit is False


class TestSigterm:
    def test_cancels_and_shuts_down(self):
        registry, token = registry_with_running_command()
        manager = make_manager(registry)

        manager._handle_sigterm()

        assert token.cancelled
        assert token.reason == "SIGTERM"
        assert manager.is_shutdown_requested is True


class TestCallbacks:
    def test_on_shutdown_callback(self):
        callback = mock.MagicMock()
        manager = make_manager(
            CommandRegistry(), sigint_mode=SigintMode.EXIT, on_shutdown=callback
        )
        manager._handle_sigint()
        callback.assert_called_once()

    def test_failing_callback_does_not_block_shutdown(self):
        manager = make_manager(
            CommandRegistry(),
            sigint_mode=SigintMode.EXIT,
            on_shutdown=mock.MagicMock(side_effect=OSError("closed")),
        )
        manager._handle_sigint()
        assert manager.is_shutdown_requested is True

    def test_request_graceful_shutdown(self):
        registry, token = registry_with_running_command()
        manager = make_manager(registry)

        manager.request_graceful_shutdown()

        assert token.cancelled
        assert manager.is_shutdown_requested is True


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX signal handling")
class TestStartStop:
    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        manager = SignalManager(CommandRegistry())

        await manager.start()
        assert manager._running is True
        assert manager._loop is not None

        await manager.stop()
        assert manager._running is False

    @pytest.mark.asyncio
    async def test_wait_for_shutdown(self):
        manager = SignalManager(CommandRegistry(), sigint_mode=SigintMode.EXIT)
        await manager.start()
        try:
            manager._handle_sigint()
            await asyncio.wait_for(manager.wait_for_shutdown(), timeout=2)
        finally:
            await manager.stop()
