"""shell-sessions application entry point.

Server lifecycle management and the console entry point.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import sys

from mcp.server.stdio import stdio_server

from .config import Config, get_config
from .orchestrator import CommandRegistry
from .runtime.process_runner import ShellExecutionService
from .server import create_server
from .shell.processor import ShellCommandProcessor
from .signal_manager import SignalManager

__all__ = ["build_processor", "run_server", "main", "setup_logging"]

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def build_processor(config: Config, service: ShellExecutionService) -> ShellCommandProcessor:
    return ShellCommandProcessor(
        service,
        target_dir=config.target_dir,
        interactive=config.interactive_shell,
        pty_config=config.pty_config(),
        max_history_output=config.max_history_output,
    )


async def run_server() -> None:
    """Run the MCP server over stdio.

    Runs two concurrent tasks:
    - server_task: the MCP server
    - shutdown_watcher: cancels server_task once the signal manager asks
      for shutdown

    Every process still running at exit (foreground or background) is
    terminated before returning.
    """
    config = get_config()
    logger.info(f"Starting shell-sessions MCP server: {config}")

    service = ShellExecutionService(
        shell=config.shell,
        term_timeout=config.term_timeout,
        kill_timeout=config.kill_timeout,
    )
    processor = build_processor(config, service)
    registry = CommandRegistry()
    server_task: asyncio.Task | None = None
    shutdown_watcher: asyncio.Task | None = None

    def on_shutdown() -> None:
        logger.info("Shutdown callback triggered")
        # Unblocks the stdio reader so the server can return
        try:
            sys.stdin.close()
        except OSError as e:
            logger.debug(f"Error closing stdin: {e}")

    signal_manager = SignalManager(registry=registry, on_shutdown=on_shutdown)
    server = create_server(processor, registry, config)

    async def _serve() -> None:
        logger.debug("Starting MCP server with stdio transport")
        async with stdio_server() as (read_stream, write_stream):
            await server.run(read_stream, write_stream, server.create_initialization_options())
        logger.debug("MCP server completed normally")

    async def _watch_shutdown() -> None:
        await signal_manager.wait_for_shutdown()
        logger.info("Shutdown signal received, cancelling server task...")
        if server_task and not server_task.done():
            server_task.cancel()

    try:
        await signal_manager.start()
        logger.info(
            f"Signal manager started (mode={signal_manager.sigint_mode.value}, "
            f"double_tap_window={signal_manager.double_tap_window}s)"
        )

        server_task = asyncio.create_task(_serve(), name="mcp-server")
        shutdown_watcher = asyncio.create_task(_watch_shutdown(), name="shutdown-watcher")

        try:
            await server_task
        except asyncio.CancelledError:
            logger.info("Server task cancelled by shutdown signal")

    finally:
        if shutdown_watcher and not shutdown_watcher.done():
            shutdown_watcher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await shutdown_watcher

        await signal_manager.stop()
        processor.view.close()
        await service.aclose()
        logger.info("run_server: cleanup completed")

        if signal_manager.is_force_exit:
            logger.warning("Force exit requested, terminating with exit code 130")
            sys.exit(130)  # 128 + SIGINT(2)


def setup_logging(config: Config) -> None:
    """stderr at INFO by default; a temp file at DEBUG with SHS_LOG_DEBUG."""
    if config.log_debug and config.log_file:
        handler: logging.Handler = logging.FileHandler(config.log_file, encoding="utf-8")
        log_level = logging.DEBUG
    else:
        # stdout carries the MCP protocol, logs go to stderr
        handler = logging.StreamHandler(sys.stderr)
        log_level = logging.INFO
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    # Third-party libraries stay at WARNING
    logging.basicConfig(level=logging.WARNING, handlers=[handler])
    logging.getLogger("shell_sessions").setLevel(log_level)


def main() -> None:
    """Console entry point."""
    setup_logging(get_config())
    asyncio.run(run_server())


if __name__ == "__main__":
    main()
