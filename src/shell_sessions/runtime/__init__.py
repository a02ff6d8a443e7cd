"""Runtime module for shell process execution and event streaming.

This module provides isolated process execution with typed event
delivery, cancellation and reliable termination.
"""

from __future__ import annotations

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
    ShellEvent,
    ShellOutputEvent,
    UnhandledEventError,
    is_ansi_output,
)
from .process_runner import IS_WINDOWS, ShellExecutionService, build_shell_argv
from .types import ExecResult, ExecutionCapability, ExecutionHandle, PtyConfig

__all__ = [
    "IS_WINDOWS",
    "MAX_SNIFF_SIZE",
    "AnsiOutput",
    "AnsiToken",
    "BinaryDetectedEvent",
    "BinaryProgressEvent",
    "CancellationToken",
    "DataEvent",
    "EventHub",
    "ExecResult",
    "ExecutionCapability",
    "ExecutionHandle",
    "ExitEvent",
    "PtyConfig",
    "ShellEvent",
    "ShellExecutionService",
    "ShellOutputEvent",
    "UnhandledEventError",
    "build_shell_argv",
    "is_ansi_output",
    "is_binary",
]
