"""Shell command orchestration: foreground sessions and background shells."""

from __future__ import annotations

from .aggregator import (
    BINARY_DETECTED_MESSAGE,
    OutputAggregator,
    binary_progress_message,
    format_memory_usage,
    is_binary,
)
from .background import BackgroundRegistry, BackgroundView, exit_code_from
from .foreground import ForegroundSession, derive_status
from .history import (
    MAX_OUTPUT_LENGTH,
    HistoryRecorder,
    InMemoryHistory,
    format_shell_history_entry,
    truncate_for_history,
)
from .processor import ShellCommandProcessor
from .types import (
    BINARY_RESULT_MESSAGE,
    CANCELLED_MESSAGE,
    NO_BACKGROUND_SHELLS_MESSAGE,
    NO_OUTPUT_MESSAGE,
    BackgroundShell,
    DisplayUpdate,
    ForegroundResult,
    HistoryEntry,
    ShellStatus,
    ToolCallStatus,
    background_message,
)
from .wrapping import MarkerFile, directory_change_warning, prepare_command, wrap_command

__all__ = [
    "BINARY_DETECTED_MESSAGE",
    "BINARY_RESULT_MESSAGE",
    "CANCELLED_MESSAGE",
    "MAX_OUTPUT_LENGTH",
    "NO_BACKGROUND_SHELLS_MESSAGE",
    "NO_OUTPUT_MESSAGE",
    "BackgroundRegistry",
    "BackgroundShell",
    "BackgroundView",
    "DisplayUpdate",
    "ForegroundResult",
    "ForegroundSession",
    "HistoryEntry",
    "HistoryRecorder",
    "InMemoryHistory",
    "MarkerFile",
    "OutputAggregator",
    "ShellCommandProcessor",
    "ShellStatus",
    "ToolCallStatus",
    "background_message",
    "binary_progress_message",
    "derive_status",
    "directory_change_warning",
    "exit_code_from",
    "format_memory_usage",
    "format_shell_history_entry",
    "is_binary",
    "prepare_command",
    "truncate_for_history",
    "wrap_command",
]
