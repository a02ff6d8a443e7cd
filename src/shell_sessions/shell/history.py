"""History entries for finished shell commands."""

from __future__ import annotations

import logging
from typing import Protocol

from .types import HistoryEntry

__all__ = [
    "MAX_OUTPUT_LENGTH",
    "TRUNCATION_MARKER",
    "HistoryRecorder",
    "InMemoryHistory",
    "format_shell_history_entry",
    "truncate_for_history",
]

logger = logging.getLogger(__name__)

MAX_OUTPUT_LENGTH = 10000
TRUNCATION_MARKER = "\n... (truncated)"


class HistoryRecorder(Protocol):
    """Receives role-tagged transcript entries."""

    def append_history(self, entry: HistoryEntry) -> None: ...


def truncate_for_history(text: str, limit: int = MAX_OUTPUT_LENGTH) -> str:
    if len(text) > limit:
        return text[:limit] + TRUNCATION_MARKER
    return text


def format_shell_history_entry(
    command: str,
    result_text: str,
    limit: int = MAX_OUTPUT_LENGTH,
) -> HistoryEntry:
    """Build the transcript entry describing a finished command.

    Args:
        command: Raw command as typed by the user
        result_text: Finalized output (status prefix and warnings included)
        limit: Maximum characters of output kept

    Returns:
        HistoryEntry with role ``user``
    """
    content = truncate_for_history(result_text, limit)
    text = (
        "I ran the following shell command:\n"
        f"```sh\n{command}\n```\n\n"
        "This produced the following result:\n"
        f"```\n{content}\n```"
    )
    return HistoryEntry(role="user", text=text)


class InMemoryHistory:
    """List-backed history recorder."""

    def __init__(self) -> None:
        self.entries: list[HistoryEntry] = []

    def append_history(self, entry: HistoryEntry) -> None:
        logger.debug(f"History entry added role={entry.role} length={len(entry.text)}")
        self.entries.append(entry)

    def recent(self, limit: int | None = None) -> list[HistoryEntry]:
        if limit is None or limit <= 0:
            return list(self.entries)
        return self.entries[-limit:]

    def clear(self) -> None:
        self.entries.clear()

    def __len__(self) -> int:
        return len(self.entries)
