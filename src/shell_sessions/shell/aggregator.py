"""Output aggregation and binary display policy.

Text-mode chunks are concatenated; interactive-mode frames replace each
other. The two representations never mix within one aggregator. Once binary
content is detected the aggregator stops taking data and its display becomes
one of two fixed placeholders.
"""

from __future__ import annotations

import logging

from ..runtime.binary import is_binary
from ..runtime.events import is_ansi_output
from .types import ShellOutput

__all__ = [
    "BINARY_DETECTED_MESSAGE",
    "OutputAggregator",
    "binary_progress_message",
    "format_memory_usage",
    "is_binary",
]

logger = logging.getLogger(__name__)

BINARY_DETECTED_MESSAGE = "[Binary output detected. Halting stream...]"

_KIB = 1024
_MIB = 1024 * 1024
_GIB = 1024 * 1024 * 1024


def format_memory_usage(num_bytes: int) -> str:
    """Human readable byte count, e.g. ``12.3 KB``."""
    if num_bytes < _MIB:
        return f"{num_bytes / _KIB:.1f} KB"
    if num_bytes < _GIB:
        return f"{num_bytes / _MIB:.1f} MB"
    return f"{num_bytes / _GIB:.2f} GB"


def binary_progress_message(num_bytes: int) -> str:
    return f"[Receiving binary output... {format_memory_usage(num_bytes)} received]"


class OutputAggregator:
    """Accumulates streamed output for one session.

    Attributes:
        interactive: Whether chunks are whole terminal frames
    """

    def __init__(self, interactive: bool = False) -> None:
        self.interactive = interactive
        self._output: ShellOutput = ""
        self._is_binary = False
        self._binary_bytes_received = 0

    @property
    def output(self) -> ShellOutput:
        """Accumulated text, or the latest frame in interactive mode."""
        return self._output

    @property
    def is_binary(self) -> bool:
        return self._is_binary

    @property
    def binary_bytes_received(self) -> int:
        return self._binary_bytes_received

    @property
    def display(self) -> ShellOutput:
        """What the user should see right now."""
        if self._is_binary:
            if self._binary_bytes_received > 0:
                return binary_progress_message(self._binary_bytes_received)
            return BINARY_DETECTED_MESSAGE
        return self._output

    def append(self, chunk: ShellOutput) -> bool:
        """Take one data chunk.

        Returns:
            True if the output changed and the display should refresh
        """
        if self._is_binary:
            return False

        if self.interactive:
            self._output = chunk
            return True

        if isinstance(chunk, str) and isinstance(self._output, str):
            self._output += chunk
            return True

        logger.warning(
            f"Ignoring {'frame' if is_ansi_output(chunk) else type(chunk).__name__} "
            f"chunk on a text-mode stream"
        )
        return False

    def mark_binary(self) -> None:
        """Binary content was detected; sticky for the rest of the session."""
        self._is_binary = True

    def update_binary_progress(self, bytes_received: int) -> None:
        self._is_binary = True
        self._binary_bytes_received = max(self._binary_bytes_received, bytes_received)
