"""Binary content classification."""

from __future__ import annotations

__all__ = ["MAX_SNIFF_SIZE", "is_binary"]

# Bytes inspected at the start of a stream before it is trusted as text
MAX_SNIFF_SIZE = 4096


def is_binary(data: bytes | None, sample_size: int = 512) -> bool:
    """Classify raw output as binary.

    A NUL byte within the first ``sample_size`` bytes marks the data as
    binary. Empty or missing data is text.
    """
    if not data:
        return False
    return b"\x00" in data[:sample_size]
