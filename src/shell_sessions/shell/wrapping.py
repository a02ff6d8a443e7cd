"""Working-directory capture for shell commands.

Each command runs in a fresh shell, so a ``cd`` inside it cannot affect
later commands. To tell the user about that, POSIX commands are wrapped so
that the shell writes its final directory to a temporary marker file after
the user command finishes, while keeping the user command's exit code:

    { <command>; }; __code=$?; pwd > "<marker>"; exit $__code

Windows commands run unwrapped.
"""

from __future__ import annotations

import logging
import os
import secrets
import tempfile
from pathlib import Path

__all__ = [
    "MarkerFile",
    "wrap_command",
    "prepare_command",
    "directory_change_warning",
]

logger = logging.getLogger(__name__)


def wrap_command(command: str, marker_path: str | os.PathLike[str]) -> str:
    """Wrap ``command`` so its final working directory lands in ``marker_path``.

    Args:
        command: Raw user command
        marker_path: File the shell writes ``pwd`` into

    Returns:
        Wrapped command text ending with ``exit $__code``
    """
    command = command.strip()
    if not command.endswith(";") and not command.endswith("&"):
        command += ";"
    return f'{{ {command} }}; __code=$?; pwd > "{marker_path}"; exit $__code'


class MarkerFile:
    """Uniquely named temp file that carries the final directory out of a shell.

    The file is deleted when the context exits, on every path.

    Example:
        with MarkerFile() as marker:
            command = wrap_command(raw, marker.path)
            ...
            final_dir = marker.read()
    """

    def __init__(self, directory: str | None = None) -> None:
        name = f"shell_pwd_{secrets.token_hex(6)}.tmp"
        self.path = Path(directory or tempfile.gettempdir()) / name

    def read(self) -> str | None:
        """Trimmed marker content, or None if the shell never wrote it."""
        try:
            return self.path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None

    def cleanup(self) -> None:
        try:
            self.path.unlink()
            logger.debug(f"Removed marker file {self.path}")
        except FileNotFoundError:
            pass

    def __enter__(self) -> "MarkerFile":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.cleanup()


def prepare_command(raw_command: str, is_windows: bool) -> tuple[str, MarkerFile | None]:
    """Return the command to execute and its marker file (None on Windows)."""
    if is_windows:
        return raw_command, None

    marker = MarkerFile()
    return wrap_command(raw_command, marker.path), marker


def directory_change_warning(final_dir: str | None, launch_dir: str) -> str | None:
    """Warning text when the command ended in a different directory."""
    if not final_dir or final_dir == launch_dir:
        return None
    return (
        f"WARNING: shell mode is stateless; the directory change to "
        f"'{final_dir}' will not persist."
    )
