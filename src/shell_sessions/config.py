"""shell-sessions environment configuration.

Environment variables:
    SHS_TARGET_DIR: Directory commands are launched in
        - Default: the server's working directory

    SHS_SHELL: Shell executable
        - Default: bash if found, else /bin/sh (powershell.exe on Windows)

    SHS_INTERACTIVE_SHELL: Stream whole terminal frames instead of text
        - true/1/yes = on
        - false/0/no = off (default)

    SHS_TERMINAL_WIDTH / SHS_TERMINAL_HEIGHT: Frame size for interactive runs
        - Default 80 x 24

    SHS_MAX_HISTORY_OUTPUT: Characters of output kept in history entries
        - Default 10000

    SHS_TERM_TIMEOUT / SHS_KILL_TIMEOUT: Termination timeouts (seconds)
        - Default 2.0 / 1.0

    SHS_LOG_DEBUG: Debug logging
        - true/1/yes = on (DEBUG log written to a temp file)
        - false/0/no = off (default, log to stderr)

    SHS_SIGINT_MODE: SIGINT (Ctrl+C) handling
        - cancel = cancel running commands, exit when there are none (default)
        - exit = exit immediately
        - cancel_then_exit = cancel on the first SIGINT, exit on the second

    SHS_SIGINT_DOUBLE_TAP_WINDOW: Double tap window (seconds)
        - Default 1.0, clamped to 0.1-10
        - A second Ctrl+C inside the window forces exit
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path

from .runtime.types import PtyConfig

__all__ = ["Config", "SigintMode", "load_config", "get_config", "reload_config"]


class SigintMode(Enum):
    """SIGINT handling mode.

    - CANCEL: cancel running commands (exit if there are none)
    - EXIT: exit immediately
    - CANCEL_THEN_EXIT: cancel first, exit on the second SIGINT
    """

    CANCEL = "cancel"
    EXIT = "exit"
    CANCEL_THEN_EXIT = "cancel_then_exit"

    @classmethod
    def from_string(cls, value: str) -> "SigintMode":
        """Parse a mode name; unknown values fall back to CANCEL."""
        value = value.lower().strip()
        for mode in cls:
            if mode.value == value:
                return mode
        return cls.CANCEL


def _parse_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_int(value: str | None, default: int, minimum: int = 1) -> int:
    if not value:
        return default
    try:
        parsed = int(value)
    except ValueError:
        return default
    return parsed if parsed >= minimum else default


def _parse_float(value: str | None, default: float) -> float:
    if not value:
        return default
    try:
        parsed = float(value)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _parse_double_tap_window(value: str | None) -> float:
    if not value:
        return 1.0
    try:
        window = float(value)
        return max(0.1, min(window, 10.0))
    except ValueError:
        return 1.0


def _parse_sigint_mode(value: str | None) -> SigintMode:
    if not value:
        return SigintMode.CANCEL
    return SigintMode.from_string(value)


def _generate_log_file_path() -> str:
    """Timestamped log file under ``<tempdir>/shell-sessions``."""
    log_dir = Path(tempfile.gettempdir()) / "shell-sessions"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"shs_debug_{timestamp}.log"

    return str(log_file.resolve())


@dataclass
class Config:
    """shell-sessions configuration.

    Attributes:
        target_dir: Launch directory for commands
        shell: Shell executable (None = auto-detect)
        interactive_shell: Stream whole terminal frames
        terminal_width: Frame columns
        terminal_height: Frame rows
        max_history_output: History truncation limit
        term_timeout: Seconds to wait after SIGTERM
        kill_timeout: Seconds to wait after SIGKILL
        log_debug: Debug logging to a temp file
        log_file: Log file path (set when log_debug is on)
        sigint_mode: SIGINT handling mode
        sigint_double_tap_window: Double tap window in seconds
    """

    target_dir: str = ""
    shell: str | None = None
    interactive_shell: bool = False
    terminal_width: int = 80
    terminal_height: int = 24
    max_history_output: int = 10000
    term_timeout: float = 2.0
    kill_timeout: float = 1.0
    log_debug: bool = False
    log_file: str | None = None
    sigint_mode: SigintMode = SigintMode.CANCEL
    sigint_double_tap_window: float = 1.0

    def pty_config(self) -> PtyConfig:
        return PtyConfig(
            terminal_width=self.terminal_width,
            terminal_height=self.terminal_height,
        )

    def __repr__(self) -> str:
        return (
            f"Config(target_dir={self.target_dir}, "
            f"shell={self.shell or 'auto'}, "
            f"interactive_shell={self.interactive_shell}, "
            f"terminal={self.terminal_width}x{self.terminal_height}, "
            f"max_history_output={self.max_history_output}, "
            f"term_timeout={self.term_timeout}, "
            f"kill_timeout={self.kill_timeout}, "
            f"log_debug={self.log_debug}, "
            f"log_file={self.log_file}, "
            f"sigint_mode={self.sigint_mode.value}, "
            f"sigint_double_tap_window={self.sigint_double_tap_window})"
        )


def load_config() -> Config:
    """Load configuration from the environment."""
    env = os.environ
    log_debug = _parse_bool(env.get("SHS_LOG_DEBUG"), default=False)
    target_dir = env.get("SHS_TARGET_DIR", "").strip() or os.getcwd()

    return Config(
        target_dir=os.path.abspath(os.path.expanduser(target_dir)),
        shell=env.get("SHS_SHELL", "").strip() or None,
        interactive_shell=_parse_bool(env.get("SHS_INTERACTIVE_SHELL"), default=False),
        terminal_width=_parse_int(env.get("SHS_TERMINAL_WIDTH"), 80),
        terminal_height=_parse_int(env.get("SHS_TERMINAL_HEIGHT"), 24),
        max_history_output=_parse_int(env.get("SHS_MAX_HISTORY_OUTPUT"), 10000),
        term_timeout=_parse_float(env.get("SHS_TERM_TIMEOUT"), 2.0),
        kill_timeout=_parse_float(env.get("SHS_KILL_TIMEOUT"), 1.0),
        log_debug=log_debug,
        log_file=_generate_log_file_path() if log_debug else None,
        sigint_mode=_parse_sigint_mode(env.get("SHS_SIGINT_MODE")),
        sigint_double_tap_window=_parse_double_tap_window(
            env.get("SHS_SIGINT_DOUBLE_TAP_WINDOW")
        ),
    )


# Lazily loaded global instance
_config: Config | None = None


def get_config() -> Config:
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """Reload from the environment (used by tests)."""
    global _config
    _config = load_config()
    return _config
