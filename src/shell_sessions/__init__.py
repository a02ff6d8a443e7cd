"""shell-sessions - shell command execution with background sessions, over MCP.

Environment variables:
    SHS_TARGET_DIR: Launch directory for commands (default: cwd)
    SHS_INTERACTIVE_SHELL: Stream terminal frames (default false)
    SHS_LOG_DEBUG: Debug log to a temp file (default false)

Usage:
    uvx shell-sessions
"""

__version__ = "0.1.0"

from .app import main

__all__ = ["__version__", "main"]
