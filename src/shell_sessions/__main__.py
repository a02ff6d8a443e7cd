"""shell-sessions entry point.

Supports: python -m shell_sessions
"""

from .app import main

if __name__ == "__main__":
    main()
