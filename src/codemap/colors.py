"""ANSI colors for codemap's terminal output.

Colors are on only when stdout is a terminal. ``NO_COLOR``
(https://no-color.org/) turns them off and ``FORCE_COLOR`` turns them on.

Example:
    >>> c = get_colors()
    >>> print(c.success("✓") + " Snapshot " + c.cyan("v3"))
"""

import os
import sys
from typing import Dict, Optional

from .models import DiffStatus


class Colors:
    """Wraps text in ANSI codes when enabled.

    Attributes:
        enabled: Whether escape codes are emitted.
    """

    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    MAGENTA = "\033[35m"
    CYAN = "\033[36m"

    STATUS_CODES: Dict[DiffStatus, tuple] = {
        DiffStatus.ADDED: (GREEN,),
        DiffStatus.MODIFIED: (YELLOW,),
        DiffStatus.MOVED: (MAGENTA,),
        DiffStatus.REMOVED: (RED,),
        DiffStatus.UNCHANGED: (DIM,),
    }

    def __init__(self, enabled: Optional[bool] = None):
        self.enabled = self._should_enable_colors() if enabled is None else enabled

    @staticmethod
    def _should_enable_colors() -> bool:
        if os.environ.get("NO_COLOR"):
            return False
        if os.environ.get("FORCE_COLOR"):
            return True
        if not hasattr(sys.stdout, "isatty") or not sys.stdout.isatty():
            return False
        return os.environ.get("TERM", "") != "dumb"

    def _colorize(self, text: str, *codes: str) -> str:
        if not self.enabled:
            return text
        return f"{''.join(codes)}{text}{self.RESET}"

    def status(self, status: DiffStatus, text: str) -> str:
        """Color ``text`` by diff status (added green, modified yellow...)."""
        return self._colorize(text, *self.STATUS_CODES.get(status, ()))

    def cyan(self, text: str) -> str:
        """Paths and versions."""
        return self._colorize(text, self.CYAN)

    def bold(self, text: str) -> str:
        return self._colorize(text, self.BOLD)

    def success(self, text: str) -> str:
        return self._colorize(text, self.BOLD, self.GREEN)

    def error(self, text: str) -> str:
        return self._colorize(text, self.BOLD, self.RED)

    def warning(self, text: str) -> str:
        return self._colorize(text, self.YELLOW)


def get_colors(no_color: bool = False) -> Colors:
    """Return a Colors instance; ``no_color`` forces colors off."""
    if no_color:
        return Colors(enabled=False)
    return Colors()
