"""
Output sinks for human-readable status and error lines.

The scheduler only relies on ``write(line)``; the level helpers add a
prefix (and, on terminals, a colour) in front of the message.
"""

import sys
import threading
from typing import List, Optional, TextIO

_COLORS = {
    'INFO': '\033[94m',
    'SUCCESS': '\033[92m',
    'WARNING': '\033[93m',
    'ERROR': '\033[91m',
}
_RESET = '\033[0m'


class Output:
    """Base output sink. Subclasses implement ``write``."""

    def write(self, line: str):
        raise NotImplementedError

    def _format(self, level: str, message: str) -> str:
        return f"{level}: {message}"

    def info(self, message: str):
        self.write(self._format('INFO', message))

    def success(self, message: str):
        self.write(self._format('SUCCESS', message))

    def warning(self, message: str):
        self.write(self._format('WARNING', message))

    def error(self, message: str):
        self.write(self._format('ERROR', message))


class ConsoleOutput(Output):
    """Writes lines to a text stream (stdout by default)."""

    def __init__(self, stream: Optional[TextIO] = None, color: Optional[bool] = None):
        self.stream = stream or sys.stdout
        if color is None:
            color = hasattr(self.stream, 'isatty') and self.stream.isatty()
        self.color = color
        self._lock = threading.Lock()

    def _format(self, level: str, message: str) -> str:
        if self.color:
            return f"\033[1m{_COLORS[level]}{level}{_RESET}: {message}"
        return super()._format(level, message)

    def write(self, line: str):
        # Workers write concurrently; keep lines whole
        with self._lock:
            self.stream.write(line + '\n')
            self.stream.flush()


class BufferedOutput(Output):
    """Collects lines in memory."""

    def __init__(self):
        self.lines: List[str] = []
        self._lock = threading.Lock()

    def write(self, line: str):
        with self._lock:
            self.lines.append(line)

    def matching(self, text: str) -> List[str]:
        """Lines containing ``text``."""
        with self._lock:
            return [line for line in self.lines if text in line]
