"""Log handlers for zkcoupon."""

import sys
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

from .core import LogEntry, LogHandler


def _default_format(entry: LogEntry) -> str:
    return f"{entry.timestamp} [{entry.level.value.upper()}] {entry.logger_name}: {entry.message}"


class ConsoleHandler(LogHandler):
    """Console log handler."""

    def __init__(self, stream: Any = None):
        super().__init__()
        self.stream = stream or sys.stderr

    def emit(self, entry: LogEntry) -> None:
        """Emit log entry to console."""
        with self._lock:
            if self.formatter:
                formatted = self.formatter.format(entry)
            else:
                formatted = _default_format(entry)

            self.stream.write(formatted + "\n")
            self.stream.flush()

    def close(self) -> None:
        # The process streams are not ours to close.
        with self._lock:
            if self.stream not in (sys.stdout, sys.stderr):
                self.stream.close()


class FileHandler(LogHandler):
    """Append log entries to a file."""

    def __init__(self, filename: str, encoding: str = "utf-8"):
        super().__init__()
        self.filename = Path(filename)
        self.encoding = encoding
        self._file = None

    def _open(self) -> None:
        if self._file is None:
            self.filename.parent.mkdir(parents=True, exist_ok=True)
            self._file = open(self.filename, "a", encoding=self.encoding)

    def emit(self, entry: LogEntry) -> None:
        """Emit log entry to file."""
        with self._lock:
            self._open()
            if self.formatter:
                formatted = self.formatter.format(entry)
            else:
                formatted = _default_format(entry)
            self._file.write(formatted + "\n")
            self._file.flush()

    def close(self) -> None:
        with self._lock:
            if self._file is not None:
                self._file.close()
                self._file = None


class MemoryHandler(LogHandler):
    """Memory log handler."""

    def __init__(self, max_size: int = 1000):
        super().__init__()
        self.max_size = max_size
        self.buffer: List[Dict[str, Any]] = []

    def emit(self, entry: LogEntry) -> None:
        """Emit log entry to memory."""
        with self._lock:
            record = entry.to_dict()
            if self.formatter:
                record["formatted"] = self.formatter.format(entry)
            self.buffer.append(record)

            # Remove old entries if buffer is full
            if len(self.buffer) > self.max_size:
                self.buffer.pop(0)

    def get_logs(self, level: Optional[str] = None) -> List[Dict[str, Any]]:
        """Get logs from memory, optionally only one level."""
        with self._lock:
            if level is None:
                return self.buffer.copy()
            return [r for r in self.buffer if r["level"] == level]

    def clear_logs(self) -> None:
        """Clear all logs from memory."""
        with self._lock:
            self.buffer.clear()

    def close(self) -> None:
        with self._lock:
            self.buffer.clear()
