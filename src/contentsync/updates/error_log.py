"""
Bounded error log for the update engine.

Entries are kept in a ring buffer (oldest evicted first), emitted to the
standard logger at a level that depends on the error type, and mirrored to an
optional durable sink. Sink failures are logged and otherwise ignored.
"""

import json
import logging
import os
import time
import uuid
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from contentsync.config.logging_config import get_logger
from contentsync.updates.errors import ErrorType

log = get_logger(__name__)

_LOG_LEVELS: dict[ErrorType, int] = {
    ErrorType.ROLLBACK_SUCCESS: logging.INFO,
    ErrorType.CONTAINER_RECREATED: logging.INFO,
    ErrorType.CORRUPTION_DETECTED: logging.WARNING,
    ErrorType.EMERGENCY_CLEANUP: logging.WARNING,
    ErrorType.ROLLBACK_DISABLED: logging.WARNING,
    ErrorType.ROLLBACK_NO_SNAPSHOT: logging.WARNING,
    ErrorType.ROLLBACK_MAX_ATTEMPTS: logging.WARNING,
    ErrorType.ROLLBACK_VERIFICATION_FAILED: logging.WARNING,
    ErrorType.GLOBAL_LOCK_ACTIVE: logging.WARNING,
}


def log_level_for(error_type: ErrorType) -> int:
    return _LOG_LEVELS.get(error_type, logging.ERROR)


@dataclass
class ErrorLogEntry:
    type: ErrorType
    message: str
    context: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)
    error_id: str = field(default_factory=lambda: uuid.uuid4().hex[:9])

    @property
    def resource_id(self) -> str | None:
        return self.context.get("resource_id")

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["type"] = self.type.value
        return data


class ErrorSink(ABC):
    """Durable mirror for error log entries."""

    @abstractmethod
    def write(self, entry: ErrorLogEntry) -> None: ...

    def clear(self) -> None:
        """Drop everything mirrored so far. Optional."""


class JsonlErrorSink(ErrorSink):
    """
    Append entries as JSON lines, keeping only the newest ``max_lines``.

    Context values that are not JSON serializable are written with ``str()``.
    """

    def __init__(self, path: str | os.PathLike, max_lines: int = 50):
        self.path = Path(path)
        self.max_lines = max_lines

    def write(self, entry: ErrorLogEntry) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        line = json.dumps(entry.to_dict(), default=str)
        lines = self.read_lines()
        lines.append(line)
        lines = lines[-self.max_lines :]
        with open(self.path, "w", encoding="utf-8") as f:
            f.write("\n".join(lines) + "\n")

    def read_lines(self) -> list[str]:
        if not self.path.exists():
            return []
        with open(self.path, encoding="utf-8") as f:
            return [line for line in f.read().splitlines() if line.strip()]

    def read_entries(self) -> list[dict[str, Any]]:
        return [json.loads(line) for line in self.read_lines()]

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


class ErrorLog:
    """
    Ring buffer of error log entries.

    Args:
        max_size: Maximum entries retained in memory.
        sink: Optional durable mirror, written best-effort.
    """

    def __init__(self, max_size: int = 100, sink: ErrorSink | None = None):
        self._entries: deque[ErrorLogEntry] = deque(maxlen=max_size)
        self.sink = sink

    @property
    def max_size(self) -> int:
        return self._entries.maxlen or 0

    def set_max_size(self, max_size: int) -> None:
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        self._entries = deque(self._entries, maxlen=max_size)

    def record(self, error_type: ErrorType, message: str, **context: Any) -> ErrorLogEntry:
        entry = ErrorLogEntry(type=error_type, message=message, context=context)
        self._entries.append(entry)
        log.log(
            log_level_for(error_type),
            f"[{error_type.value}] {message}",
            extra={"error_id": entry.error_id, "resource_id": context.get("resource_id")},
        )
        if self.sink is not None:
            try:
                self.sink.write(entry)
            except Exception as e:
                log.warning(f"Could not mirror error log entry {entry.error_id}: {e}")
        return entry

    def entries(self, type_filter: ErrorType | str | None = None) -> list[ErrorLogEntry]:
        if type_filter is None:
            return list(self._entries)
        wanted = ErrorType(type_filter)
        return [entry for entry in self._entries if entry.type is wanted]

    def recent(self, count: int = 5) -> list[ErrorLogEntry]:
        return list(self._entries)[-count:] if count > 0 else []

    def clear(self) -> None:
        self._entries.clear()
        if self.sink is not None:
            try:
                self.sink.clear()
            except Exception as e:
                log.warning(f"Could not clear mirrored error log: {e}")
        log.info("Error log cleared")

    def __len__(self) -> int:
        return len(self._entries)
