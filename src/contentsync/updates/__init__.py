"""
Coordinated updates of named content resources.

- ContentUpdateManager: throttled, locked, snapshot-protected updates
- ContentHost / InMemoryContentHost: where resource content lives
- SizeMonitor, CorruptionDetector, RecoveryManager: the safeguards
- PollingProducer / PushProducer: adapters feeding the manager
"""

from .config import EngineConfig
from .corruption import CorruptionDetector
from .error_log import ErrorLog, ErrorLogEntry, ErrorSink, JsonlErrorSink
from .errors import (
    CoordinationTimeoutError,
    CorruptionDetectedError,
    ErrorType,
    GlobalLockError,
    ResourceNotFoundError,
    UpdateEngineError,
    UpdateTimeoutError,
)
from .host import ContentHost, InMemoryContentHost, Notice, Viewport
from .manager import ContentUpdateManager
from .producers import PollingProducer, PushProducer
from .recovery import RecoveryManager, Snapshot, SnapshotStore
from .size_monitor import SizeMonitor
from .types import (
    AllUpdateStatus,
    CoordinatedUpdate,
    CorruptionReport,
    ErrorRecoveryStatus,
    HealthReport,
    SizeBand,
    SizeRecord,
    SizeStats,
    UpdateHistoryEntry,
    UpdateOptions,
    UpdateStatus,
)
from .viewport import ViewportPreserver

__all__ = [
    "AllUpdateStatus",
    "ContentHost",
    "ContentUpdateManager",
    "CoordinatedUpdate",
    "CoordinationTimeoutError",
    "CorruptionDetectedError",
    "CorruptionDetector",
    "CorruptionReport",
    "EngineConfig",
    "ErrorLog",
    "ErrorLogEntry",
    "ErrorRecoveryStatus",
    "ErrorSink",
    "ErrorType",
    "GlobalLockError",
    "HealthReport",
    "InMemoryContentHost",
    "JsonlErrorSink",
    "Notice",
    "PollingProducer",
    "PushProducer",
    "RecoveryManager",
    "ResourceNotFoundError",
    "SizeBand",
    "SizeMonitor",
    "SizeRecord",
    "SizeStats",
    "Snapshot",
    "SnapshotStore",
    "UpdateEngineError",
    "UpdateHistoryEntry",
    "UpdateOptions",
    "UpdateStatus",
    "UpdateTimeoutError",
    "Viewport",
    "ViewportPreserver",
]
