from enum import Enum

from contentsync.concurrency.timeout import TimeoutError as OperationTimeoutError


class ErrorType(str, Enum):
    """Codes recorded in the error log and carried by engine exceptions."""

    SNAPSHOT_FAILED = "SNAPSHOT_FAILED"
    ROLLBACK_NO_SNAPSHOT = "ROLLBACK_NO_SNAPSHOT"
    ROLLBACK_DISABLED = "ROLLBACK_DISABLED"
    ROLLBACK_MAX_ATTEMPTS = "ROLLBACK_MAX_ATTEMPTS"
    ROLLBACK_CONTAINER_MISSING = "ROLLBACK_CONTAINER_MISSING"
    ROLLBACK_VERIFICATION_FAILED = "ROLLBACK_VERIFICATION_FAILED"
    RECREATION_CONTAINER_MISSING = "RECREATION_CONTAINER_MISSING"
    UPDATE_FAILED = "UPDATE_FAILED"
    COORDINATION_TIMEOUT = "COORDINATION_TIMEOUT"
    GLOBAL_LOCK_ACTIVE = "GLOBAL_LOCK_ACTIVE"
    # Recovery outcomes and detections
    ROLLBACK_SUCCESS = "ROLLBACK_SUCCESS"
    CONTAINER_RECREATED = "CONTAINER_RECREATED"
    CORRUPTION_DETECTED = "CORRUPTION_DETECTED"
    EMERGENCY_CLEANUP = "EMERGENCY_CLEANUP"
    COORDINATION_FAILED = "COORDINATION_FAILED"
    QUEUED_UPDATE_FAILED = "QUEUED_UPDATE_FAILED"


class UpdateEngineError(Exception):
    """Base class for errors raised by the update engine."""

    error_type: ErrorType = ErrorType.UPDATE_FAILED

    def __init__(self, message: str, resource_id: str | None = None):
        self.resource_id = resource_id
        super().__init__(message)


class GlobalLockError(UpdateEngineError):
    """A non-critical update was submitted while the global update lock is active."""

    error_type = ErrorType.GLOBAL_LOCK_ACTIVE


class ResourceNotFoundError(UpdateEngineError):
    """The content host does not know the resource."""

    error_type = ErrorType.RECREATION_CONTAINER_MISSING


class CorruptionDetectedError(UpdateEngineError):
    """An update left a resource corrupted and no recovery path succeeded."""

    error_type = ErrorType.CORRUPTION_DETECTED

    def __init__(self, message: str, resource_id: str | None = None, reasons: list[str] | None = None):
        self.reasons = list(reasons or [])
        super().__init__(message, resource_id)


class CoordinationTimeoutError(OperationTimeoutError, UpdateEngineError):
    """A coordinated batch did not settle within its timeout."""

    error_type = ErrorType.COORDINATION_TIMEOUT


class UpdateTimeoutError(OperationTimeoutError, UpdateEngineError):
    """A single update function exceeded its ``timeout`` option."""

    error_type = ErrorType.UPDATE_FAILED
