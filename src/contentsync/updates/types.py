from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from contentsync.concurrency.priority_lock import UpdatePriority


class UpdateOptions(BaseModel):
    """Per-call options for ``ContentUpdateManager.update_container``."""

    model_config = ConfigDict(extra="forbid")

    priority: UpdatePriority = UpdatePriority.NORMAL
    preserve_scroll: bool = True
    cleanup_required: bool = True
    enable_rollback: bool = False
    bypass_throttle: bool = False
    timeout: Optional[float] = Field(default=None, gt=0, description="Seconds allowed for one update_fn run")
    retry_attempts: int = Field(default=0, ge=0)
    retry_delay: float = Field(default=0.0, ge=0, description="Seconds between retries")
    suppress_errors: bool = Field(default=False, description="Resolve to None instead of raising")


class SizeBand(str, Enum):
    NORMAL = "normal"
    WARNING = "warning"
    CRITICAL = "critical"
    EMERGENCY = "emergency"


class SizeRecord(BaseModel):
    resource_id: str
    element_count: int
    limit: int
    percentage_of_limit: float
    band: SizeBand


class SizeStats(BaseModel):
    total_containers: int = 0
    normal: int = 0
    warning: int = 0
    critical: int = 0
    emergency: int = 0
    total_nodes: int = 0
    containers: list[SizeRecord] = Field(default_factory=list)

    def for_resource(self, resource_id: str) -> Optional[SizeRecord]:
        return next((record for record in self.containers if record.resource_id == resource_id), None)


class CorruptionReport(BaseModel):
    resource_id: str
    corrupted: bool
    reasons: list[str] = Field(default_factory=list)
    severity: Literal["none", "moderate", "critical"] = "none"
    element_count: int = 0
    limit: int = 0
    checks: dict[str, bool] = Field(default_factory=dict)


class ThrottleStatus(BaseModel):
    last_run_at: Optional[float] = None
    time_since_last_run: Optional[float] = None
    has_pending_update: bool = False
    has_timer: bool = False
    can_run_immediately: bool = True


class UpdateStatus(BaseModel):
    resource_id: str
    in_progress: bool
    queue_length: int
    queued_priorities: list[UpdatePriority] = Field(default_factory=list)
    has_lock: bool
    lock_priority: Optional[UpdatePriority] = None
    lock_age: float = 0.0
    throttle_interval: float
    throttle: ThrottleStatus
    global_lock_active: bool


class AllUpdateStatus(BaseModel):
    global_lock_active: bool
    global_lock_reason: Optional[str] = None
    total_active_updates: int
    total_queued_updates: int
    total_locks: int
    containers: dict[str, UpdateStatus] = Field(default_factory=dict)


class ThrottlingStats(BaseModel):
    default_interval: float
    container_intervals: dict[str, float] = Field(default_factory=dict)
    active_throttles: int = 0
    pending_throttles: int = 0


class RecentError(BaseModel):
    type: str
    message: str
    timestamp: float
    resource_id: Optional[str] = None


class ErrorRecoveryStatus(BaseModel):
    rollback_enabled: bool
    corruption_detection_enabled: bool
    max_rollback_attempts: int
    error_log_size: int
    max_error_log_size: int
    snapshot_count: int
    rollback_attempt_counts: dict[str, int] = Field(default_factory=dict)
    update_history_count: int
    recent_errors: list[RecentError] = Field(default_factory=list)


class UpdateHistoryEntry(BaseModel):
    timestamp: float
    success: bool
    duration: float
    element_count: int
    band: Optional[SizeBand] = None
    recovery: Optional[Literal["rollback", "recreation", "cleanup"]] = None
    error: Optional[str] = None


class ContainerHealth(BaseModel):
    status: Literal["healthy", "degraded", "critical", "missing"]
    issues: list[str] = Field(default_factory=list)
    element_count: int = 0
    band: Optional[SizeBand] = None
    corrupted: bool = False
    rollback_attempts: int = 0
    last_update: Optional[float] = None


class HealthReport(BaseModel):
    status: Literal["healthy", "degraded", "critical"]
    containers: dict[str, ContainerHealth] = Field(default_factory=dict)
    error_count: int = 0
    recommendations: list[str] = Field(default_factory=list)


@dataclass
class CoordinatedUpdate:
    """One entry of a ``coordinate_updates`` batch."""

    resource_id: str
    update_fn: Callable[[Any], Any]
    data: Any = None
    options: Optional[UpdateOptions] = None

    @classmethod
    def from_mapping(cls, entry: Mapping[str, Any]) -> "CoordinatedUpdate":
        """Build an entry from a mapping; ``update_function`` is accepted for ``update_fn``."""
        fields = dict(entry)
        if "update_function" in fields:
            if "update_fn" in fields:
                raise TypeError("Give either update_fn or update_function, not both")
            fields["update_fn"] = fields.pop("update_function")
        return cls(**fields)
