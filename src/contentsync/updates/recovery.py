"""
Snapshots, rollback and recreation.

Recovery prefers the least destructive option that works:

1. Roll back to the snapshot taken before the update.
2. Once a resource has been rolled back ``max_rollback_attempts`` times in
   a row, recreate it instead: replace its content with a diagnostic
   placeholder and start from a clean slate.

Emergency size cleanup lives here too; it is the same kind of content
replacement, triggered by size instead of failure.
"""

import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Literal

from contentsync.config.logging_config import get_logger
from contentsync.observability.metrics import UpdateMetrics
from contentsync.updates.config import EngineConfig
from contentsync.updates.error_log import ErrorLog
from contentsync.updates.errors import ErrorType
from contentsync.updates.host import ContentHost, Notice
from contentsync.updates.types import SizeRecord
from contentsync.updates.viewport import ViewportPreserver

log = get_logger(__name__)

RecoveryAction = Literal["rollback", "recreation"]

CLEANUP_TITLE = "Emergency Cleanup Performed"
CLEANUP_DETAIL = "Container exceeded size limits and was cleared. Refreshing data..."
RECREATION_TITLE = "Container Recreated"


@dataclass
class Snapshot:
    resource_id: str
    content: Any
    element_count: int
    offset: float | None = None
    taken_at: float = field(default_factory=time.time)
    snapshot_id: str = field(default_factory=lambda: uuid.uuid4().hex[:9])


class SnapshotStore:
    """At most one live snapshot per resource; a newer one replaces the older."""

    def __init__(self, host: ContentHost, error_log: ErrorLog):
        self.host = host
        self.error_log = error_log
        self._snapshots: dict[str, Snapshot] = {}

    def take(self, resource_id: str) -> Snapshot | None:
        if not self.host.exists(resource_id):
            self.error_log.record(
                ErrorType.SNAPSHOT_FAILED,
                f"Container {resource_id} not found for snapshot",
                resource_id=resource_id,
            )
            return None

        viewport = self.host.viewport(resource_id)
        snapshot = Snapshot(
            resource_id=resource_id,
            content=self.host.read_content(resource_id),
            element_count=self.host.element_count(resource_id),
            offset=viewport.offset if viewport is not None else None,
        )
        self._snapshots[resource_id] = snapshot
        log.debug(f"Created snapshot for {resource_id} ({snapshot.element_count} elements)")
        return snapshot

    def get(self, resource_id: str) -> Snapshot | None:
        return self._snapshots.get(resource_id)

    def discard(self, resource_id: str) -> None:
        self._snapshots.pop(resource_id, None)

    def clear_all(self) -> int:
        count = len(self._snapshots)
        self._snapshots.clear()
        return count

    def __len__(self) -> int:
        return len(self._snapshots)


class RecoveryManager:
    """
    Roll back, recreate and emergency-clean resources.

    Reads ``rollback_enabled`` and ``max_rollback_attempts`` from the shared
    ``EngineConfig`` on every call, so runtime toggles take effect at once.
    """

    def __init__(
        self,
        host: ContentHost,
        config: EngineConfig,
        snapshots: SnapshotStore,
        viewport: ViewportPreserver,
        error_log: ErrorLog,
        metrics: UpdateMetrics,
    ):
        self.host = host
        self.config = config
        self.snapshots = snapshots
        self.viewport = viewport
        self.error_log = error_log
        self.metrics = metrics
        self._attempts: dict[str, int] = {}

    def attempts_for(self, resource_id: str) -> int:
        return self._attempts.get(resource_id, 0)

    def attempt_counts(self) -> dict[str, int]:
        return dict(self._attempts)

    def clear_attempts(self, resource_id: str) -> bool:
        return self._attempts.pop(resource_id, None) is not None

    def attempt_rollback(self, resource_id: str, reason: str) -> RecoveryAction | None:
        """
        Roll back to the latest snapshot, escalating to recreation when exhausted.

        Returns:
            The recovery that happened, or None if nothing could be done.
        """
        if not self.config.rollback_enabled:
            self.error_log.record(
                ErrorType.ROLLBACK_DISABLED,
                f"Rollback disabled for {resource_id}",
                resource_id=resource_id,
                reason=reason,
            )
            return None

        snapshot = self.snapshots.get(resource_id)
        if snapshot is None:
            self.error_log.record(
                ErrorType.ROLLBACK_NO_SNAPSHOT,
                f"No snapshot available for rollback of {resource_id}",
                resource_id=resource_id,
                reason=reason,
            )
            return None

        attempts = self.attempts_for(resource_id)
        if attempts >= self.config.max_rollback_attempts:
            self.error_log.record(
                ErrorType.ROLLBACK_MAX_ATTEMPTS,
                f"Maximum rollback attempts exceeded for {resource_id}",
                resource_id=resource_id,
                attempts=attempts,
                max_attempts=self.config.max_rollback_attempts,
                reason=reason,
            )
            if self.recreate(resource_id, "Max rollback attempts exceeded"):
                return "recreation"
            return None

        if not self.host.exists(resource_id):
            self.error_log.record(
                ErrorType.ROLLBACK_CONTAINER_MISSING,
                f"Container {resource_id} missing during rollback",
                resource_id=resource_id,
                reason=reason,
            )
            return None

        log.warning(f"Rolling back {resource_id} - {reason}")
        self._attempts[resource_id] = attempts + 1
        self.host.write_content(resource_id, snapshot.content)
        if snapshot.offset is not None:
            self.host.set_offset(resource_id, snapshot.offset)

        actual = self.host.element_count(resource_id)
        if abs(actual - snapshot.element_count) > self.config.rollback_tolerance:
            self.error_log.record(
                ErrorType.ROLLBACK_VERIFICATION_FAILED,
                f"Rollback verification failed for {resource_id}",
                resource_id=resource_id,
                expected_elements=snapshot.element_count,
                actual_elements=actual,
                difference=abs(actual - snapshot.element_count),
            )
            if self.recreate(resource_id, "Rollback verification failed"):
                return "recreation"
            return None

        self.metrics.rollbacks_total.increment()
        self.error_log.record(
            ErrorType.ROLLBACK_SUCCESS,
            f"Container {resource_id} successfully rolled back",
            resource_id=resource_id,
            reason=reason,
            snapshot_id=snapshot.snapshot_id,
            snapshot_age=time.time() - snapshot.taken_at,
            attempt=attempts + 1,
        )
        return "rollback"

    def rollback(self, resource_id: str, reason: str = "Update failed") -> bool:
        """True when some recovery happened (which may have been a recreation)."""
        return self.attempt_rollback(resource_id, reason) is not None

    def recreate(self, resource_id: str, reason: str = "Container corruption detected") -> bool:
        if not self.host.exists(resource_id):
            self.error_log.record(
                ErrorType.RECREATION_CONTAINER_MISSING,
                f"Container {resource_id} missing during recreation",
                resource_id=resource_id,
                reason=reason,
            )
            return False

        log.warning(f"Recreating container {resource_id} - {reason}")
        self.host.write_notice(
            resource_id,
            Notice(kind="recreation", title=RECREATION_TITLE, detail=f"{reason}. Loading fresh data..."),
        )
        self.host.set_offset(resource_id, 0.0)
        self.snapshots.discard(resource_id)
        self._attempts.pop(resource_id, None)
        self.viewport.clear(resource_id)

        self.metrics.recreations_total.increment()
        self.error_log.record(
            ErrorType.CONTAINER_RECREATED,
            f"Container {resource_id} successfully recreated",
            resource_id=resource_id,
            reason=reason,
        )
        return True

    def emergency_cleanup(self, resource_id: str, record: SizeRecord) -> None:
        """Replace oversized content with the cleanup banner."""
        self.host.write_notice(
            resource_id,
            Notice(kind="cleanup", title=CLEANUP_TITLE, detail=CLEANUP_DETAIL),
        )
        self.host.set_offset(resource_id, 0.0)
        self.viewport.discard(resource_id)

        self.metrics.emergency_cleanups_total.increment()
        self.error_log.record(
            ErrorType.EMERGENCY_CLEANUP,
            f"Emergency cleanup performed on {resource_id}",
            resource_id=resource_id,
            element_count=record.element_count,
            limit=record.limit,
            band=record.band.value,
        )

    def targeted_cleanup(self, resource_id: str, record: SizeRecord) -> int:
        """Trim to a prefix of ``cleanup_keep_ratio`` times the limit. Returns the new count."""
        keep = max(1, int(record.limit * self.config.cleanup_keep_ratio))
        remaining = self.host.trim(resource_id, keep)
        log.warning(
            f"Trimmed {resource_id} from {record.element_count} to {remaining} elements",
            extra={"resource_id": resource_id, "limit": record.limit},
        )
        return remaining
