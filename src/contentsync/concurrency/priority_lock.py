"""
Per-resource priority locks with FIFO wait queues.

Unlike ``asyncio.Lock`` these locks never block: ``acquire`` answers
immediately and a caller that loses is expected to park a ``QueueEntry``
and wait for ``release`` to hand the lock over.
"""

import asyncio
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from contentsync.config.logging_config import get_logger

log = get_logger(__name__)


class UpdatePriority(str, Enum):
    """Priority of an update request. Higher rank may seize a lower-ranked lock."""

    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _RANKS[self]


_RANKS = {
    UpdatePriority.NORMAL: 1,
    UpdatePriority.HIGH: 2,
    UpdatePriority.CRITICAL: 3,
}


@dataclass
class LockRecord:
    """The current holder of a resource lock."""

    priority: UpdatePriority
    acquired_at: float = field(default_factory=time.monotonic)
    lock_id: str = field(default_factory=lambda: uuid.uuid4().hex[:9])

    @property
    def age(self) -> float:
        return time.monotonic() - self.acquired_at


@dataclass
class QueueEntry:
    """An update request parked until the resource lock is handed over."""

    update_fn: Callable[[Any], Any]
    data: Any
    options: Any
    priority: UpdatePriority
    future: asyncio.Future
    enqueued_at: float = field(default_factory=time.monotonic)


class ResourceLockTable:
    """
    Priority locks and wait queues keyed by resource id.

    Rules:
    - ``acquire`` succeeds when the resource is free, when the holder has a
      strictly lower priority, or when the holder's lock is stale.
    - Seizing a lock does not stop the previous holder; its later ``release``
      carries an outdated ``lock_id`` and is ignored.
    - ``release`` hands the lock straight to the next queued entry, so no
      other acquirer can slip in between.
    - Critical entries queue ahead of non-critical ones but keep FIFO order
      among themselves; all other entries are strictly FIFO.

    Example:
        locks = ResourceLockTable()
        record = locks.acquire("queries", UpdatePriority.NORMAL)
        if record is None:
            entry = QueueEntry(fn, data, options, UpdatePriority.NORMAL, loop.create_future())
            locks.enqueue("queries", entry)
            await entry.future
        ...
        handed_to = locks.release("queries", record.lock_id)
    """

    def __init__(self, stale_after: float | None = 30.0):
        self._locks: dict[str, LockRecord] = {}
        self._queues: dict[str, deque[QueueEntry]] = {}
        self._stale_after = stale_after

    def acquire(self, resource_id: str, priority: UpdatePriority) -> LockRecord | None:
        """
        Try to take the lock for a resource.

        Returns:
            The new lock record, or None when the caller must queue.
        """
        existing = self._locks.get(resource_id)
        if existing is not None:
            if priority.rank > existing.priority.rank:
                log.warning(
                    f"Overriding {existing.priority.value} lock with {priority.value} priority for {resource_id}"
                )
            elif self._stale_after is not None and existing.age > self._stale_after:
                log.warning(f"Reclaiming stale lock for {resource_id} (age: {existing.age:.1f}s)")
            else:
                log.debug(
                    f"Could not acquire lock for {resource_id}",
                    extra={"held": existing.priority.value, "requested": priority.value},
                )
                return None

        record = LockRecord(priority=priority)
        self._locks[resource_id] = record
        log.debug(f"Acquired lock for {resource_id} (priority: {priority.value})")
        return record

    def enqueue(self, resource_id: str, entry: QueueEntry) -> int:
        """Park an entry until the lock is released. Returns the queue length."""
        queue = self._queues.setdefault(resource_id, deque())
        if entry.priority is UpdatePriority.CRITICAL:
            # Behind earlier critical entries, ahead of everything else
            position = 0
            while position < len(queue) and queue[position].priority is UpdatePriority.CRITICAL:
                position += 1
            queue.insert(position, entry)
        else:
            queue.append(entry)
        log.debug(f"Queued {entry.priority.value} update for {resource_id} (queue size: {len(queue)})")
        return len(queue)

    def release(self, resource_id: str, lock_id: str) -> tuple[QueueEntry, LockRecord] | None:
        """
        Release a lock held under ``lock_id`` and hand it to the next entry.

        Returns:
            The dispatched entry and the lock record now held on its behalf,
            or None if nothing was dispatched.
        """
        current = self._locks.get(resource_id)
        if current is None or current.lock_id != lock_id:
            return None

        del self._locks[resource_id]
        log.debug(f"Released lock for {resource_id} (was {current.priority.value} priority)")
        return self.dispatch_next(resource_id)

    def dispatch_next(self, resource_id: str) -> tuple[QueueEntry, LockRecord] | None:
        """Hand a free resource's lock to the head of its queue, if any."""
        if resource_id in self._locks:
            return None

        queue = self._queues.get(resource_id)
        while queue:
            entry = queue.popleft()
            if entry.future.done():
                # Caller gave up while waiting
                continue
            record = LockRecord(priority=entry.priority)
            self._locks[resource_id] = record
            if not queue:
                del self._queues[resource_id]
            return entry, record

        self._queues.pop(resource_id, None)
        return None

    def holder(self, resource_id: str) -> LockRecord | None:
        return self._locks.get(resource_id)

    def is_locked(self, resource_id: str) -> bool:
        return resource_id in self._locks

    def queued(self, resource_id: str) -> list[QueueEntry]:
        return list(self._queues.get(resource_id, ()))

    def queue_length(self, resource_id: str) -> int:
        return len(self._queues.get(resource_id, ()))

    def total_queued(self) -> int:
        return sum(len(queue) for queue in self._queues.values())

    def total_locks(self) -> int:
        return len(self._locks)

    def resource_ids(self) -> set[str]:
        return set(self._locks) | set(self._queues)

    def clear_queues(self) -> int:
        """Drop every queued entry, cancelling its waiter. Returns the count dropped."""
        dropped = 0
        for queue in self._queues.values():
            for entry in queue:
                if not entry.future.done():
                    entry.future.cancel()
                dropped += 1
        self._queues.clear()
        return dropped

    def clear_locks(self) -> None:
        self._locks.clear()
