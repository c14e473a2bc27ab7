from .async_utils import gather_with_concurrency, run_sequentially
from .debounce_throttle import ThrottleState, UpdateThrottler
from .priority_lock import LockRecord, QueueEntry, ResourceLockTable, UpdatePriority
from .timeout import TimeoutError, wait_or_detach, with_timeout

__all__ = [
    "LockRecord",
    "QueueEntry",
    "ResourceLockTable",
    "ThrottleState",
    "TimeoutError",
    "UpdatePriority",
    "UpdateThrottler",
    "gather_with_concurrency",
    "run_sequentially",
    "wait_or_detach",
    "with_timeout",
]
