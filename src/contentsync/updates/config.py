from dataclasses import dataclass, field


@dataclass
class EngineConfig:
    """
    Tunables for the coordinated update engine.

    Intervals, delays and timeouts are in seconds. The ratio and factor
    values are empirically tuned thresholds kept overridable on purpose.

    Attributes:
        default_throttle_interval: Minimum time between two runs against one
            resource when no per-resource interval is configured.
        default_size_limit: Element budget for a resource without its own limit.
        max_rollback_attempts: Consecutive rollbacks allowed before a failure
            escalates to recreation.
        rollback_enabled: Global switch for snapshot rollback.
        rollback_tolerance: Element count drift allowed between a restored
            resource and its snapshot before the rollback counts as failed.
        corruption_detection_enabled: Global switch for post-update inspection.
        max_error_log_size: Capacity of the error log ring buffer.
        update_history_size: Capacity of each resource's update history ring.
        warning_ratio: Fraction of the limit where the warning band starts.
        critical_ratio: Fraction of the limit where the critical band starts.
        emergency_ratio: Fraction of the limit where the emergency band starts.
        cleanup_keep_ratio: Fraction of the limit kept by a targeted cleanup.
        excessive_size_factor: Multiple of the limit flagged as corruption.
        duplicate_min_items: Minimum sibling count before duplicate checks run.
        duplicate_ratio: Fraction of duplicated siblings flagged as corruption.
        scroll_tolerance: Slack allowed past the maximum offset.
        interaction_window: Seconds after a save during which movement counts
            as active interaction.
        interaction_threshold: Offset movement that counts as interaction.
        severity_reason_threshold: Reason count above which corruption is critical.
        leak_min_elements: Minimum element count before the retained-state check runs.
        leak_marker_ratio: Share of state-carrying elements (inline handlers,
            inline styles, update markers) flagged as a leak sign.
        stale_lock_seconds: Age after which any acquirer may reclaim a lock.
        coordination_timeout: Default timeout of a coordinated batch.
        coordination_max_concurrent: Default parallelism of a coordinated batch.
        size_monitor_interval: Period of the background size sweep.
        container_limits: Per-resource element limits.
        throttle_intervals: Per-resource throttle intervals.
    """

    default_throttle_interval: float = 1.0
    default_size_limit: int = 1000
    max_rollback_attempts: int = 3
    rollback_enabled: bool = True
    rollback_tolerance: int = 5
    corruption_detection_enabled: bool = True
    max_error_log_size: int = 100
    update_history_size: int = 20
    warning_ratio: float = 0.7
    critical_ratio: float = 1.0
    emergency_ratio: float = 2.0
    cleanup_keep_ratio: float = 0.5
    excessive_size_factor: float = 2.0
    duplicate_min_items: int = 10
    duplicate_ratio: float = 0.2
    scroll_tolerance: int = 10
    interaction_window: float = 2.0
    interaction_threshold: int = 50
    severity_reason_threshold: int = 2
    leak_min_elements: int = 20
    leak_marker_ratio: float = 0.6
    stale_lock_seconds: float = 30.0
    coordination_timeout: float = 30.0
    coordination_max_concurrent: int = 3
    size_monitor_interval: float = 30.0
    container_limits: dict[str, int] = field(default_factory=dict)
    throttle_intervals: dict[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.default_throttle_interval < 0:
            raise ValueError("default_throttle_interval must be non-negative")
        if self.default_size_limit <= 0:
            raise ValueError("default_size_limit must be positive")
        if self.max_error_log_size <= 0:
            raise ValueError("max_error_log_size must be positive")
        if self.update_history_size <= 0:
            raise ValueError("update_history_size must be positive")
        if not 0 < self.warning_ratio <= self.critical_ratio <= self.emergency_ratio:
            raise ValueError("band ratios must satisfy 0 < warning <= critical <= emergency")
        self.max_rollback_attempts = max(1, self.max_rollback_attempts)
