from contentsync.config.logging_config import get_logger
from contentsync.updates.config import EngineConfig
from contentsync.updates.error_log import ErrorLog
from contentsync.updates.errors import ErrorType
from contentsync.updates.host import ContentHost
from contentsync.updates.size_monitor import SizeMonitor
from contentsync.updates.types import CorruptionReport

log = get_logger(__name__)

EXCESSIVE_SIZE = "excessive_size"
DUPLICATE_CONTENT = "duplicate_content"
MALFORMED_STRUCTURE = "malformed_structure"
SCROLL_ANOMALIES = "scroll_anomalies"
MEMORY_LEAK_SIGNS = "memory_leak_signs"
CONTAINER_MISSING = "container_missing"

CHECKS = (EXCESSIVE_SIZE, DUPLICATE_CONTENT, MALFORMED_STRUCTURE, SCROLL_ANOMALIES, MEMORY_LEAK_SIGNS)


class CorruptionDetector:
    """
    Heuristics that decide whether an update left a resource in a bad state.

    Each check can be switched off on its own; ``config.corruption_detection_enabled``
    switches off all of them. The thresholds come from ``EngineConfig``.
    ``memory_leak_signs`` depends on hosts that report state markers and is
    off until enabled with ``set_check_enabled``.
    """

    def __init__(
        self,
        host: ContentHost,
        config: EngineConfig,
        size_monitor: SizeMonitor,
        error_log: ErrorLog,
    ):
        self.host = host
        self.config = config
        self.size_monitor = size_monitor
        self.error_log = error_log
        self.enabled_checks: dict[str, bool] = dict.fromkeys(CHECKS, True)
        self.enabled_checks[MEMORY_LEAK_SIGNS] = False

    def set_check_enabled(self, check: str, enabled: bool) -> None:
        if check not in self.enabled_checks:
            raise ValueError(f"Unknown corruption check: {check}")
        self.enabled_checks[check] = enabled

    def inspect(self, resource_id: str, record: bool = True) -> CorruptionReport:
        """
        Run the enabled checks against a resource.

        Args:
            resource_id: Resource to inspect.
            record: Log a ``CORRUPTION_DETECTED`` entry when corruption is found.
                Read-only callers such as health checks pass False.
        """
        if not self.config.corruption_detection_enabled:
            return CorruptionReport(resource_id=resource_id, corrupted=False)

        if not self.host.exists(resource_id):
            return CorruptionReport(
                resource_id=resource_id,
                corrupted=True,
                reasons=[CONTAINER_MISSING],
                severity="moderate",
            )

        element_count = self.host.element_count(resource_id)
        limit = self.size_monitor.get_limit(resource_id)

        checks: dict[str, bool] = {}
        if self.enabled_checks[EXCESSIVE_SIZE]:
            checks[EXCESSIVE_SIZE] = element_count > limit * self.config.excessive_size_factor
        if self.enabled_checks[DUPLICATE_CONTENT]:
            checks[DUPLICATE_CONTENT] = self._has_duplicate_content(resource_id)
        if self.enabled_checks[MALFORMED_STRUCTURE]:
            checks[MALFORMED_STRUCTURE] = self._has_malformed_structure(resource_id)
        if self.enabled_checks[SCROLL_ANOMALIES]:
            checks[SCROLL_ANOMALIES] = self._has_scroll_anomalies(resource_id)
        if self.enabled_checks[MEMORY_LEAK_SIGNS]:
            checks[MEMORY_LEAK_SIGNS] = self._has_memory_leak_signs(resource_id, element_count)

        reasons = [name for name, failed in checks.items() if failed]
        corrupted = bool(reasons)
        severity = "none"
        if corrupted:
            severity = "critical" if len(reasons) > self.config.severity_reason_threshold else "moderate"

        report = CorruptionReport(
            resource_id=resource_id,
            corrupted=corrupted,
            reasons=reasons,
            severity=severity,
            element_count=element_count,
            limit=limit,
            checks=checks,
        )
        if corrupted and record:
            self.error_log.record(
                ErrorType.CORRUPTION_DETECTED,
                f"Container corruption detected for {resource_id}",
                resource_id=resource_id,
                reasons=reasons,
                severity=severity,
                element_count=element_count,
                limit=limit,
            )
        return report

    def _has_duplicate_content(self, resource_id: str) -> bool:
        digests = self.host.child_digests(resource_id)
        if len(digests) < self.config.duplicate_min_items:
            return False
        duplicates = len(digests) - len(set(digests))
        return duplicates > len(digests) * self.config.duplicate_ratio

    def _has_malformed_structure(self, resource_id: str) -> bool:
        markup = self.host.serialize(resource_id)
        if "<" not in markup:
            return False
        return markup.count("<") != markup.count(">")

    def _has_scroll_anomalies(self, resource_id: str) -> bool:
        viewport = self.host.viewport(resource_id)
        if viewport is None or viewport.window <= 0:
            return False
        max_offset = max(viewport.extent - viewport.window, 0)
        if viewport.offset > max_offset + self.config.scroll_tolerance:
            return True
        return viewport.extent < viewport.window and viewport.offset > 0

    def _has_memory_leak_signs(self, resource_id: str, element_count: int) -> bool:
        if element_count < self.config.leak_min_elements:
            return False
        markers = self.host.state_marker_count(resource_id)
        if markers is None:
            return False
        return markers > element_count * self.config.leak_marker_ratio
