import pytest

from contentsync.observability.metrics import MetricsRegistry, UpdateMetrics
from contentsync.updates.error_log import ErrorLog
from contentsync.updates.errors import ErrorType
from contentsync.updates.recovery import CLEANUP_TITLE, RECREATION_TITLE, RecoveryManager, SnapshotStore
from contentsync.updates.types import SizeBand, SizeRecord
from contentsync.updates.viewport import ViewportPreserver


def rows(count: int, prefix: str = "row") -> list[str]:
    return [f"<li>{prefix} {i}</li>" for i in range(count)]


@pytest.fixture
def error_log():
    return ErrorLog()


@pytest.fixture
def metrics():
    return UpdateMetrics(MetricsRegistry())


@pytest.fixture
def snapshots(host, error_log):
    return SnapshotStore(host, error_log)


@pytest.fixture
def recovery(host, config, snapshots, error_log, metrics):
    return RecoveryManager(host, config, snapshots, ViewportPreserver(host, config), error_log, metrics)


class TestSnapshotStore:
    """Tests for snapshots."""

    def test_take_copies_content_and_offset(self, host, snapshots):
        host.replace("queries", rows(30))
        host.set_offset("queries", 120.0)

        snapshot = snapshots.take("queries")

        assert snapshot.content == tuple(rows(30))
        assert snapshot.element_count == 30
        assert snapshot.offset == 120.0
        assert snapshots.get("queries") is snapshot

    def test_newer_snapshot_replaces_older(self, host, snapshots):
        host.replace("queries", rows(1))
        snapshots.take("queries")
        host.replace("queries", rows(2))
        latest = snapshots.take("queries")

        assert len(snapshots) == 1
        assert snapshots.get("queries") is latest

    def test_missing_resource_is_logged(self, snapshots, error_log):
        assert snapshots.take("missing") is None
        assert [e.type for e in error_log.entries()] == [ErrorType.SNAPSHOT_FAILED]

    def test_clear_all(self, host, snapshots):
        host.ensure("a")
        host.ensure("b")
        snapshots.take("a")
        snapshots.take("b")
        assert snapshots.clear_all() == 2
        assert len(snapshots) == 0


class TestRollback:
    """Tests for rollback and escalation."""

    def test_rollback_restores_content_and_offset(self, host, snapshots, recovery, error_log, metrics):
        host.replace("queries", rows(30))
        host.set_offset("queries", 80.0)
        snapshots.take("queries")
        host.replace("queries", rows(3, "broken"))

        assert recovery.attempt_rollback("queries", "test") == "rollback"

        assert host.content("queries") == rows(30)
        assert host.viewport("queries").offset == 80.0
        assert recovery.attempts_for("queries") == 1
        assert metrics.rollbacks_total.get_value() == 1
        assert error_log.entries(ErrorType.ROLLBACK_SUCCESS)

    def test_rollback_disabled(self, host, config, snapshots, recovery, error_log):
        config.rollback_enabled = False
        host.replace("queries", rows(3))
        snapshots.take("queries")

        assert recovery.attempt_rollback("queries", "test") is None
        assert [e.type for e in error_log.entries()] == [ErrorType.ROLLBACK_DISABLED]

    def test_rollback_without_snapshot(self, host, recovery, error_log):
        host.ensure("queries")

        assert recovery.attempt_rollback("queries", "test") is None
        assert [e.type for e in error_log.entries()] == [ErrorType.ROLLBACK_NO_SNAPSHOT]

    def test_escalates_to_recreation_after_max_attempts(self, host, config, snapshots, recovery, error_log, metrics):
        config.max_rollback_attempts = 2
        host.replace("queries", rows(5))

        for _ in range(2):
            snapshots.take("queries")
            assert recovery.attempt_rollback("queries", "test") == "rollback"
        snapshots.take("queries")

        assert recovery.attempt_rollback("queries", "test") == "recreation"

        assert recovery.attempts_for("queries") == 0
        assert snapshots.get("queries") is None
        assert RECREATION_TITLE in host.serialize("queries")
        assert error_log.entries(ErrorType.ROLLBACK_MAX_ATTEMPTS)
        assert metrics.recreations_total.get_value() == 1

    def test_rollback_of_missing_resource(self, host, snapshots, recovery, error_log, metrics):
        host.replace("queries", rows(3))
        snapshots.take("queries")
        host.remove("queries")

        assert recovery.attempt_rollback("queries", "test") is None

        assert [e.type for e in error_log.entries()] == [ErrorType.ROLLBACK_CONTAINER_MISSING]
        assert recovery.attempts_for("queries") == 0
        assert metrics.recreations_total.get_value() == 0

    def test_failed_verification_recreates(self, host, snapshots, recovery, error_log, monkeypatch):
        host.replace("queries", rows(30))
        snapshots.take("queries")
        write_content = host.write_content
        monkeypatch.setattr(host, "write_content", lambda resource_id, content: write_content(resource_id, content[:10]))

        assert recovery.attempt_rollback("queries", "test") == "recreation"

        entry = error_log.entries(ErrorType.ROLLBACK_VERIFICATION_FAILED)[0]
        assert entry.context["expected_elements"] == 30
        assert entry.context["actual_elements"] == 10
        assert entry.context["difference"] == 20
        assert RECREATION_TITLE in host.serialize("queries")
        assert not error_log.entries(ErrorType.ROLLBACK_SUCCESS)

    def test_small_drift_passes_verification(self, host, snapshots, recovery, error_log, monkeypatch):
        host.replace("queries", rows(30))
        snapshots.take("queries")
        write_content = host.write_content
        monkeypatch.setattr(host, "write_content", lambda resource_id, content: write_content(resource_id, content[:25]))

        assert recovery.attempt_rollback("queries", "test") == "rollback"
        assert not error_log.entries(ErrorType.ROLLBACK_VERIFICATION_FAILED)

    def test_rollback_convenience(self, host, snapshots, recovery):
        host.replace("queries", rows(2))
        snapshots.take("queries")
        assert recovery.rollback("queries") is True

    def test_clear_attempts(self, host, snapshots, recovery):
        host.replace("queries", rows(2))
        snapshots.take("queries")
        recovery.rollback("queries")

        assert recovery.clear_attempts("queries") is True
        assert recovery.attempt_counts() == {}


class TestRecreation:
    """Tests for recreation."""

    def test_recreate_writes_placeholder(self, host, recovery, error_log):
        host.replace("queries", rows(30))
        host.set_offset("queries", 100.0)

        assert recovery.recreate("queries", "Corruption detected") is True

        markup = host.serialize("queries")
        assert 'class="container-recreation-notice"' in markup
        assert "Corruption detected" in markup
        assert host.viewport("queries").offset == 0.0
        assert error_log.entries(ErrorType.CONTAINER_RECREATED)

    def test_recreate_missing_resource(self, recovery, error_log):
        assert recovery.recreate("missing") is False
        assert [e.type for e in error_log.entries()] == [ErrorType.RECREATION_CONTAINER_MISSING]


class TestCleanup:
    """Tests for size cleanups."""

    def test_emergency_cleanup_writes_banner(self, host, recovery, error_log, metrics):
        host.replace("queries", rows(50))
        record = SizeRecord(
            resource_id="queries", element_count=50, limit=10, percentage_of_limit=500.0, band=SizeBand.EMERGENCY
        )

        recovery.emergency_cleanup("queries", record)

        markup = host.serialize("queries")
        assert 'class="cleanup-notice"' in markup
        assert CLEANUP_TITLE in markup
        assert host.element_count("queries") < 50
        assert metrics.emergency_cleanups_total.get_value() == 1
        assert error_log.entries(ErrorType.EMERGENCY_CLEANUP)[0].context["band"] == "emergency"

    def test_targeted_cleanup_trims_to_half_the_limit(self, host, recovery):
        host.replace("queries", rows(15))
        record = SizeRecord(
            resource_id="queries", element_count=15, limit=10, percentage_of_limit=150.0, band=SizeBand.CRITICAL
        )

        assert recovery.targeted_cleanup("queries", record) == 5
        assert host.content("queries") == rows(5)
