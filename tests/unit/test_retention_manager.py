"""
Unit tests for the Retention Manager.

Tests the full retention pipeline against an in-memory catalog with a
fixed reference time.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from retentiond.storage.catalog import InMemoryStorageCatalog
from retentiond.storage.retention_config import DEFAULT_BACKUP_SUFFIXES, RetentionConfig
from retentiond.storage.retention_manager import RetentionManager, create_retention_manager
from retentiond.storage.retention_models import (
    ListingError,
    PolicyValidationError,
    RetentionInProgressError,
    RetentionPolicy,
    RetentionTier,
)


NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)
UNBOUNDED = dict(max_total_size_bytes=0, max_backup_count=0)


def make_config(**overrides) -> RetentionConfig:
    values = dict(
        enabled=True,
        prefix="backups/",
        dry_run=False,
        max_concurrency=4,
        protect_manual_backups=True,
        manual_marker="manual",
        backup_suffixes=list(DEFAULT_BACKUP_SUFFIXES),
        deadline_seconds=None,
        policy=RetentionPolicy(**UNBOUNDED),
        logging_settings={'audit_trail': False},
    )
    values.update(overrides)
    return RetentionConfig(**values)


def add_daily_backups(catalog, days, size=100):
    """One backup per day at noon, newest first."""
    keys = []
    for i in range(days):
        created_at = NOW - timedelta(days=i)
        key = f"backups/db-{created_at:%Y-%m-%d}.sql.gz"
        catalog.add(key, size, created_at)
        keys.append(key)
    return keys


class TestRetentionScenarios:
    """Test end-to-end retention outcomes."""

    def setup_method(self):
        self.catalog = InMemoryStorageCatalog(bucket="db-backups")

    def _manager(self, **config_overrides):
        return RetentionManager(make_config(**config_overrides), self.catalog, clock=lambda: NOW)

    @pytest.mark.asyncio
    async def test_daily_and_weekly_windows(self):
        keys = add_daily_backups(self.catalog, 10)
        manager = self._manager(policy=RetentionPolicy(
            daily_retention_days=7, weekly_retention_weeks=4, monthly_retention_months=6, **UNBOUNDED))

        result = await manager.run_retention()

        # 06-06, 06-07 and 06-08 share ISO week 23; only 06-08 survives
        assert [b.key for b in result.kept] == keys[:8]
        assert result.deleted == ["backups/db-2024-06-06.sql.gz", "backups/db-2024-06-07.sql.gz"]
        assert result.errors == []
        assert result.status == 'success'
        assert sorted(self.catalog.objects) == sorted(keys[:8])

    @pytest.mark.asyncio
    async def test_identical_timestamps_keep_all_in_daily_tier(self):
        for key in ("a", "b", "c"):
            self.catalog.add(f"backups/{key}.sql", 100, NOW - timedelta(hours=1))

        result = await self._manager().run_retention()

        assert len(result.kept) == 3
        assert result.deleted == []

    @pytest.mark.asyncio
    async def test_identical_timestamps_with_daily_dedup(self):
        for key in ("a", "b", "c"):
            self.catalog.add(f"backups/{key}.sql", 100, NOW - timedelta(hours=1))

        result = await self._manager(dedup_daily=True).run_retention()

        assert [b.key for b in result.kept] == ["backups/c.sql"]
        assert sorted(result.deleted) == ["backups/a.sql", "backups/b.sql"]

    @pytest.mark.asyncio
    async def test_count_cap_evicts_oldest(self):
        keys = add_daily_backups(self.catalog, 9)
        manager = self._manager(policy=RetentionPolicy(
            daily_retention_days=10, max_backup_count=5, max_total_size_bytes=0))

        result = await manager.run_retention()

        assert [b.key for b in result.kept] == keys[:5]
        assert result.deleted == list(reversed(keys[5:]))

    @pytest.mark.asyncio
    async def test_size_cap_evicts_oldest(self):
        keys = add_daily_backups(self.catalog, 5, size=1000)
        manager = self._manager(policy=RetentionPolicy(
            daily_retention_days=10, max_backup_count=0, max_total_size_bytes=2500))

        result = await manager.run_retention()

        assert [b.key for b in result.kept] == keys[:2]
        assert result.total_size_after == 2000

    @pytest.mark.asyncio
    async def test_partial_failure(self):
        add_daily_backups(self.catalog, 10)
        failing = "backups/db-2024-06-06.sql.gz"
        self.catalog.fail_deletes_for(failing, "Access Denied")

        result = await self._manager().run_retention()

        assert result.deleted == ["backups/db-2024-06-07.sql.gz"]
        assert [(e.key, e.message) for e in result.errors] == [(failing, "Access Denied")]
        assert result.status == 'partial'
        assert failing in self.catalog.objects

    @pytest.mark.asyncio
    async def test_empty_bucket(self):
        result = await self._manager().run_retention()

        assert result.kept == []
        assert result.deleted == []
        assert result.errors == []
        assert result.total_size_before == 0
        assert result.total_size_after == 0
        assert self.catalog.delete_calls == []

    @pytest.mark.asyncio
    async def test_non_backup_objects_are_ignored(self):
        self.catalog.add("backups/README.txt", 10, NOW - timedelta(days=900))
        self.catalog.add("backups/db.sql", 10, NOW - timedelta(days=900))

        result = await self._manager().run_retention()

        assert result.deleted == ["backups/db.sql"]
        assert "backups/README.txt" in self.catalog.objects
        assert result.total_size_before == 10


class TestRetentionInvariants:
    """Test properties that hold for every run."""

    def setup_method(self):
        self.catalog = InMemoryStorageCatalog(bucket="db-backups")
        add_daily_backups(self.catalog, 60, size=1000)
        self.catalog.add("backups/manual-pre-migration.sql", 500, NOW - timedelta(days=400))
        self.catalog.fail_deletes_for("backups/db-2024-05-01.sql.gz")
        self.manager = RetentionManager(make_config(), self.catalog, clock=lambda: NOW)

    @pytest.mark.asyncio
    async def test_every_backup_is_accounted_for(self):
        listed = set(self.catalog.objects)

        result = await self.manager.run_retention()

        kept = {b.key for b in result.kept}
        deleted = set(result.deleted)
        errored = {e.key for e in result.errors}
        skipped = set(result.skipped)
        assert kept | deleted | errored | skipped == listed
        assert len(kept) + len(deleted) + len(errored) + len(skipped) == len(listed)

    @pytest.mark.asyncio
    async def test_size_totals(self):
        result = await self.manager.run_retention()

        assert result.total_size_before == 60 * 1000 + 500
        assert result.total_size_after == sum(b.size_bytes for b in result.kept)
        assert result.reclaimed_bytes == 1000 * len(result.deleted)
        assert result.total_size_after <= result.total_size_before

    @pytest.mark.asyncio
    async def test_manual_backup_protected(self):
        result = await self.manager.run_retention()
        assert "backups/manual-pre-migration.sql" in {b.key for b in result.kept}

    @pytest.mark.asyncio
    async def test_manual_backup_not_protected_when_disabled(self):
        self.manager.config.protect_manual_backups = False

        result = await self.manager.run_retention()

        assert "backups/manual-pre-migration.sql" in result.deleted

    @pytest.mark.asyncio
    async def test_second_run_is_idempotent(self):
        self.catalog.failing_keys.clear()
        first = await self.manager.run_retention()
        second = await self.manager.run_retention()

        assert first.deleted
        assert second.deleted == []
        assert [b.key for b in second.kept] == [b.key for b in first.kept]

    @pytest.mark.asyncio
    async def test_dry_run_deletes_nothing(self):
        listed = set(self.catalog.objects)

        result = await self.manager.run_retention(dry_run=True)

        assert result.dry_run
        assert result.deleted == []
        assert result.skipped
        assert self.catalog.delete_calls == []
        assert set(self.catalog.objects) == listed
        assert result.status == 'success'

    @pytest.mark.asyncio
    async def test_candidates_deleted_oldest_first(self):
        result = await self.manager.run_retention(
            policy=RetentionPolicy(daily_retention_days=0, weekly_retention_weeks=0,
                                   monthly_retention_months=0, **UNBOUNDED))

        assert self.catalog.delete_calls[0] == "backups/db-2024-04-17.sql.gz"
        assert result.deleted[-1] == "backups/db-2024-06-15.sql.gz"


class TestRetentionFailures:
    """Test fatal errors and run serialization."""

    def setup_method(self):
        self.catalog = InMemoryStorageCatalog(bucket="db-backups")
        self.manager = RetentionManager(make_config(), self.catalog, clock=lambda: NOW)

    @pytest.mark.asyncio
    async def test_listing_error_aborts_before_deleting(self):
        add_daily_backups(self.catalog, 40)
        self.catalog.list_error = "connection reset during page 2"

        with pytest.raises(ListingError):
            await self.manager.run_retention()
        assert self.catalog.delete_calls == []

    @pytest.mark.asyncio
    async def test_unexpected_listing_failure_is_wrapped(self):
        async def broken_list(prefix):
            raise OSError("network unreachable")

        self.catalog.list_objects = broken_list

        with pytest.raises(ListingError, match="network unreachable"):
            await self.manager.run_retention()

    @pytest.mark.asyncio
    async def test_invalid_policy_rejected(self):
        policy = RetentionPolicy()
        object.__setattr__(policy, 'daily_retention_days', -3)

        with pytest.raises(PolicyValidationError):
            await self.manager.run_retention(policy=policy)
        assert self.catalog.list_calls == 0

    @pytest.mark.asyncio
    async def test_concurrent_run_rejected(self):
        for i in range(4):
            self.catalog.add(f"backups/old-{i}.sql", 10, NOW - timedelta(days=1000))
        self.catalog.delete_delay_seconds = 0.05

        first = asyncio.create_task(self.manager.run_retention())
        await asyncio.sleep(0.01)
        with pytest.raises(RetentionInProgressError):
            await self.manager.run_retention()
        result = await first

        assert len(result.deleted) == 4
        # the lock is released once the run completes
        second = await self.manager.run_retention()
        assert second.deleted == []

    @pytest.mark.asyncio
    async def test_deadline_leaves_candidates_for_next_run(self):
        for i in range(3):
            self.catalog.add(f"backups/old-{i}.sql", 10, NOW - timedelta(days=1000))
        self.catalog.delete_delay_seconds = 0.05
        self.manager.cleanup.max_concurrency = 1

        result = await self.manager.run_retention(deadline_seconds=0.02)

        assert len(result.deleted) == 1
        assert len(result.skipped) == 2
        assert result.status == 'partial'


class TestRetentionQueries:
    """Test read-only operations."""

    def setup_method(self):
        self.catalog = InMemoryStorageCatalog(bucket="db-backups")
        self.manager = RetentionManager(make_config(), self.catalog, clock=lambda: NOW)

    def test_describe_policy_makes_no_storage_calls(self):
        description = self.manager.describe_policy()

        assert description['policy'] == self.manager.policy.to_dict()
        assert set(description['descriptions']) == set(description['policy'])
        assert description['prefix'] == "backups/"
        assert self.catalog.list_calls == 0

    @pytest.mark.asyncio
    async def test_list_backups_with_tiers(self):
        add_daily_backups(self.catalog, 10)
        self.catalog.add("backups/db-2023-01-01.sql.gz", 100, datetime(2023, 1, 1, tzinfo=timezone.utc))

        entries = await self.manager.list_backups()

        assert entries[0][0].key == "backups/db-2024-06-15.sql.gz"
        assert entries[0][1] == RetentionTier.DAILY
        assert entries[-1][1] == RetentionTier.EXPIRED
        assert self.catalog.delete_calls == []

    @pytest.mark.asyncio
    async def test_close_releases_catalog(self):
        await self.manager.close()
        assert self.catalog.closed

    def test_create_retention_manager_from_yaml(self, tmp_path):
        config_path = tmp_path / "retention.yaml"
        config_path.write_text(
            "global:\n  prefix: pg/\n  max_concurrency: 2\n"
            "retention_policy:\n  daily_retention_days: 3\n"
            f"logging:\n  logs_dir: {tmp_path / 'logs'}\n"
        )

        manager = create_retention_manager(str(config_path), catalog=self.catalog)

        assert manager.config.prefix == "pg/"
        assert manager.cleanup.max_concurrency == 2
        assert manager.policy.daily_retention_days == 3
        assert manager.retention_logger.logs_dir == tmp_path / "logs"
