"""
Main retention manager - orchestrates the retention system.

This is the main entry point that runs the retention pipeline:
listing -> classification -> tier selection -> caps -> deletion -> report.
"""

import asyncio
import logging
import threading
import time
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple, Any

from .catalog import StorageCatalog, create_storage_catalog
from .retention_caps import enforce_caps
from .retention_classifier import build_backups, classify_backups, classify_backup
from .retention_cleanup import RetentionCleanup
from .retention_config import RetentionConfig, RetentionConfigManager, load_storage_settings
from .retention_logging import RetentionLogger
from .retention_models import (
    Backup, RetentionPolicy, RetentionResult, RetentionTier,
    ListingError, RetentionInProgressError, POLICY_FIELD_DESCRIPTIONS
)
from .retention_selector import select_backups, sort_newest_first

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RetentionManager:
    """
    Main retention manager that orchestrates retention runs.

    Runs are serialized per (bucket, prefix): a second run for the same key
    while one is active fails with RetentionInProgressError.
    """

    def __init__(self, config: RetentionConfig, catalog: StorageCatalog,
                 metrics=None, retention_logger: Optional[RetentionLogger] = None,
                 clock: Callable[[], datetime] = utc_now):
        self.config = config
        self.catalog = catalog
        self.metrics = metrics
        self.retention_logger = retention_logger or RetentionLogger(
            config.logging_settings.get('logs_dir', 'logs/retention')
            if config.logging_settings.get('audit_trail', True) else None
        )
        self.clock = clock
        self.cleanup = RetentionCleanup(catalog, config.max_concurrency)

        self._locks: Dict[Tuple[str, str], threading.Lock] = {}
        self._locks_guard = threading.Lock()

        logger.info(f"Retention Manager initialized for bucket {catalog.bucket} (prefix {config.prefix!r})")

    @property
    def policy(self) -> RetentionPolicy:
        return self.config.policy

    def _lock_for(self, prefix: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault((self.catalog.bucket, prefix), threading.Lock())

    async def run_retention(self, policy: Optional[RetentionPolicy] = None,
                            dry_run: Optional[bool] = None,
                            now: Optional[datetime] = None,
                            cancel_event: Optional[asyncio.Event] = None,
                            deadline_seconds: Optional[float] = None) -> RetentionResult:
        """
        Apply the retention policy to the configured prefix.

        Args:
            policy: Policy for this run. Defaults to the configured policy.
            dry_run: If True, computes the plan without deleting. Defaults to config.
            now: Reference time for classification. Defaults to the clock.
            cancel_event: Stops deletions that have not started yet once set.
            deadline_seconds: Time budget for the deletion phase. Defaults to config.

        Returns:
            RetentionResult for the run.

        Raises:
            PolicyValidationError, ListingError, RetentionInProgressError
        """
        policy = policy or self.config.policy
        policy.validate()
        dry_run = self.config.dry_run if dry_run is None else dry_run
        if deadline_seconds is None:
            deadline_seconds = self.config.deadline_seconds
        prefix = self.config.prefix

        lock = self._lock_for(prefix)
        if not lock.acquire(blocking=False):
            raise RetentionInProgressError(
                f"A retention run is already in progress for {self.catalog.bucket}/{prefix}")

        try:
            return await self._run_locked(policy, dry_run, now, cancel_event, deadline_seconds, prefix)
        except Exception as e:
            if self.metrics is not None:
                self.metrics.record_failure(self.catalog.bucket, prefix, e)
            raise
        finally:
            lock.release()

    async def _run_locked(self, policy: RetentionPolicy, dry_run: bool, now: Optional[datetime],
                          cancel_event: Optional[asyncio.Event], deadline_seconds: Optional[float],
                          prefix: str) -> RetentionResult:
        started = time.monotonic()
        now = now or self.clock()
        run_id = f"retention_{now.strftime('%Y%m%d_%H%M%S')}"

        logger.info(f"Starting retention run {run_id} for {self.catalog.bucket}/{prefix} "
                    f"(dry_run={dry_run}, policy={policy.to_dict()})")

        backups = await self._list_backups(prefix)
        total_size_before = sum(backup.size_bytes for backup in backups)

        kept, candidates = self.plan(backups, policy, now)
        logger.info(f"Total backups: {len(backups)}, to keep: {len(kept)}, to delete: {len(candidates)}")

        deadline = started + deadline_seconds if deadline_seconds else None
        outcome = await self.cleanup.delete_backups(
            candidates, dry_run=dry_run, cancel_event=cancel_event, deadline=deadline)

        sizes = {backup.key: backup.size_bytes for backup in candidates}
        result = RetentionResult(
            run_id=run_id,
            policy=policy,
            kept=kept,
            deleted=outcome.deleted,
            errors=outcome.errors,
            skipped=outcome.skipped,
            total_size_before=total_size_before,
            total_size_after=sum(backup.size_bytes for backup in kept),
            reclaimed_bytes=sum(sizes[key] for key in outcome.deleted),
            dry_run=dry_run,
            started_at=now,
            duration_seconds=time.monotonic() - started
        )

        self.retention_logger.log_run(result, self.catalog.bucket, prefix)
        if self.metrics is not None:
            self.metrics.record_run(self.catalog.bucket, prefix, result)
        return result

    def plan(self, backups: List[Backup], policy: RetentionPolicy,
             now: datetime) -> Tuple[List[Backup], List[Backup]]:
        """
        Decide which backups to keep. Pure: no storage calls.

        Returns:
            Tuple of (kept newest first, deletion candidates oldest first)
        """
        tiers = classify_backups(backups, now, policy, self.config.protect_manual_backups)
        kept, _ = enforce_caps(select_backups(tiers, self.config.dedup_daily), policy)
        kept_keys = {backup.key for backup in kept}
        candidates = [backup for backup in backups if backup.key not in kept_keys]
        return kept, list(reversed(sort_newest_first(candidates)))

    async def _list_backups(self, prefix: str) -> List[Backup]:
        try:
            objects = await self.catalog.list_objects(prefix)
        except ListingError:
            raise
        except Exception as e:
            raise ListingError(f"Failed to list backups under {prefix!r}: {e}") from e
        return build_backups(
            objects,
            prefix=prefix,
            suffixes=self.config.backup_suffixes,
            manual_marker=self.config.manual_marker
        )

    async def list_backups(self, policy: Optional[RetentionPolicy] = None,
                           now: Optional[datetime] = None) -> List[Tuple[Backup, RetentionTier]]:
        """List backups newest first with their tier. Never deletes."""
        policy = policy or self.config.policy
        now = now or self.clock()
        backups = sort_newest_first(await self._list_backups(self.config.prefix))
        return [
            (backup, classify_backup(backup, now, policy, self.config.protect_manual_backups))
            for backup in backups
        ]

    def describe_policy(self) -> Dict[str, Any]:
        """Describe the default policy. Performs no storage calls."""
        return {
            'policy': self.config.policy.to_dict(),
            'descriptions': dict(POLICY_FIELD_DESCRIPTIONS),
            'prefix': self.config.prefix,
            'protect_manual_backups': self.config.protect_manual_backups,
            'backup_suffixes': list(self.config.backup_suffixes)
        }

    async def close(self):
        """Release the storage client."""
        await self.catalog.close()


def create_retention_manager(config_path: str, catalog: Optional[StorageCatalog] = None,
                             metrics=None) -> RetentionManager:
    """Create a RetentionManager, building an S3 catalog from the environment if none is given."""
    config = RetentionConfigManager(config_path).config
    if catalog is None:
        catalog = create_storage_catalog(load_storage_settings())
    return RetentionManager(config, catalog, metrics=metrics)
