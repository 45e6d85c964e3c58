"""
Deletion executor for the retention system.

Deletes every backup outside the final keep-set. Deletions are independent:
one failing object never stops the others.
"""

import asyncio
import logging
import time
from typing import List, Optional, Tuple

from .catalog import StorageCatalog
from .retention_models import Backup, DeletionError, DeletionOutcome

logger = logging.getLogger(__name__)

_DELETED = "deleted"
_FAILED = "failed"
_SKIPPED = "skipped"


class RetentionCleanup:
    """Handles backup deletion with bounded concurrency."""

    def __init__(self, catalog: StorageCatalog, max_concurrency: int = 4):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.catalog = catalog
        self.max_concurrency = max_concurrency

    async def delete_backups(self, candidates: List[Backup], dry_run: bool = False,
                             cancel_event: Optional[asyncio.Event] = None,
                             deadline: Optional[float] = None) -> DeletionOutcome:
        """
        Delete candidate backups.

        Args:
            candidates: Backups to delete
            dry_run: If True, nothing is deleted and every candidate is reported as skipped
            cancel_event: When set, deletions not yet started are skipped
            deadline: time.monotonic() value after which deletions not yet started are skipped

        Returns:
            DeletionOutcome with deleted keys, errors and skipped keys
        """
        if dry_run:
            for backup in candidates:
                logger.info(f"DRY RUN: Would delete {backup.key}")
            return DeletionOutcome(skipped=[backup.key for backup in candidates])

        if not candidates:
            return DeletionOutcome()

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def delete_one(backup: Backup) -> Tuple[str, str, Optional[str]]:
            async with semaphore:
                if self._should_stop(cancel_event, deadline):
                    return backup.key, _SKIPPED, None
                try:
                    await self.catalog.delete_object(backup.key)
                except Exception as e:
                    logger.error(f"Failed to delete {backup.key}: {e}")
                    return backup.key, _FAILED, str(e) or e.__class__.__name__
                logger.info(f"Deleted backup: {backup.file_name}")
                return backup.key, _DELETED, None

        results = await asyncio.gather(*(delete_one(backup) for backup in candidates))

        # Single aggregation point, in candidate order
        outcome = DeletionOutcome()
        for key, status, message in results:
            if status == _DELETED:
                outcome.deleted.append(key)
            elif status == _FAILED:
                outcome.errors.append(DeletionError(key=key, message=message))
            else:
                outcome.skipped.append(key)

        if outcome.skipped:
            logger.warning(f"Deletion stopped early: {len(outcome.skipped)} candidates left for the next run")
        return outcome

    @staticmethod
    def _should_stop(cancel_event: Optional[asyncio.Event], deadline: Optional[float]) -> bool:
        if cancel_event is not None and cancel_event.is_set():
            return True
        return deadline is not None and time.monotonic() >= deadline
