"""
Backup classification for the retention system.

Turns raw listing entries into Backup records and assigns each one to a
retention tier relative to an injected reference time.
"""

import logging
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Sequence

from .retention_models import Backup, RetentionPolicy, RetentionTier, StorageObject

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    """Naive timestamps are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def build_backups(objects: Iterable[StorageObject], prefix: str = "",
                  suffixes: Optional[Sequence[str]] = None,
                  manual_marker: Optional[str] = "manual") -> List[Backup]:
    """
    Convert listing entries to Backup records.

    Args:
        objects: Raw listing entries
        prefix: Listing prefix, stripped from the key to form the file name
        suffixes: Only keys ending with one of these are backups; None accepts all
        manual_marker: Keys containing this marker are flagged as manual backups

    Returns:
        Backups in listing order
    """
    backups = []
    ignored = 0
    for obj in objects:
        if suffixes and not obj.key.endswith(tuple(suffixes)):
            ignored += 1
            continue
        file_name = obj.key[len(prefix):] if prefix and obj.key.startswith(prefix) else obj.key
        backups.append(Backup(
            key=obj.key,
            file_name=file_name,
            size_bytes=max(0, int(obj.size_bytes)),
            created_at=_as_utc(obj.last_modified),
            is_manual=bool(manual_marker) and manual_marker in obj.key
        ))

    if ignored:
        logger.debug(f"Ignored {ignored} non-backup objects under {prefix!r}")
    return backups


def tier_boundaries(policy: RetentionPolicy) -> Dict[RetentionTier, timedelta]:
    """Exclusive upper age bound of each non-expired tier."""
    daily_end = timedelta(days=policy.daily_retention_days)
    weekly_end = daily_end + timedelta(days=7 * policy.weekly_retention_weeks)
    monthly_end = weekly_end + timedelta(days=30 * policy.monthly_retention_months)
    return {
        RetentionTier.DAILY: daily_end,
        RetentionTier.WEEKLY: weekly_end,
        RetentionTier.MONTHLY: monthly_end,
    }


def classify_backup(backup: Backup, now: datetime, policy: RetentionPolicy,
                    protect_manual: bool = False) -> RetentionTier:
    """Assign exactly one tier to a backup."""
    if protect_manual and backup.is_manual:
        return RetentionTier.PROTECTED

    # Clock skew can put created_at slightly after now
    age = max(_as_utc(now) - backup.created_at, timedelta(0))
    for tier, upper_bound in tier_boundaries(policy).items():
        if age < upper_bound:
            return tier
    return RetentionTier.EXPIRED


def classify_backups(backups: Iterable[Backup], now: datetime, policy: RetentionPolicy,
                     protect_manual: bool = False) -> Dict[RetentionTier, List[Backup]]:
    """Group backups by tier. Every tier is present in the result, possibly empty."""
    tiers: Dict[RetentionTier, List[Backup]] = defaultdict(list)
    for backup in backups:
        tiers[classify_backup(backup, now, policy, protect_manual)].append(backup)

    logger.debug("Tier assignment: " + ", ".join(
        f"{tier.value}={len(tiers[tier])}" for tier in RetentionTier))
    return {tier: tiers[tier] for tier in RetentionTier}
