"""
Tier selection for the retention system.

Within each tier, picks the backups to retain using that tier's dedup rule.
"""

import logging
from typing import Callable, Dict, Hashable, List

from .retention_models import Backup, RetentionTier

logger = logging.getLogger(__name__)


def recency_key(backup: Backup):
    """Ordering key: newer first, ties broken by the greater key."""
    return backup.created_at, backup.key


def sort_newest_first(backups: List[Backup]) -> List[Backup]:
    return sorted(backups, key=recency_key, reverse=True)


def iso_week_bucket(backup: Backup) -> Hashable:
    iso = backup.created_at.isocalendar()
    return iso[0], iso[1]


def calendar_day_bucket(backup: Backup) -> Hashable:
    return backup.created_at.date()


def calendar_month_bucket(backup: Backup) -> Hashable:
    return backup.created_at.year, backup.created_at.month


def keep_newest_per_bucket(backups: List[Backup], bucket_fn: Callable[[Backup], Hashable]) -> List[Backup]:
    """Keep only the most recent backup of each bucket."""
    newest: Dict[Hashable, Backup] = {}
    for backup in backups:
        bucket = bucket_fn(backup)
        current = newest.get(bucket)
        if current is None or recency_key(backup) > recency_key(current):
            newest[bucket] = backup
    return list(newest.values())


def select_tier(tier: RetentionTier, backups: List[Backup], dedup_daily: bool = False) -> List[Backup]:
    """Apply the dedup rule of a single tier."""
    if tier == RetentionTier.DAILY and dedup_daily:
        return keep_newest_per_bucket(backups, calendar_day_bucket)
    if tier in (RetentionTier.DAILY, RetentionTier.PROTECTED):
        return list(backups)
    if tier == RetentionTier.WEEKLY:
        return keep_newest_per_bucket(backups, iso_week_bucket)
    if tier == RetentionTier.MONTHLY:
        return keep_newest_per_bucket(backups, calendar_month_bucket)
    return []


def select_backups(tiers: Dict[RetentionTier, List[Backup]], dedup_daily: bool = False) -> List[Backup]:
    """
    Build the tier-selected keep-set.

    Args:
        tiers: Backups grouped by tier
        dedup_daily: Keep only the newest backup per calendar day in the daily tier

    Returns:
        Union of per-tier keeps, newest first
    """
    keep: Dict[str, Backup] = {}
    for tier, backups in tiers.items():
        selected = select_tier(tier, backups, dedup_daily)
        if backups:
            logger.debug(f"Tier {tier.value}: keeping {len(selected)} of {len(backups)}")
        for backup in selected:
            keep[backup.key] = backup
    return sort_newest_first(list(keep.values()))
