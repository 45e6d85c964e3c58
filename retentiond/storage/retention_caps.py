"""
Global caps on the tier-selected keep-set.

Count and size ceilings are applied in that order, each evicting the oldest
remaining backup until satisfied.
"""

import logging
from typing import List, Tuple

from .retention_models import Backup, RetentionPolicy

logger = logging.getLogger(__name__)


def enforce_caps(keep_set: List[Backup], policy: RetentionPolicy) -> Tuple[List[Backup], List[Backup]]:
    """
    Apply count and size caps to a newest-first keep-set.

    Args:
        keep_set: Tier-selected backups, newest first
        policy: Policy carrying the caps

    Returns:
        Tuple of (kept, evicted); both newest first
    """
    kept = list(keep_set)
    evicted: List[Backup] = []

    count_cap = policy.count_cap
    if count_cap is not None and len(kept) > count_cap:
        evicted = kept[count_cap:] + evicted
        kept = kept[:count_cap]
        logger.info(f"Count cap {count_cap}: evicted {len(evicted)} oldest backups")

    size_cap = policy.size_cap
    if size_cap is not None:
        total_size = sum(backup.size_bytes for backup in kept)
        size_evicted: List[Backup] = []
        while kept and total_size > size_cap:
            oldest = kept.pop()
            total_size -= oldest.size_bytes
            size_evicted.insert(0, oldest)
        if size_evicted:
            logger.info(f"Size cap {size_cap} bytes: evicted {len(size_evicted)} oldest backups")
        evicted = size_evicted + evicted

    return kept, evicted
