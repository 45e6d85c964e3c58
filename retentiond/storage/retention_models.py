"""
Data models for the backup retention system.

This module contains the data classes, enums and exceptions shared by every
stage of the retention pipeline.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional, List, Dict, Any


GIB = 1024 * 1024 * 1024

# Tier windows are timedeltas, so their combined length is bounded by timedelta.max
MAX_WINDOW_DAYS = timedelta.max.days


class RetentionError(Exception):
    """Base class for fatal retention errors."""
    pass


class ConfigurationError(RetentionError):
    """Raised when storage credentials or configuration are missing or invalid."""
    pass


class PolicyValidationError(RetentionError):
    """Raised when a retention policy has an invalid shape."""
    pass


class StorageError(RetentionError):
    """Raised by a storage catalog when a single object operation fails."""
    pass


class ListingError(StorageError):
    """Raised when the backup catalog cannot be listed completely."""
    pass


class RetentionInProgressError(RetentionError):
    """Raised when a run is already active for the same bucket and prefix."""
    pass


class RetentionTier(Enum):
    """Retention tiers, assigned by backup age."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    EXPIRED = "expired"
    PROTECTED = "protected"


@dataclass(frozen=True)
class Backup:
    """A single backup archive in object storage. Identity is the key."""
    key: str
    file_name: str = field(compare=False)
    size_bytes: int = field(compare=False)
    created_at: datetime = field(compare=False)
    is_manual: bool = field(default=False, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'key': self.key,
            'file_name': self.file_name,
            'size_bytes': self.size_bytes,
            'created_at': self.created_at.isoformat(),
            'is_manual': self.is_manual
        }


POLICY_FIELDS = (
    'daily_retention_days',
    'weekly_retention_weeks',
    'monthly_retention_months',
    'max_total_size_bytes',
    'max_backup_count',
)


@dataclass(frozen=True)
class RetentionPolicy:
    """Tiered retention policy. Caps of 0 or None are unbounded."""
    daily_retention_days: int = 7
    weekly_retention_weeks: int = 4
    monthly_retention_months: int = 6
    max_total_size_bytes: Optional[int] = 5 * GIB
    max_backup_count: Optional[int] = 50

    def __post_init__(self):
        self.validate()

    def validate(self):
        """Reject negative or non-integer fields and windows longer than timedelta allows."""
        for name in POLICY_FIELDS:
            value = getattr(self, name)
            if value is None and name in ('max_total_size_bytes', 'max_backup_count'):
                continue
            # bool is an int subclass; a flag is never a valid window
            if isinstance(value, bool) or not isinstance(value, int):
                raise PolicyValidationError(f"{name} must be an integer, got {value!r}")
            if value < 0:
                raise PolicyValidationError(f"{name} must be >= 0, got {value}")

        window_days = (self.daily_retention_days + 7 * self.weekly_retention_weeks
                       + 30 * self.monthly_retention_months)
        if window_days > MAX_WINDOW_DAYS:
            raise PolicyValidationError(
                f"Retention windows span {window_days} days, more than the maximum of {MAX_WINDOW_DAYS}")

    @property
    def count_cap(self) -> Optional[int]:
        return self.max_backup_count or None

    @property
    def size_cap(self) -> Optional[int]:
        return self.max_total_size_bytes or None

    def with_overrides(self, overrides: Optional[Dict[str, Any]]) -> 'RetentionPolicy':
        """Return a new policy with the given fields replaced."""
        if not overrides:
            return self
        unknown = set(overrides) - set(POLICY_FIELDS)
        if unknown:
            raise PolicyValidationError(f"Unknown policy fields: {', '.join(sorted(unknown))}")
        values = self.to_dict()
        values.update(overrides)
        return RetentionPolicy(**values)

    def to_dict(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in POLICY_FIELDS}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'RetentionPolicy':
        return cls().with_overrides(data or {})


DEFAULT_RETENTION_POLICY = RetentionPolicy()

POLICY_FIELD_DESCRIPTIONS = {
    'daily_retention_days': 'Keep every backup younger than this many days.',
    'weekly_retention_weeks': 'After the daily window, keep the newest backup of each ISO week for this many weeks.',
    'monthly_retention_months': 'After the weekly window, keep the newest backup of each calendar month for this many 30-day months.',
    'max_total_size_bytes': 'Upper bound on the total size of kept backups; oldest are evicted first. 0 disables the cap.',
    'max_backup_count': 'Upper bound on the number of kept backups; oldest are evicted first. 0 disables the cap.',
}


@dataclass(frozen=True)
class StorageObject:
    """Raw listing entry returned by a storage catalog."""
    key: str
    size_bytes: int
    last_modified: datetime


@dataclass(frozen=True)
class DeletionError:
    """A deletion that was attempted and failed."""
    key: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {'key': self.key, 'message': self.message}


@dataclass
class DeletionOutcome:
    """Aggregated outcome of the deletion executor."""
    deleted: List[str] = field(default_factory=list)
    errors: List[DeletionError] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


@dataclass
class RetentionResult:
    """Outcome of one retention run."""
    run_id: str
    policy: RetentionPolicy
    kept: List[Backup]
    deleted: List[str]
    errors: List[DeletionError]
    skipped: List[str]
    total_size_before: int
    total_size_after: int
    reclaimed_bytes: int = 0
    dry_run: bool = False
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    duration_seconds: float = 0.0

    @property
    def space_saved_bytes(self) -> int:
        return self.total_size_before - self.total_size_after

    @property
    def status(self) -> str:
        if self.errors and not self.deleted:
            return 'failed'
        if self.errors or (self.skipped and not self.dry_run):
            return 'partial'
        return 'success'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'run_id': self.run_id,
            'status': self.status,
            'dry_run': self.dry_run,
            'kept_count': len(self.kept),
            'deleted_count': len(self.deleted),
            'skipped_count': len(self.skipped),
            'space_saved_bytes': self.space_saved_bytes,
            'reclaimed_bytes': self.reclaimed_bytes,
            'total_size_before_bytes': self.total_size_before,
            'total_size_after_bytes': self.total_size_after,
            'errors': [error.to_dict() for error in self.errors],
            'deleted_keys': list(self.deleted),
            'skipped_keys': list(self.skipped),
            'kept_keys': [backup.key for backup in self.kept],
            'policy': self.policy.to_dict(),
            'started_at': self.started_at.isoformat(),
            'duration_seconds': self.duration_seconds
        }
