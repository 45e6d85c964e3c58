"""
Backup retention engine.

Listing, classification, tier selection, caps, deletion and reporting for
backup archives stored in an object-storage bucket.
"""

from .retention_models import (
    Backup,
    RetentionPolicy,
    RetentionResult,
    RetentionTier,
    DeletionError,
    DEFAULT_RETENTION_POLICY,
    RetentionError,
    ConfigurationError,
    PolicyValidationError,
    StorageError,
    ListingError,
    RetentionInProgressError,
)
from .catalog import StorageCatalog, S3StorageCatalog, InMemoryStorageCatalog
from .retention_manager import RetentionManager, create_retention_manager
from .retention_logging import generate_retention_report

__all__ = [
    'Backup',
    'RetentionPolicy',
    'RetentionResult',
    'RetentionTier',
    'DeletionError',
    'DEFAULT_RETENTION_POLICY',
    'RetentionError',
    'ConfigurationError',
    'PolicyValidationError',
    'StorageError',
    'ListingError',
    'RetentionInProgressError',
    'StorageCatalog',
    'S3StorageCatalog',
    'InMemoryStorageCatalog',
    'RetentionManager',
    'create_retention_manager',
    'generate_retention_report',
]
