"""
Configuration management for the retention system.

This module handles loading, validation, and management of retention
configuration (YAML) and storage credentials (environment).
"""

import os
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Any, List, Optional, Mapping

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, StrictInt, ValidationError

from .retention_models import (
    MAX_WINDOW_DAYS, RetentionPolicy, ConfigurationError, PolicyValidationError
)

logger = logging.getLogger(__name__)


DEFAULT_BACKUP_SUFFIXES = ['.sql', '.sql.gz', '.sql.enc', '.sql.gz.enc']


class StorageSettings(BaseModel):
    """Object storage connection settings."""
    bucket_name: str = Field(min_length=1)
    access_key_id: str = Field(min_length=1)
    secret_access_key: str = Field(min_length=1)
    endpoint_url: Optional[str] = None
    region: str = "auto"
    max_attempts: int = 3


class PolicyOverride(BaseModel):
    """Per-request policy override. Absent fields fall back to the default policy."""
    model_config = ConfigDict(populate_by_name=True, extra='forbid')

    daily_retention_days: Optional[StrictInt] = Field(default=None, ge=0, le=MAX_WINDOW_DAYS,
                                                      alias='dailyRetentionDays')
    weekly_retention_weeks: Optional[StrictInt] = Field(default=None, ge=0, le=MAX_WINDOW_DAYS // 7,
                                                        alias='weeklyRetentionWeeks')
    monthly_retention_months: Optional[StrictInt] = Field(default=None, ge=0, le=MAX_WINDOW_DAYS // 30,
                                                          alias='monthlyRetentionMonths')
    max_total_size_bytes: Optional[StrictInt] = Field(default=None, ge=0, alias='maxTotalSizeBytes')
    max_backup_count: Optional[StrictInt] = Field(default=None, ge=0, alias='maxBackupCount')

    def apply_to(self, policy: RetentionPolicy) -> RetentionPolicy:
        return policy.with_overrides(self.model_dump(exclude_none=True))


def load_storage_settings(environ: Optional[Mapping[str, str]] = None) -> StorageSettings:
    """
    Load storage settings from the environment.

    Generic S3_* variables take precedence over the Cloudflare R2_* ones.
    A .env file is read first when no explicit mapping is given.
    """
    if environ is None:
        load_dotenv()
        environ = os.environ

    def first(*names: str) -> Optional[str]:
        for name in names:
            value = environ.get(name)
            if value:
                return value
        return None

    endpoint_url = first("S3_ENDPOINT_URL")
    account_id = first("R2_ACCOUNT_ID")
    if not endpoint_url and account_id:
        endpoint_url = f"https://{account_id}.r2.cloudflarestorage.com"

    values = {
        'bucket_name': first("S3_BUCKET_NAME", "R2_BUCKET_NAME"),
        'access_key_id': first("S3_ACCESS_KEY_ID", "R2_ACCESS_KEY_ID"),
        'secret_access_key': first("S3_SECRET_ACCESS_KEY", "R2_SECRET_ACCESS_KEY"),
    }
    missing = [name for name, value in values.items() if not value]
    if missing:
        raise ConfigurationError(f"Storage credentials not configured: missing {', '.join(missing)}")

    values['endpoint_url'] = endpoint_url
    values['region'] = first("S3_REGION") or "auto"
    try:
        return StorageSettings(**values)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid storage settings: {e}") from e


@dataclass
class RetentionConfig:
    """Configuration for retention runs."""
    enabled: bool
    prefix: str
    dry_run: bool
    max_concurrency: int
    protect_manual_backups: bool
    manual_marker: str
    backup_suffixes: List[str]
    deadline_seconds: Optional[float]
    policy: RetentionPolicy
    dedup_daily: bool = False
    scheduler_settings: Dict[str, Any] = field(default_factory=dict)
    logging_settings: Dict[str, Any] = field(default_factory=dict)


class RetentionConfigManager:
    """Manages retention system configuration."""

    def __init__(self, config_path: str):
        self.config_path = Path(config_path)
        self.config = self._load_config()

    def _load_config(self) -> RetentionConfig:
        """Load configuration from YAML file."""
        if self.config_path.exists():
            try:
                with open(self.config_path, 'r') as f:
                    config_data = yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError) as e:
                raise ConfigurationError(f"Failed to read config {self.config_path}: {e}") from e
        else:
            logger.warning(f"Config file not found at {self.config_path}. Using defaults.")
            config_data = self._get_default_config()
            self._save_config(config_data)

        return self._parse_config(config_data)

    def _parse_config(self, config_data: Dict[str, Any]) -> RetentionConfig:
        """Parse configuration data into RetentionConfig object."""
        if not isinstance(config_data, dict):
            raise ConfigurationError("Retention config must be a mapping")

        global_settings = config_data.get('global', {}) or {}
        try:
            policy = RetentionPolicy.from_dict(config_data.get('retention_policy'))
        except PolicyValidationError as e:
            raise ConfigurationError(f"Invalid retention_policy: {e}") from e

        max_concurrency = global_settings.get('max_concurrency', 4)
        if isinstance(max_concurrency, bool) or not isinstance(max_concurrency, int) or max_concurrency < 1:
            raise ConfigurationError(f"max_concurrency must be a positive integer, got {max_concurrency!r}")

        prefix = global_settings.get('prefix', 'backups/')
        if not isinstance(prefix, str):
            raise ConfigurationError(f"prefix must be a string, got {prefix!r}")

        manual_marker = global_settings.get('manual_marker', 'manual')
        if manual_marker is not None and not isinstance(manual_marker, str):
            raise ConfigurationError(f"manual_marker must be a string, got {manual_marker!r}")

        backup_suffixes = global_settings.get('backup_suffixes', DEFAULT_BACKUP_SUFFIXES)
        if not isinstance(backup_suffixes, list) or not all(isinstance(s, str) for s in backup_suffixes):
            raise ConfigurationError(f"backup_suffixes must be a list of strings, got {backup_suffixes!r}")

        deadline_seconds = global_settings.get('deadline_seconds')
        if deadline_seconds is not None and (
                isinstance(deadline_seconds, bool)
                or not isinstance(deadline_seconds, (int, float))
                or deadline_seconds <= 0):
            raise ConfigurationError(f"deadline_seconds must be a positive number, got {deadline_seconds!r}")

        return RetentionConfig(
            enabled=self._get_flag(global_settings, 'enabled', True),
            prefix=prefix,
            dry_run=self._get_flag(global_settings, 'dry_run', False),
            max_concurrency=max_concurrency,
            protect_manual_backups=self._get_flag(global_settings, 'protect_manual_backups', True),
            manual_marker=manual_marker,
            backup_suffixes=list(backup_suffixes),
            deadline_seconds=deadline_seconds,
            policy=policy,
            dedup_daily=self._get_flag(global_settings, 'dedup_daily', False),
            scheduler_settings=config_data.get('scheduler', {}) or {},
            logging_settings=config_data.get('logging', {}) or {}
        )

    @staticmethod
    def _get_flag(settings: Dict[str, Any], name: str, default: bool) -> bool:
        value = settings.get(name, default)
        if not isinstance(value, bool):
            raise ConfigurationError(f"{name} must be true or false, got {value!r}")
        return value

    def _get_default_config(self) -> Dict[str, Any]:
        """Get default configuration."""
        return {
            'global': {
                'enabled': True,
                'prefix': 'backups/',
                'dry_run': False,
                'max_concurrency': 4,
                'protect_manual_backups': True,
                'manual_marker': 'manual',
                'backup_suffixes': list(DEFAULT_BACKUP_SUFFIXES),
                'deadline_seconds': None,
                'dedup_daily': False
            },
            'retention_policy': RetentionPolicy().to_dict(),
            'scheduler': {
                'enabled': True,
                'cleanup_schedule': '03:00',
                'check_interval_minutes': 60
            },
            'logging': {
                'logs_dir': 'logs/retention',
                'audit_trail': True
            }
        }

    def _save_config(self, config_data: Dict[str, Any]):
        """Save configuration to YAML file."""
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_path, 'w') as f:
                yaml.dump(config_data, f, default_flow_style=False, indent=2)
        except OSError as e:
            logger.error(f"Failed to save config: {e}")
