"""
Prometheus metrics for the retention system.

Tracks run outcomes, deletions, failures and reclaimed space per bucket
and prefix, on a private registry exposed through the /metrics endpoint.
"""

from typing import Optional

import structlog
from prometheus_client import (
    Counter, Histogram, Gauge,
    CollectorRegistry, generate_latest, CONTENT_TYPE_LATEST
)

from retentiond.storage.retention_models import RetentionResult

logger = structlog.get_logger(__name__)


class RetentionMetricsCollector:
    """Records retention run metrics."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()

        self.runs_total = Counter(
            'retention_runs_total',
            'Total retention runs',
            ['bucket', 'prefix', 'outcome'],
            registry=self.registry
        )
        self.backups_deleted_total = Counter(
            'retention_backups_deleted_total',
            'Total backups deleted',
            ['bucket', 'prefix'],
            registry=self.registry
        )
        self.deletion_errors_total = Counter(
            'retention_deletion_errors_total',
            'Total failed backup deletions',
            ['bucket', 'prefix'],
            registry=self.registry
        )
        self.bytes_reclaimed_total = Counter(
            'retention_bytes_reclaimed_total',
            'Total bytes reclaimed by deleting backups',
            ['bucket', 'prefix'],
            registry=self.registry
        )
        self.backups_kept = Gauge(
            'retention_backups_kept',
            'Backups kept after the last run',
            ['bucket', 'prefix'],
            registry=self.registry
        )
        self.kept_size_bytes = Gauge(
            'retention_kept_size_bytes',
            'Total size of kept backups after the last run',
            ['bucket', 'prefix'],
            registry=self.registry
        )
        self.run_duration = Histogram(
            'retention_run_duration_seconds',
            'Retention run duration',
            ['bucket', 'prefix'],
            buckets=[0.1, 0.5, 1.0, 5.0, 15.0, 60.0, 300.0, 900.0],
            registry=self.registry
        )

    def record_run(self, bucket: str, prefix: str, result: RetentionResult):
        """Record a completed run."""
        labels = {'bucket': bucket, 'prefix': prefix}
        self.runs_total.labels(outcome=result.status, **labels).inc()
        self.run_duration.labels(**labels).observe(result.duration_seconds)
        if result.dry_run:
            return
        self.backups_deleted_total.labels(**labels).inc(len(result.deleted))
        self.deletion_errors_total.labels(**labels).inc(len(result.errors))
        self.bytes_reclaimed_total.labels(**labels).inc(result.reclaimed_bytes)
        self.backups_kept.labels(**labels).set(len(result.kept))
        self.kept_size_bytes.labels(**labels).set(result.total_size_after)

    def record_failure(self, bucket: str, prefix: str, error: Exception):
        """Record a run that aborted with a fatal error."""
        self.runs_total.labels(bucket=bucket, prefix=prefix, outcome='error').inc()
        logger.warning("Retention run aborted",
                       bucket=bucket, prefix=prefix,
                       error_type=error.__class__.__name__, error=str(error))

    def get_metrics(self) -> bytes:
        """Render metrics in Prometheus exposition format."""
        return generate_latest(self.registry)

    @property
    def content_type(self) -> str:
        return CONTENT_TYPE_LATEST
