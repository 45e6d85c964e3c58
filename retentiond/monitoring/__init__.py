"""
Monitoring module for the retention daemon.

Prometheus metrics for retention runs.
"""

from .retention_metrics import RetentionMetricsCollector

__all__ = ['RetentionMetricsCollector']
