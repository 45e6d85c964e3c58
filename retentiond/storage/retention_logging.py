"""
Logging and reporting for the retention system.

This module renders run reports and keeps the JSON-lines audit trail.
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Optional

from .retention_models import RetentionResult

logger = logging.getLogger(__name__)


def format_bytes(size_bytes: int) -> str:
    """Format a byte count in MB with two decimals."""
    return f"{size_bytes / 1024 / 1024:.2f} MB"


def generate_retention_report(result: RetentionResult) -> str:
    """Render a retention result as a human-readable report."""
    title = "BACKUP RETENTION REPORT (DRY RUN)" if result.dry_run else "BACKUP RETENTION REPORT"
    lines = [
        f"=== {title} ===",
        f"Backups kept: {len(result.kept)}",
        f"Backups deleted: {len(result.deleted)}",
        f"Size before: {format_bytes(result.total_size_before)}",
        f"Size after: {format_bytes(result.total_size_after)}",
        f"Space saved: {format_bytes(result.space_saved_bytes)}",
    ]

    if result.errors:
        lines.append("")
        lines.append(f"Errors: {len(result.errors)}")
        lines.extend(f"  - {error.key}: {error.message}" for error in result.errors)

    if result.deleted:
        lines.append("")
        lines.append("Deleted backups:")
        lines.extend(f"  - {key}" for key in result.deleted)

    if result.skipped:
        lines.append("")
        lines.append("Would delete:" if result.dry_run else "Not processed (retried on next run):")
        lines.extend(f"  - {key}" for key in result.skipped)

    return "\n".join(lines) + "\n"


class RetentionLogger:
    """Handles logging and audit trail for retention runs."""

    def __init__(self, logs_dir: Optional[str] = "logs/retention"):
        self.logs_dir = Path(logs_dir) if logs_dir else None
        if self.logs_dir is not None:
            self.logs_dir.mkdir(parents=True, exist_ok=True)

    def log_run(self, result: RetentionResult, bucket: str, prefix: str):
        """Log a run summary and append it to the audit trail."""
        log_entry = self._build_log_entry(result, bucket, prefix)

        if result.status == 'success':
            logger.info(f"✅ Retention run completed for {bucket}/{prefix}: "
                        f"{len(result.kept)} kept, {len(result.deleted)} deleted, "
                        f"{log_entry['space_saved_mb']} MB saved in {self._format_duration(result.duration_seconds)}")
        elif result.status == 'failed':
            logger.error(f"❌ Retention run failed for {bucket}/{prefix}: "
                         f"{len(result.errors)} deletions failed")
        else:
            logger.warning(f"⚠️ Retention run partial for {bucket}/{prefix}: "
                           f"{len(result.deleted)} deleted, {len(result.errors)} failed, "
                           f"{len(result.skipped)} not processed")

        self._store_run_log(log_entry)

    def _build_log_entry(self, result: RetentionResult, bucket: str, prefix: str) -> Dict[str, Any]:
        entry = result.to_dict()
        entry.update({
            'bucket': bucket,
            'prefix': prefix,
            'space_saved_mb': round(result.space_saved_bytes / 1024 / 1024, 2),
            'duration_formatted': self._format_duration(result.duration_seconds)
        })
        return entry

    def _format_duration(self, duration_seconds: float) -> str:
        """Format duration in a human-readable format."""
        if duration_seconds < 60:
            return f"{duration_seconds:.2f}s"
        elif duration_seconds < 3600:
            return f"{duration_seconds / 60:.1f}m"
        return f"{duration_seconds / 3600:.1f}h"

    def _store_run_log(self, log_entry: Dict[str, Any]):
        """Append the run entry to the daily JSON-lines file."""
        if self.logs_dir is None:
            return
        try:
            log_date = datetime.now().strftime("%Y-%m-%d")
            log_file = self.logs_dir / f"retention_runs_{log_date}.jsonl"
            with open(log_file, 'a') as f:
                f.write(json.dumps(log_entry) + '\n')
        except OSError as e:
            logger.error(f"Failed to store run log: {e}")
