"""
Retention Scheduler.

Runs the retention manager once per day at the configured time.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, date
from typing import Optional, Dict, Any

from .retention_manager import RetentionManager
from .retention_models import RetentionError, RetentionResult


@dataclass
class SchedulerConfig:
    """Configuration for the retention scheduler."""
    enabled: bool = True
    cleanup_schedule: str = '03:00'  # 'HH:MM' format
    check_interval_minutes: int = 60

    def schedule_time(self):
        hour, minute = map(int, self.cleanup_schedule.split(':'))
        return hour, minute

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SchedulerConfig':
        config = cls(
            enabled=data.get('enabled', True),
            cleanup_schedule=data.get('cleanup_schedule', '03:00'),
            check_interval_minutes=data.get('check_interval_minutes', 60)
        )
        config.schedule_time()
        return config


@dataclass
class SchedulerStatus:
    """Status information for the scheduler."""
    running: bool
    last_run: Optional[datetime]
    total_runs: int
    successful_runs: int
    failed_runs: int
    last_error: Optional[str]


class RetentionScheduler:
    """Scheduler for automated retention runs."""

    def __init__(self, manager: RetentionManager, config: Optional[SchedulerConfig] = None):
        self.manager = manager
        self.config = config or SchedulerConfig.from_dict(manager.config.scheduler_settings)
        self.logger = logging.getLogger(__name__)
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._last_run_date: Optional[date] = None
        self._last_run: Optional[datetime] = None
        self._total_runs = 0
        self._successful_runs = 0
        self._failed_runs = 0
        self._last_error: Optional[str] = None

    async def start_scheduler(self):
        """Start the retention scheduler."""
        if self._running:
            self.logger.warning("Retention scheduler is already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._scheduler_loop())
        self.logger.info(f"Retention scheduler started (daily at {self.config.cleanup_schedule})")

    async def stop_scheduler(self):
        """Stop the retention scheduler."""
        if not self._running:
            return

        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

        self.logger.info("Retention scheduler stopped")

    async def _scheduler_loop(self):
        """Main scheduler loop."""
        while self._running:
            try:
                await self.run_if_due()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self.logger.exception(f"Error in scheduler loop: {e}")
                self._failed_runs += 1
                self._last_error = str(e)

            await asyncio.sleep(self.config.check_interval_minutes * 60)

    async def run_if_due(self, now: Optional[datetime] = None) -> Optional[RetentionResult]:
        """Run retention if the daily slot has been reached and not yet used."""
        now = now or self.manager.clock()
        if not self._should_run(now):
            return None

        self.logger.info("Starting scheduled retention run")
        self._last_run_date = now.date()
        self._last_run = now
        self._total_runs += 1
        try:
            result = await self.manager.run_retention(now=now)
        except RetentionError as e:
            self._failed_runs += 1
            self._last_error = str(e)
            self.logger.error(f"Scheduled retention run failed: {e}")
            return None

        if result.errors:
            self._last_error = f"{len(result.errors)} deletions failed"
        self._successful_runs += 1
        return result

    def _should_run(self, now: datetime) -> bool:
        """Check if retention should run based on configured time."""
        if not self.config.enabled or not self.manager.config.enabled:
            return False
        if self._last_run_date == now.date():
            return False
        hour, minute = self.config.schedule_time()
        return (now.hour, now.minute) >= (hour, minute)

    def get_status(self) -> SchedulerStatus:
        return SchedulerStatus(
            running=self._running,
            last_run=self._last_run,
            total_runs=self._total_runs,
            successful_runs=self._successful_runs,
            failed_runs=self._failed_runs,
            last_error=self._last_error
        )


def create_retention_scheduler(manager: RetentionManager) -> RetentionScheduler:
    """Create a new retention scheduler instance."""
    return RetentionScheduler(manager)
