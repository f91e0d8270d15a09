"""
Backfill Scheduler

Runs bulk fundamentals backfills on a schedule with APScheduler. Each
exchange gets its own cron job; a job that is still running when the next
trigger fires is skipped (max_instances=1).
"""
import asyncio
from typing import Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.asyncio import AsyncIOExecutor
from loguru import logger

from marketcache.services.bulk_backfill import BulkBackfillOrchestrator, BulkRunResult
from marketcache.utils.exceptions import MarketCacheException


class BackfillScheduler:
    """Scheduled bulk backfills per exchange."""

    def __init__(self, orchestrator: BulkBackfillOrchestrator, timezone: str = "UTC"):
        self.orchestrator = orchestrator
        self.timezone = timezone
        self.scheduler: Optional[AsyncIOScheduler] = None
        self._is_running = False
        self._registered_jobs: dict[str, dict] = {}
        self._cancel_events: dict[str, asyncio.Event] = {}
        self.last_results: dict[str, BulkRunResult] = {}

    def initialize(self) -> None:
        """Initialize the scheduler with job stores and executors."""
        self.scheduler = AsyncIOScheduler(
            jobstores={'default': MemoryJobStore()},
            executors={'default': AsyncIOExecutor()},
            job_defaults={
                'coalesce': True,  # Combine multiple missed runs into one
                'max_instances': 1,  # Only one instance of each job at a time
                'misfire_grace_time': 60 * 30,
            },
            timezone=self.timezone,
        )
        logger.info("Backfill scheduler initialized")

    def start(self) -> None:
        """Start the scheduler."""
        if not self.scheduler:
            self.initialize()

        if not self._is_running:
            self.scheduler.start()
            self._is_running = True
            logger.info("Backfill scheduler started")

    def stop(self) -> None:
        """Cancel running backfills and stop the scheduler."""
        for event in self._cancel_events.values():
            event.set()
        if self.scheduler and self._is_running:
            self.scheduler.shutdown(wait=False)
            self._is_running = False
            logger.info("Backfill scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._is_running

    # ==================== Job Registration ====================

    @staticmethod
    def job_id(exchange_code: str) -> str:
        return f"backfill_{exchange_code.upper()}"

    def add_daily_backfill(self, exchange_code: str, hour: int = 2, minute: int = 0) -> str:
        """
        Register a daily backfill for an exchange.

        Args:
            exchange_code: Exchange to backfill
            hour: Hour to run (scheduler timezone)
            minute: Minute to run

        Returns:
            The job id
        """
        if not self.scheduler:
            self.initialize()

        code = exchange_code.upper()
        job_id = self.job_id(code)
        self.scheduler.add_job(
            self.run_backfill,
            trigger=CronTrigger(hour=hour, minute=minute, timezone=self.timezone),
            args=[code],
            id=job_id,
            name=f"Backfill: {code}",
            replace_existing=True,
        )
        self._registered_jobs[job_id] = {
            'exchange_code': code,
            'schedule': f'{hour:02d}:{minute:02d} {self.timezone} daily',
        }
        logger.info(f"Registered backfill job for {code} at {hour:02d}:{minute:02d} {self.timezone}")
        return job_id

    def remove_backfill(self, exchange_code: str) -> bool:
        """Remove a scheduled backfill."""
        job_id = self.job_id(exchange_code)
        if self.scheduler and job_id in self._registered_jobs:
            self.scheduler.remove_job(job_id)
            self._registered_jobs.pop(job_id, None)
            logger.info(f"Removed job: {job_id}")
            return True
        return False

    # ==================== Execution ====================

    async def run_backfill(self, exchange_code: str) -> Optional[BulkRunResult]:
        """
        Job body: run one backfill and keep its result.

        Errors are logged, not raised, so one failing exchange does not
        disturb the scheduler.
        """
        code = exchange_code.upper()
        cancel_event = asyncio.Event()
        self._cancel_events[code] = cancel_event
        try:
            result = await self.orchestrator.backfill(code, cancel_event=cancel_event)
        except MarketCacheException as e:
            logger.warning(f"Scheduled backfill for {code} did not run: {e.message}")
            return None
        except Exception as e:
            logger.exception(f"Scheduled backfill for {code} failed: {e}")
            return None
        finally:
            self._cancel_events.pop(code, None)

        self.last_results[code] = result
        return result

    def cancel(self, exchange_code: str) -> bool:
        """Signal a running scheduled backfill to stop."""
        event = self._cancel_events.get(exchange_code.upper())
        if event is None:
            return False
        event.set()
        return True

    def get_jobs_status(self) -> dict:
        """Get status of all registered jobs."""
        status = {
            'is_running': self._is_running,
            'jobs': {},
        }

        if self.scheduler:
            for job in self.scheduler.get_jobs():
                code = self._registered_jobs.get(job.id, {}).get('exchange_code')
                last = self.last_results.get(code) if code else None
                status['jobs'][job.id] = {
                    'name': job.name,
                    'next_run': job.next_run_time.isoformat() if getattr(job, 'next_run_time', None) else None,
                    'last_result': last.to_dict() if last else None,
                    **self._registered_jobs.get(job.id, {}),
                }

        return status
