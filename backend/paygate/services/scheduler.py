"""
APScheduler Configuration for Payment Completion Jobs

Runs work that must stay off the request path:
- demo-mode completion timers (one-shot, fixed delay)
- STK push submissions for payments accepted in provider mode
- the optional stale-PENDING sweep (interval)

Jobs run on the application's asyncio event loop via AsyncIOExecutor.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.executors.asyncio import AsyncIOExecutor

logger = logging.getLogger(__name__)


class CompletionScheduler:
    """
    Background scheduler for payment lifecycle jobs.

    Jobs hold references to live tracker instances, so they use an in-memory
    job store; a pending completion does not survive a restart (the stale
    sweep or a status refresh resolves such payments).
    """

    def __init__(self, misfire_grace_seconds: int = 300):
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._misfire_grace_seconds = misfire_grace_seconds
        self._initialize_scheduler()

    def _initialize_scheduler(self):
        """
        Configure APScheduler.

        Configuration:
        - AsyncIOScheduler for async job execution
        - MemoryJobStore (jobs reference in-process objects)
        - AsyncIOExecutor so jobs share the app's event loop
        - Coalesce: True (a missed run executes once)
        """
        jobstores = {
            'default': MemoryJobStore()
        }

        executors = {
            'default': AsyncIOExecutor()
        }

        job_defaults = {
            'coalesce': True,
            'max_instances': 1,
            'misfire_grace_time': self._misfire_grace_seconds
        }

        self._scheduler = AsyncIOScheduler(
            jobstores=jobstores,
            executors=executors,
            job_defaults=job_defaults,
            timezone='UTC'
        )

        logger.debug("APScheduler initialized with in-memory job store")

    @property
    def running(self) -> bool:
        return bool(self._scheduler and self._scheduler.running)

    def start(self):
        """
        Start the scheduler.

        Must be called from a running event loop (FastAPI lifespan).
        """
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info("Completion scheduler started")
        else:
            logger.warning("Scheduler already running")

    def shutdown(self, wait: bool = True):
        """
        Shutdown the scheduler.

        Args:
            wait: Wait for running jobs to complete before shutdown
        """
        if self._scheduler and self._scheduler.running:
            self._scheduler.shutdown(wait=wait)
            logger.info(f"Scheduler shutdown (wait={wait})")

    def schedule_once(
        self,
        job_id: str,
        job_func,
        delay_seconds: float = 0,
        **kwargs
    ) -> str:
        """
        Run job_func once after delay_seconds.

        Args:
            job_id: Unique job identifier
            job_func: Async function to execute
            delay_seconds: Delay before execution; 0 runs as soon as the loop is free
            **kwargs: Arguments passed to job_func

        Returns:
            Job ID
        """
        run_date = datetime.now(timezone.utc) + timedelta(seconds=max(delay_seconds, 0))

        self._scheduler.add_job(
            job_func,
            trigger=DateTrigger(run_date=run_date),
            id=job_id,
            name=f"Once: {job_id}",
            replace_existing=True,
            kwargs=kwargs
        )

        logger.debug(f"Scheduled job {job_id} at {run_date.isoformat()}")
        return job_id

    def add_interval_job(
        self,
        job_id: str,
        job_func,
        interval_seconds: float,
        **kwargs
    ) -> str:
        """
        Run job_func every interval_seconds.

        Returns:
            Job ID
        """
        self._scheduler.add_job(
            job_func,
            trigger=IntervalTrigger(seconds=interval_seconds),
            id=job_id,
            name=f"Interval: {job_id}",
            replace_existing=True,
            kwargs=kwargs
        )

        logger.info(f"Added interval job: {job_id}, interval={interval_seconds}s")
        return job_id
