"""
Maintenance scheduler for the reconciliation service.

Scheduled jobs:
- Mapping rule expiry sweep (deactivates rules whose expires_at has passed)

Scheduler: APScheduler (lightweight, FastAPI-compatible)
"""
import logging
from datetime import datetime
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.exc import SQLAlchemyError

from sportsrecon.core.config import settings
from sportsrecon.core.database import SessionLocal

logger = logging.getLogger(__name__)


def run_expiry_sweep(session_factory=SessionLocal, now: Optional[datetime] = None) -> dict:
    """
    Run one expiry sweep in its own session.

    Kept as a plain function so it can be triggered by the scheduler, the
    maintenance endpoint or a test with the same behaviour.
    """
    from sportsrecon.services.mapping.mapping_service import MappingService

    db = session_factory()
    try:
        return MappingService(db).expire_rules(now=now)
    finally:
        db.close()


class MaintenanceScheduler:
    """
    Scheduler for periodic maintenance tasks.

    All scheduled jobs are defined here with their intervals and error handling.
    """

    def __init__(self, session_factory=SessionLocal):
        self.scheduler: Optional[AsyncIOScheduler] = None
        self.session_factory = session_factory
        self.running = False

    async def start(self):
        """Start the scheduler."""
        if self.running:
            logger.warning("Scheduler already running")
            return

        logger.info("Starting maintenance scheduler...")

        self.scheduler = AsyncIOScheduler(
            timezone="UTC",
            job_defaults={
                "coalesce": True,  # Combine missed runs into one
                "max_instances": 1,
                "misfire_grace_time": 300,
            },
        )

        self._schedule_rule_expiry()

        self.scheduler.start()
        self.running = True
        logger.info(f"Scheduler started with {len(self.scheduler.get_jobs())} jobs")
        self._log_scheduled_jobs()

    async def stop(self):
        """Stop the scheduler."""
        if not self.running:
            return

        logger.info("Stopping scheduler...")
        self.scheduler.shutdown(wait=False)
        self.running = False
        logger.info("Scheduler stopped")

    def _schedule_rule_expiry(self):
        """
        Schedule: Deactivate expired mapping rules.

        Frequency: every RULE_EXPIRY_SWEEP_MINUTES
        """
        if self.scheduler is None:
            return

        minutes = settings.RULE_EXPIRY_SWEEP_MINUTES

        @self.scheduler.scheduled_job(
            trigger=IntervalTrigger(minutes=minutes),
            id="rule_expiry_sweep",
            name="Mapping Rule Expiry Sweep",
            misfire_grace_time=600,
        )
        async def expire_rules_job():
            try:
                result = run_expiry_sweep(self.session_factory)
                logger.info(f"Rule expiry sweep: {result['expired']} rules deactivated")
            except SQLAlchemyError as e:
                logger.error(f"Rule expiry sweep failed: {e}")

        logger.info(f"Scheduled: rule expiry sweep (every {minutes} minutes)")

    def _log_scheduled_jobs(self):
        """Log all scheduled jobs for visibility."""
        for job in self.scheduler.get_jobs():
            next_run = job.next_run_time
            next_run_str = next_run.strftime("%Y-%m-%d %H:%M UTC") if next_run else "Pending"
            logger.info(f"  • {job.name} (id={job.id}, next run: {next_run_str})")


# Global scheduler instance
_scheduler: Optional[MaintenanceScheduler] = None


async def start_scheduler() -> MaintenanceScheduler:
    """Start the global scheduler."""
    global _scheduler
    if _scheduler is None:
        _scheduler = MaintenanceScheduler()
        await _scheduler.start()
    return _scheduler


async def stop_scheduler():
    """Stop the global scheduler."""
    global _scheduler
    if _scheduler is not None:
        await _scheduler.stop()
        _scheduler = None


def get_scheduler() -> Optional[MaintenanceScheduler]:
    """Get the global scheduler instance."""
    return _scheduler
