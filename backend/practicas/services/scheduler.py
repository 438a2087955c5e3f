"""
Background Job Scheduler for practicas.

Handles scheduled tasks using APScheduler:
- Overdue escalation pass (08:00 local time, business days only)
- Deadline reminders (08:30 local time)
- Outbox dispatcher (every 5 minutes)
- Holiday prefetch (03:00 local time)

Job failures are counted per job; after repeated failures within 24 hours
the operations mailbox is alerted and the job is paused.
"""
import logging
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from practicas.core.config import settings
from practicas.core.database import get_supabase_client
from practicas.repositories import StaffRepository
from practicas.services.alert_orchestrator import run_deadline_reminders, run_overdue_pass
from practicas.services.business_days import is_business_day, local_today
from practicas.services.events import EventDispatcher
from practicas.services.holiday_calendar import get_holiday_calendar
from practicas.services.notifications import notification_service


logger = logging.getLogger(__name__)


# ==========================================
# Job Failure Monitor
# ==========================================

class JobFailureMonitor:
    """
    Monitor job failures and alert when threshold exceeded.

    A silently failing overdue job means coordinators stop hearing about
    late practicas, so repeated failures page the operations mailbox.
    """

    def __init__(self, failure_threshold: int = 2):
        self.failure_threshold = failure_threshold
        self.failed_jobs: Dict[str, List[datetime]] = defaultdict(list)
        self.paused_jobs: set = set()

    async def record_success(self, job_id: str) -> None:
        """Record job success - reset failure count."""
        self.failed_jobs[job_id] = []
        self.paused_jobs.discard(job_id)

    async def record_failure(self, job_id: str, error: str) -> bool:
        """
        Record job failure and alert if threshold exceeded.

        Returns True if job should be paused.
        """
        now = datetime.now(timezone.utc)
        self.failed_jobs[job_id].append(now)

        # Keep only failures from last 24 hours
        cutoff = now - timedelta(hours=24)
        self.failed_jobs[job_id] = [t for t in self.failed_jobs[job_id] if t > cutoff]

        failure_count = len(self.failed_jobs[job_id])
        if failure_count >= self.failure_threshold:
            await self._send_critical_alert(job_id, failure_count, error)
            self.paused_jobs.add(job_id)
            return True

        return False

    async def _send_critical_alert(self, job_id: str, failure_count: int, error: str) -> None:
        try:
            if settings.ops_escalation_email:
                await notification_service._send_email_simple(
                    to_email=settings.ops_escalation_email,
                    subject=f"CRITICAL: Scheduler job '{job_id}' failed {failure_count} times",
                    body=f"""
The background scheduler job '{job_id}' has failed {failure_count} times in the last 24 hours.

Last error: {error}

Overdue practicas and deadline reminders may not be going out.

Service: {settings.app_name}
Time: {datetime.now(timezone.utc).isoformat()}
                    """
                )
                logger.critical(f"Sent critical alert for job {job_id}")
        except Exception as e:
            logger.error(f"Failed to send critical alert: {e}")

        logger.critical(
            f"CRITICAL: Job {job_id} failed {failure_count} times. "
            f"Last error: {error}. Job paused."
        )

    def get_status(self) -> Dict[str, Any]:
        """Get current failure status for all jobs."""
        return {
            job_id: {
                "failure_count": len(failures),
                "last_failure": failures[-1].isoformat() if failures else None,
                "is_paused": job_id in self.paused_jobs
            }
            for job_id, failures in self.failed_jobs.items()
        }


job_monitor = JobFailureMonitor(failure_threshold=settings.job_failure_alert_threshold)


class PracticasScheduler:
    """
    Background job scheduler for the practicas service.

    All cron triggers run in the institution's local timezone.
    """

    def __init__(self):
        self.scheduler: Optional[AsyncIOScheduler] = None
        self.is_running = False
        self.job_monitor = job_monitor

        tz = settings.scheduler_timezone
        self.jobs_config = {
            "overdue_escalation": {
                "func": overdue_escalation_job,
                "trigger": CronTrigger(hour=8, minute=0, timezone=tz),
                "name": "Overdue Practica Escalation",
            },
            "deadline_reminders": {
                "func": deadline_reminders_job,
                "trigger": CronTrigger(hour=8, minute=30, timezone=tz),
                "name": "Deadline Reminders",
            },
            "outbox_dispatcher": {
                "func": outbox_dispatcher_job,
                "trigger": IntervalTrigger(minutes=5),
                "name": "Practica Event Outbox Dispatcher",
            },
            "holiday_prefetch": {
                "func": holiday_prefetch_job,
                "trigger": CronTrigger(hour=3, minute=0, timezone=tz),
                "name": "Holiday Calendar Prefetch",
            },
        }

    def create_scheduler(self) -> AsyncIOScheduler:
        """Create and configure the scheduler."""
        return AsyncIOScheduler(
            jobstores={'default': MemoryJobStore()},
            executors={'default': AsyncIOExecutor()},
            job_defaults={
                'coalesce': True,
                'max_instances': 1,
                'misfire_grace_time': 300
            },
            timezone=settings.scheduler_timezone
        )

    def start(self):
        """Start the scheduler with all jobs."""
        if self.is_running:
            logger.warning("Scheduler is already running")
            return

        self.scheduler = self.create_scheduler()
        for job_id, config in self.jobs_config.items():
            self.scheduler.add_job(
                config["func"],
                config["trigger"],
                id=job_id,
                name=config["name"],
                replace_existing=True
            )

        self.scheduler.start()
        self.is_running = True
        logger.info("Practicas scheduler started")

        for job in self.scheduler.get_jobs():
            logger.info(f"  - {job.name}: Next run at {job.next_run_time}")

    def stop(self):
        """Stop the scheduler gracefully."""
        if self.scheduler and self.is_running:
            self.scheduler.shutdown(wait=True)
            self.is_running = False
            logger.info("Practicas scheduler stopped")

    def trigger_job(self, job_id: str) -> bool:
        """Manually trigger a job to run immediately."""
        if not self.scheduler:
            logger.error("Scheduler not initialized")
            return False

        job = self.scheduler.get_job(job_id)
        if job:
            job.modify(next_run_time=datetime.now(timezone.utc))
            logger.info(f"Manually triggered job: {job_id}")
            return True

        logger.error(f"Job not found: {job_id}")
        return False

    def get_jobs_status(self) -> list:
        if not self.scheduler:
            return []

        return [
            {
                "id": job.id,
                "name": job.name,
                "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None,
                "pending": job.pending
            }
            for job in self.scheduler.get_jobs()
        ]

    def pause_job(self, job_id: str) -> bool:
        if not self.scheduler:
            return False
        self.scheduler.pause_job(job_id)
        logger.info(f"Paused job: {job_id}")
        return True

    def resume_job(self, job_id: str) -> bool:
        if not self.scheduler:
            return False
        self.scheduler.resume_job(job_id)
        self.job_monitor.paused_jobs.discard(job_id)
        logger.info(f"Resumed job: {job_id}")
        return True

    def get_health_status(self) -> Dict[str, Any]:
        """Scheduler status and job failure information."""
        failed_jobs = self.job_monitor.get_status()
        has_failures = any(info["failure_count"] > 0 for info in failed_jobs.values())

        return {
            "status": "degraded" if has_failures else "healthy",
            "is_running": self.is_running,
            "jobs": self.get_jobs_status(),
            "failures": failed_jobs,
            "paused_jobs": list(self.job_monitor.paused_jobs)
        }


# ==========================================
# JOB IMPLEMENTATIONS
# ==========================================

async def _handle_job_failure(job_id: str, error: Exception) -> None:
    should_pause = await job_monitor.record_failure(job_id, str(error))
    if should_pause:
        scheduler = get_scheduler()
        if scheduler.scheduler:
            scheduler.pause_job(job_id)


async def overdue_escalation_job():
    """
    Flag overdue practicas and send one summary per coordinator and director.

    Skipped on weekends and holidays so staff are not emailed on days off.
    """
    job_id = "overdue_escalation"

    today = local_today()
    if not is_business_day(today):
        logger.info(f"Skipping overdue escalation - today ({today}) is not a business day")
        return {"skipped": True, "reason": "non_business_day"}

    logger.info("Starting overdue escalation job...")
    start_time = datetime.now(timezone.utc)

    try:
        result = await run_overdue_pass(today=today)
        elapsed = (datetime.now(timezone.utc) - start_time).total_seconds()
        logger.info(
            f"Overdue escalation completed in {elapsed:.2f}s: "
            f"{result['flagged']} flagged, {result['sent']} sent, {len(result['errors'])} errors"
        )
        await job_monitor.record_success(job_id)
        return result

    except Exception as e:
        logger.error(f"Overdue escalation failed: {e}", exc_info=True)
        await _handle_job_failure(job_id, e)
        raise


async def deadline_reminders_job():
    job_id = "deadline_reminders"
    logger.info("Sending deadline reminders...")

    try:
        result = await run_deadline_reminders(today=local_today())
        await job_monitor.record_success(job_id)
        return result

    except Exception as e:
        logger.error(f"Deadline reminders failed: {e}", exc_info=True)
        await _handle_job_failure(job_id, e)
        raise


async def outbox_dispatcher_job():
    """Deliver pending practica events."""
    job_id = "outbox_dispatcher"
    logger.debug("Dispatching practica event outbox...")

    try:
        db = get_supabase_client()
        result = await EventDispatcher(db, StaffRepository(db)).dispatch_pending()
        await job_monitor.record_success(job_id)
        return result

    except Exception as e:
        logger.error(f"Outbox dispatch failed: {e}", exc_info=True)
        await _handle_job_failure(job_id, e)
        raise


async def holiday_prefetch_job():
    """Warm the holiday cache for the current and the next year."""
    job_id = "holiday_prefetch"
    calendar = get_holiday_calendar()
    year = local_today().year

    try:
        counts = {
            str(y): len(calendar.holidays_for_year(y))
            for y in (year, year + 1)
        }
        logger.info(f"Holiday calendar prefetched: {counts}")
        await job_monitor.record_success(job_id)
        return counts

    except Exception as e:
        logger.error(f"Holiday prefetch failed: {e}", exc_info=True)
        await _handle_job_failure(job_id, e)
        raise


# ==========================================
# GLOBAL SCHEDULER INSTANCE
# ==========================================

scheduler = PracticasScheduler()


def get_scheduler() -> PracticasScheduler:
    """Get the global scheduler instance."""
    return scheduler

