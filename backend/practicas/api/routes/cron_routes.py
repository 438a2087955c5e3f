"""
Cron API Routes.

Entry points for an external scheduler (Vercel cron, GitHub Actions, k8s
CronJob) as an alternative to the in-process APScheduler jobs:
- Overdue practica detection + escalation
- Overdue statistics (read only)
- Deadline reminders
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query

from practicas.api.deps import verify_cron_secret
from practicas.core.database import get_supabase_client
from practicas.services.alert_orchestrator import (
    get_overdue_statistics,
    run_deadline_reminders,
    run_overdue_pass,
)


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cron", tags=["Cron"])


@router.post(
    "/overdue-alerts",
    summary="Run Overdue Escalation",
    description="Detect overdue practicas and send one summary per coordinator and director",
    dependencies=[Depends(verify_cron_secret)]
)
async def run_overdue_alerts() -> dict:
    """
    Run one overdue detection + escalation pass.

    Detection failures surface as errors; individual delivery failures are
    listed in ``errors`` and only flip ``success`` when every send failed.
    """
    logger.info("Cron: overdue alerts requested")
    result = await run_overdue_pass(db=get_supabase_client())
    return {
        "success": result["success"],
        "sent": result["sent"],
        "skipped": result["skipped"],
        "errors": result["errors"],
        "flagged": result["flagged"],
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get(
    "/overdue-alerts",
    summary="Overdue Statistics",
    description="Current overdue counts, optionally for one site. Sends nothing."
)
async def overdue_alert_statistics(
    site_id: Optional[str] = Query(None, description="Restrict to one site")
) -> dict:
    stats = get_overdue_statistics(db=get_supabase_client(), site_id=site_id)
    return {
        "success": True,
        "statistics": stats,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.post(
    "/deadline-reminders",
    summary="Send Deadline Reminders",
    dependencies=[Depends(verify_cron_secret)]
)
async def send_deadline_reminders() -> dict:
    result = await run_deadline_reminders(db=get_supabase_client())
    return {**result, "timestamp": datetime.now(timezone.utc).isoformat()}
