"""
Alert API Routes.

Provides endpoints for:
- Manual alerts from a coordinator to a student
- Manual alert history of a practica
- Scheduler health and manual job triggers
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Path
from pydantic import BaseModel, Field

from practicas.api.deps import get_current_actor
from practicas.core.database import get_supabase_client
from practicas.core.exceptions import UnauthorizedActorError
from practicas.models.enums import ADMIN_ROLES
from practicas.models.schemas import Actor
from practicas.services.alert_orchestrator import get_manual_alert_history, send_manual_alert
from practicas.services.scheduler import get_scheduler


router = APIRouter(prefix="/api/alerts", tags=["Alerts"])


# ==========================================
# PYDANTIC MODELS
# ==========================================

class ManualAlertRequest(BaseModel):
    """Request body for a manual alert."""
    practica_id: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1, max_length=5000)
    subject: Optional[str] = Field(None, max_length=200)


def _require_admin(actor: Actor) -> None:
    if actor.role not in ADMIN_ROLES:
        raise UnauthorizedActorError(
            "Only a coordinator or program director can use this endpoint",
            actor_role=actor.role.value
        )


# ==========================================
# MANUAL ALERTS
# ==========================================

@router.post(
    "/manual",
    summary="Send Manual Alert",
    description="Email the student of a practica on behalf of a coordinator"
)
async def create_manual_alert(
    body: ManualAlertRequest,
    actor: Actor = Depends(get_current_actor)
) -> dict:
    result = await send_manual_alert(
        practica_id=body.practica_id,
        actor=actor,
        message=body.message,
        subject=body.subject,
        db=get_supabase_client(),
    )
    if not result["success"]:
        raise HTTPException(
            status_code=502,
            detail={"success": False, "alert_id": result["alert_id"], "error": result["error"]}
        )
    return result


@router.get(
    "/manual/{practica_id}",
    summary="Manual Alert History",
    description="Manual alerts sent for a practica, newest first"
)
async def list_manual_alerts(
    practica_id: str = Path(...),
    actor: Actor = Depends(get_current_actor)
) -> dict:
    _require_admin(actor)
    alerts = get_manual_alert_history(practica_id, db=get_supabase_client())
    return {"alerts": alerts, "count": len(alerts)}


# ==========================================
# SCHEDULER ADMIN
# ==========================================

@router.get(
    "/admin/scheduler",
    summary="Scheduler Health",
    description="Job schedule and failure status of the background scheduler"
)
async def scheduler_health() -> dict:
    return get_scheduler().get_health_status()


@router.post(
    "/admin/jobs/{job_id}/trigger",
    summary="Trigger Job",
    description="Run a scheduler job now"
)
async def trigger_job(
    job_id: str = Path(...),
    actor: Actor = Depends(get_current_actor)
) -> dict:
    _require_admin(actor)
    if not get_scheduler().trigger_job(job_id):
        raise HTTPException(status_code=404, detail=f"Job not found or scheduler not running: {job_id}")
    return {"success": True, "job_id": job_id}


@router.post("/admin/jobs/{job_id}/resume", summary="Resume Job")
async def resume_job(
    job_id: str = Path(...),
    actor: Actor = Depends(get_current_actor)
) -> dict:
    _require_admin(actor)
    if not get_scheduler().resume_job(job_id):
        raise HTTPException(status_code=503, detail="Scheduler not running")
    return {"success": True, "job_id": job_id}
