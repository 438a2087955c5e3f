"""
Practica API Routes.

One endpoint per lifecycle transition. The acting user comes from the
X-User-Id / X-User-Role headers; guard violations surface through the global
PracticasException handler (403 / 409 / 422).

Event notifications are delivered after the response through a background
task; the scheduler's outbox job picks up anything left behind.
"""
import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Path
from pydantic import BaseModel, Field

from practicas.api.deps import get_current_actor
from practicas.core.database import get_supabase_client
from practicas.models.schemas import Actor, Practica, PracticaCreate, StudentActaFields
from practicas.repositories import StaffRepository
from practicas.services.events import EventDispatcher
from practicas.services.lifecycle import allowed_actions
from practicas.services.practica_service import PracticaService


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/practicas", tags=["Practicas"])


# ==========================================
# PYDANTIC MODELS
# ==========================================

class AssignTutorRequest(BaseModel):
    tutor_id: str = Field(..., min_length=1)


class RejectRequest(BaseModel):
    """Tutor rejection. The reason is mandatory."""
    reason: str = Field(..., description="Why the tutor declines supervision")


class ResubmitRequest(BaseModel):
    tutor_id: Optional[str] = Field(None, description="New tutor; omit to keep the current one")


class ReportRequest(BaseModel):
    report_url: str = Field(..., min_length=1, max_length=2000)


class EvaluationRequest(BaseModel):
    score: float = Field(..., ge=1.0, le=7.0, description="Grade on the 1.0 - 7.0 scale")
    comments: Optional[str] = Field(None, max_length=2000)


class VoidRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


# ==========================================
# HELPERS
# ==========================================

def _service() -> PracticaService:
    return PracticaService(get_supabase_client())


def _serialize(practica: Practica) -> dict:
    return {
        "success": True,
        "practica": practica.model_dump(mode="json"),
        "allowed_actions": allowed_actions(practica.state_code),
    }


async def dispatch_outbox() -> None:
    """Deliver pending events now instead of waiting for the scheduler."""
    try:
        db = get_supabase_client()
        await EventDispatcher(db, StaffRepository(db)).dispatch_pending()
    except Exception as e:
        logger.error(f"Background outbox dispatch failed: {e}")


# ==========================================
# CRUD
# ==========================================

@router.post(
    "",
    status_code=201,
    summary="Create Practica",
    description="Register a practica in PENDING. Completion date is projected when omitted."
)
async def create_practica(
    body: PracticaCreate,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor)
) -> dict:
    practica = _service().create(body, actor)
    background_tasks.add_task(dispatch_outbox)
    return _serialize(practica)


@router.get(
    "/{practica_id}",
    summary="Get Practica",
    description="Get a practica with its current state and the actions it allows"
)
async def get_practica(practica_id: str = Path(...)) -> dict:
    return _serialize(_service().get(practica_id))


# ==========================================
# TRANSITIONS
# ==========================================

@router.post("/{practica_id}/assign-tutor", summary="Assign Tutor")
async def assign_tutor(
    body: AssignTutorRequest,
    background_tasks: BackgroundTasks,
    practica_id: str = Path(...),
    actor: Actor = Depends(get_current_actor)
) -> dict:
    practica = _service().assign_tutor(practica_id, actor, body.tutor_id)
    background_tasks.add_task(dispatch_outbox)
    return _serialize(practica)


@router.post(
    "/{practica_id}/acta",
    summary="Complete Acta 1",
    description="Student completes Acta 1 (PENDING -> PENDING_TUTOR_ACCEPTANCE)"
)
async def complete_student_acta(
    body: StudentActaFields,
    background_tasks: BackgroundTasks,
    practica_id: str = Path(...),
    actor: Actor = Depends(get_current_actor)
) -> dict:
    practica = _service().complete_student_acta(practica_id, actor, body)
    background_tasks.add_task(dispatch_outbox)
    return _serialize(practica)


@router.post("/{practica_id}/accept", summary="Tutor Accepts Supervision")
async def tutor_accept(
    background_tasks: BackgroundTasks,
    practica_id: str = Path(...),
    actor: Actor = Depends(get_current_actor)
) -> dict:
    practica = _service().tutor_accept(practica_id, actor)
    background_tasks.add_task(dispatch_outbox)
    return _serialize(practica)


@router.post("/{practica_id}/reject", summary="Tutor Rejects Supervision")
async def tutor_reject(
    body: RejectRequest,
    background_tasks: BackgroundTasks,
    practica_id: str = Path(...),
    actor: Actor = Depends(get_current_actor)
) -> dict:
    practica = _service().tutor_reject(practica_id, actor, body.reason)
    background_tasks.add_task(dispatch_outbox)
    return _serialize(practica)


@router.post(
    "/{practica_id}/resubmit",
    summary="Resubmit To Tutor",
    description="Coordinator sends a rejected practica back for acceptance, optionally to another tutor"
)
async def resubmit_to_tutor(
    body: ResubmitRequest,
    background_tasks: BackgroundTasks,
    practica_id: str = Path(...),
    actor: Actor = Depends(get_current_actor)
) -> dict:
    practica = _service().resubmit_to_tutor(practica_id, actor, body.tutor_id)
    background_tasks.add_task(dispatch_outbox)
    return _serialize(practica)


@router.post("/{practica_id}/report", summary="Upload Final Report")
async def upload_report(
    body: ReportRequest,
    background_tasks: BackgroundTasks,
    practica_id: str = Path(...),
    actor: Actor = Depends(get_current_actor)
) -> dict:
    practica = _service().upload_report(practica_id, actor, body.report_url)
    background_tasks.add_task(dispatch_outbox)
    return _serialize(practica)


@router.post("/{practica_id}/evaluations/tutor", summary="Record Tutor Evaluation")
async def record_tutor_evaluation(
    body: EvaluationRequest,
    background_tasks: BackgroundTasks,
    practica_id: str = Path(...),
    actor: Actor = Depends(get_current_actor)
) -> dict:
    practica = _service().record_tutor_evaluation(practica_id, actor, body.score, body.comments)
    background_tasks.add_task(dispatch_outbox)
    return _serialize(practica)


@router.post("/{practica_id}/evaluations/employer", summary="Record Employer Evaluation")
async def record_employer_evaluation(
    body: EvaluationRequest,
    background_tasks: BackgroundTasks,
    practica_id: str = Path(...),
    actor: Actor = Depends(get_current_actor)
) -> dict:
    practica = _service().record_employer_evaluation(practica_id, actor, body.score, body.comments)
    background_tasks.add_task(dispatch_outbox)
    return _serialize(practica)


@router.post(
    "/{practica_id}/close",
    summary="Close Practica",
    description="Compute the final score and close (irreversible)"
)
async def close_practica(
    background_tasks: BackgroundTasks,
    practica_id: str = Path(...),
    actor: Actor = Depends(get_current_actor)
) -> dict:
    practica = _service().close(practica_id, actor)
    background_tasks.add_task(dispatch_outbox)
    return _serialize(practica)


@router.post("/{practica_id}/void", summary="Void Practica")
async def void_practica(
    background_tasks: BackgroundTasks,
    body: Optional[VoidRequest] = None,
    practica_id: str = Path(...),
    actor: Actor = Depends(get_current_actor)
) -> dict:
    practica = _service().void(practica_id, actor, body.reason if body else None)
    background_tasks.add_task(dispatch_outbox)
    return _serialize(practica)
