"""
Lifecycle State Machine for practicas.

Every transition is a pure function: it validates the request against the
current state, the actor and the transition guard (in that order) and
returns a NEW Practica plus the domain events it produced. The input record
is never modified, so a rejected transition cannot leave a partial write.

Transition table:
    PENDING                  -> PENDING_TUTOR_ACCEPTANCE  (student owner, start + 5 days)
    PENDING_TUTOR_ACCEPTANCE -> IN_PROGRESS               (assigned tutor)
    PENDING_TUTOR_ACCEPTANCE -> REJECTED_BY_TUTOR         (assigned tutor, reason required)
    REJECTED_BY_TUTOR        -> PENDING_TUTOR_ACCEPTANCE  (coordinator / director)
    IN_PROGRESS              -> FINISHED_PENDING_EVAL     (student owner, on/after completion)
    FINISHED_PENDING_EVAL    -> EVALUATION_COMPLETE       (derived: both evaluations present)
    EVALUATION_COMPLETE      -> CLOSED                    (tutor / coordinator / director)
    any non-terminal         -> VOIDED                    (coordinator / director)
"""
from datetime import date, datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Optional
from uuid import uuid4

from pydantic import ValidationError as PydanticValidationError

from practicas.core.config import settings
from practicas.core.exceptions import (
    ConfigurationError,
    DeadlineExpiredError,
    EarlySubmissionError,
    IllegalTransitionError,
    UnauthorizedActorError,
    ValidationError,
)
from practicas.models.enums import (
    ADMIN_ROLES,
    NON_TERMINAL_STATES,
    ActorRole,
    EventType,
    InternshipState,
)
from practicas.models.schemas import (
    Actor,
    ClosingRecord,
    Closed,
    DomainEvent,
    Evaluation,
    EvaluationComplete,
    FinishedPendingEval,
    InProgress,
    PendingTutorAcceptance,
    Practica,
    PracticaCreate,
    Program,
    RejectedByTutor,
    StudentActaFields,
    Voided,
)
from practicas.services.business_days import (
    acta1_deadline,
    compute_completion_date,
    local_today,
    required_hours_for,
)
from practicas.services.holiday_calendar import HolidayCalendar


MAX_REASON_LENGTH = 1000

TransitionResult = tuple[Practica, list[DomainEvent]]


# States in which each action is listed. Anything else is an illegal transition.
ALLOWED_ACTIONS: dict[str, frozenset[InternshipState]] = {
    "assign_tutor": frozenset(NON_TERMINAL_STATES),
    "complete_student_acta": frozenset({InternshipState.PENDING}),
    "tutor_accept": frozenset({InternshipState.PENDING_TUTOR_ACCEPTANCE}),
    "tutor_reject": frozenset({InternshipState.PENDING_TUTOR_ACCEPTANCE}),
    "resubmit_to_tutor": frozenset({InternshipState.REJECTED_BY_TUTOR}),
    "upload_report": frozenset({InternshipState.IN_PROGRESS}),
    "record_tutor_evaluation": frozenset({
        InternshipState.FINISHED_PENDING_EVAL,
        InternshipState.EVALUATION_COMPLETE,
    }),
    "record_employer_evaluation": frozenset({
        InternshipState.FINISHED_PENDING_EVAL,
        InternshipState.EVALUATION_COMPLETE,
    }),
    "close": frozenset({InternshipState.EVALUATION_COMPLETE}),
    "void": frozenset(NON_TERMINAL_STATES),
}


def allowed_actions(state: InternshipState) -> list[str]:
    """Actions listed for ``state``, in table order."""
    return [action for action, states in ALLOWED_ACTIONS.items() if state in states]


# ==========================================
# HELPERS
# ==========================================

def _now() -> datetime:
    return datetime.now(timezone.utc)


def _require_state(practica: Practica, action: str) -> None:
    state = practica.state_code
    if state not in ALLOWED_ACTIONS[action]:
        raise IllegalTransitionError(
            f"Cannot {action.replace('_', ' ')} a practica in state {state.value}",
            current_state=state.value,
            action=action
        )


def _deny(practica: Practica, actor: Actor, action: str, message: str) -> UnauthorizedActorError:
    return UnauthorizedActorError(
        message,
        current_state=practica.state_code.value,
        action=action,
        actor_role=actor.role.value
    )


def _require_admin(practica: Practica, actor: Actor, action: str) -> None:
    if actor.role not in ADMIN_ROLES:
        raise _deny(practica, actor, action, "Only a coordinator or program director can do this")


def _require_owner_student(practica: Practica, actor: Actor, action: str) -> None:
    if actor.role != ActorRole.STUDENT or actor.user_id != practica.student_id:
        raise _deny(practica, actor, action, "Only the student who owns this practica can do this")


def _is_assigned_tutor(practica: Practica, actor: Actor) -> bool:
    return (
        actor.role == ActorRole.TUTOR
        and practica.tutor_id is not None
        and actor.user_id == practica.tutor_id
    )


def _require_assigned_tutor(practica: Practica, actor: Actor, action: str) -> None:
    if not _is_assigned_tutor(practica, actor):
        raise _deny(practica, actor, action, "Only the assigned tutor can do this")


def _event(practica: Practica, event_type: EventType, now: datetime, **payload: Any) -> DomainEvent:
    base = {
        "student_id": practica.student_id,
        "tutor_id": practica.tutor_id,
        "program_id": practica.program_id,
    }
    return DomainEvent(
        event_type=event_type,
        practica_id=practica.id,
        payload={**base, **payload},
        occurred_at=now
    )


def _advance(practica: Practica, now: datetime, **changes: Any) -> Practica:
    """Copy of ``practica`` with ``changes`` applied. The original is left as is."""
    changes["updated_at"] = now
    return practica.model_copy(update=changes)


def _clean_reason(reason: Optional[str], required: bool) -> Optional[str]:
    cleaned = (reason or "").strip()
    if not cleaned:
        if required:
            raise ValidationError("A reason is required", field="reason")
        return None
    if len(cleaned) > MAX_REASON_LENGTH:
        raise ValidationError(
            f"Reason cannot exceed {MAX_REASON_LENGTH} characters",
            field="reason",
            value=len(cleaned)
        )
    return cleaned


def _build_evaluation(score: float, evaluator_id: str, comments: Optional[str], now: datetime) -> Evaluation:
    try:
        return Evaluation(score=score, evaluator_id=evaluator_id, comments=comments, recorded_at=now)
    except PydanticValidationError as e:
        raise ValidationError(
            "Evaluation score must be between 1.0 and 7.0",
            field="score",
            value=score
        ) from e


# ==========================================
# CREATION
# ==========================================

def create_practica(
    data: PracticaCreate,
    program: Program,
    actor: Actor,
    practica_id: Optional[str] = None,
    calendar: Optional[HolidayCalendar] = None
) -> TransitionResult:
    """
    Register a new practica in PENDING.

    When no completion date is given it is projected from the program's
    required hours for the internship kind.
    """
    if actor.role not in ADMIN_ROLES:
        raise UnauthorizedActorError(
            "Only a coordinator or program director can create a practica",
            action="create",
            actor_role=actor.role.value
        )

    completion_date = data.completion_date
    if completion_date is None:
        hours = required_hours_for(program, data.kind)
        completion_date = compute_completion_date(data.start_date, hours, calendar)

    if completion_date < data.start_date:
        raise ValidationError(
            "Completion date cannot be before start date",
            field="completion_date",
            value=completion_date
        )

    now = _now()
    practica = Practica(
        id=practica_id or str(uuid4()),
        student_id=data.student_id,
        tutor_id=data.tutor_id,
        program_id=data.program_id,
        employer_id=data.employer_id,
        kind=data.kind,
        start_date=data.start_date,
        completion_date=completion_date,
        created_at=now,
        updated_at=now,
    )
    return practica, [_event(practica, EventType.PRACTICA_CREATED, now, created_by=actor.user_id)]


# ==========================================
# TRANSITIONS
# ==========================================

def assign_tutor(practica: Practica, actor: Actor, tutor_id: str) -> TransitionResult:
    """Set or replace the faculty tutor. State is unchanged."""
    _require_state(practica, "assign_tutor")
    _require_admin(practica, actor, "assign_tutor")
    if not tutor_id or not tutor_id.strip():
        raise ValidationError("A tutor is required", field="tutor_id")

    now = _now()
    updated = _advance(practica, now, tutor_id=tutor_id)
    return updated, [_event(updated, EventType.TUTOR_ASSIGNED, now, previous_tutor_id=practica.tutor_id)]


def complete_student_acta(
    practica: Practica,
    actor: Actor,
    acta: StudentActaFields,
    today: Optional[date] = None
) -> TransitionResult:
    """PENDING -> PENDING_TUTOR_ACCEPTANCE, within the Acta 1 grace period."""
    _require_state(practica, "complete_student_acta")
    _require_owner_student(practica, actor, "complete_student_acta")

    today = today or local_today()
    deadline = acta1_deadline(practica.start_date)
    if today > deadline:
        raise DeadlineExpiredError(
            f"The deadline to complete Acta 1 expired on {deadline.isoformat()}",
            deadline=deadline.isoformat(),
            current_state=practica.state_code.value,
            action="complete_student_acta"
        )

    now = _now()
    updated = _advance(
        practica,
        now,
        state=PendingTutorAcceptance(),
        acta=acta,
        student_completed_at=now,
    )
    return updated, [_event(updated, EventType.ACTA_COMPLETED, now)]


def tutor_accept(practica: Practica, actor: Actor) -> TransitionResult:
    """PENDING_TUTOR_ACCEPTANCE -> IN_PROGRESS."""
    _require_state(practica, "tutor_accept")
    _require_assigned_tutor(practica, actor, "tutor_accept")

    now = _now()
    updated = _advance(practica, now, state=InProgress())
    return updated, [_event(updated, EventType.TUTOR_ACCEPTED, now)]


def tutor_reject(practica: Practica, actor: Actor, reason: Optional[str]) -> TransitionResult:
    """PENDING_TUTOR_ACCEPTANCE -> REJECTED_BY_TUTOR, with a mandatory reason."""
    _require_state(practica, "tutor_reject")
    _require_assigned_tutor(practica, actor, "tutor_reject")
    cleaned = _clean_reason(reason, required=True)

    now = _now()
    updated = _advance(practica, now, state=RejectedByTutor(reason=cleaned, rejected_at=now))
    return updated, [_event(updated, EventType.TUTOR_REJECTED, now, reason=cleaned)]


def resubmit_to_tutor(
    practica: Practica,
    actor: Actor,
    tutor_id: Optional[str] = None
) -> TransitionResult:
    """REJECTED_BY_TUTOR -> PENDING_TUTOR_ACCEPTANCE, optionally with another tutor."""
    _require_state(practica, "resubmit_to_tutor")
    _require_admin(practica, actor, "resubmit_to_tutor")

    now = _now()
    changes: dict[str, Any] = {"state": PendingTutorAcceptance()}
    if tutor_id:
        changes["tutor_id"] = tutor_id
    updated = _advance(practica, now, **changes)
    return updated, [_event(
        updated,
        EventType.RESUBMITTED,
        now,
        previous_reason=practica.rejection_reason
    )]


def upload_report(
    practica: Practica,
    actor: Actor,
    report_url: str,
    today: Optional[date] = None
) -> TransitionResult:
    """IN_PROGRESS -> FINISHED_PENDING_EVAL, not before the completion date."""
    _require_state(practica, "upload_report")
    _require_owner_student(practica, actor, "upload_report")

    today = today or local_today()
    if today < practica.completion_date:
        raise EarlySubmissionError(
            f"The report cannot be uploaded before {practica.completion_date.isoformat()}",
            completion_date=practica.completion_date.isoformat()
        )
    if not report_url or not report_url.strip():
        raise ValidationError("A report reference is required", field="report_url")

    now = _now()
    updated = _advance(practica, now, state=FinishedPendingEval(), report_url=report_url.strip())
    return updated, [_event(updated, EventType.REPORT_UPLOADED, now, report_url=updated.report_url)]


def _with_evaluation(
    practica: Practica,
    field: str,
    evaluation: Evaluation,
    now: datetime
) -> TransitionResult:
    updated = _advance(practica, now, **{field: evaluation})
    events = [_event(
        updated,
        EventType.EVALUATION_RECORDED,
        now,
        evaluation=field,
        score=evaluation.score
    )]

    # FINISHED_PENDING_EVAL -> EVALUATION_COMPLETE is derived, never requested
    if (
        updated.state_code == InternshipState.FINISHED_PENDING_EVAL
        and updated.tutor_evaluation is not None
        and updated.employer_evaluation is not None
    ):
        updated = _advance(updated, now, state=EvaluationComplete())
        events.append(_event(updated, EventType.EVALUATION_COMPLETE, now))

    return updated, events


def record_tutor_evaluation(
    practica: Practica,
    actor: Actor,
    score: float,
    comments: Optional[str] = None
) -> TransitionResult:
    """Grade the final report. Allowed until the practica is closed."""
    _require_state(practica, "record_tutor_evaluation")
    _require_assigned_tutor(practica, actor, "record_tutor_evaluation")

    now = _now()
    evaluation = _build_evaluation(score, actor.user_id, comments, now)
    return _with_evaluation(practica, "tutor_evaluation", evaluation, now)


def record_employer_evaluation(
    practica: Practica,
    actor: Actor,
    score: float,
    comments: Optional[str] = None
) -> TransitionResult:
    """Employer's grade, entered by the employer or by staff on their behalf."""
    _require_state(practica, "record_employer_evaluation")
    is_employer = (
        actor.role == ActorRole.EMPLOYER
        and practica.employer_id is not None
        and actor.user_id == practica.employer_id
    )
    if not is_employer and actor.role not in ADMIN_ROLES:
        raise _deny(
            practica, actor, "record_employer_evaluation",
            "Only the employer or a coordinator can record the employer evaluation"
        )

    now = _now()
    evaluation = _build_evaluation(score, actor.user_id, comments, now)
    return _with_evaluation(practica, "employer_evaluation", evaluation, now)


def compute_final_score(
    tutor_score: float,
    employer_score: float,
    tutor_weight: Optional[int] = None,
    employer_weight: Optional[int] = None
) -> float:
    """
    Weighted final grade, rounded half-up to one decimal.

    Example:
        compute_final_score(6.0, 5.5) == 5.8  (50/50)
    """
    if tutor_weight is None:
        tutor_weight = settings.tutor_report_weight
    if employer_weight is None:
        employer_weight = settings.employer_weight

    if tutor_weight < 0 or employer_weight < 0 or tutor_weight + employer_weight != 100:
        raise ConfigurationError(
            f"Score weights must be non-negative and sum to 100, got {tutor_weight}/{employer_weight}",
            config_key="tutor_report_weight"
        )

    weighted = (
        Decimal(str(tutor_score)) * tutor_weight
        + Decimal(str(employer_score)) * employer_weight
    ) / 100
    return float(weighted.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def close(
    practica: Practica,
    actor: Actor,
    tutor_weight: Optional[int] = None,
    employer_weight: Optional[int] = None
) -> TransitionResult:
    """EVALUATION_COMPLETE -> CLOSED. Irreversible."""
    _require_state(practica, "close")
    if not _is_assigned_tutor(practica, actor) and actor.role not in ADMIN_ROLES:
        raise _deny(practica, actor, "close", "Only the assigned tutor or a coordinator can close")

    if tutor_weight is None:
        tutor_weight = settings.tutor_report_weight
    if employer_weight is None:
        employer_weight = settings.employer_weight

    final_score = compute_final_score(
        practica.tutor_evaluation.score,
        practica.employer_evaluation.score,
        tutor_weight,
        employer_weight
    )

    now = _now()
    closing = ClosingRecord(
        final_score=final_score,
        tutor_weight=tutor_weight,
        employer_weight=employer_weight,
        closed_at=now,
        closed_by=actor.user_id,
    )
    updated = _advance(practica, now, state=Closed(closing=closing))
    return updated, [_event(updated, EventType.PRACTICA_CLOSED, now, final_score=final_score)]


def void(practica: Practica, actor: Actor, reason: Optional[str] = None) -> TransitionResult:
    """Any non-terminal state -> VOIDED. Absorbing."""
    _require_state(practica, "void")
    _require_admin(practica, actor, "void")
    cleaned = _clean_reason(reason, required=False)

    now = _now()
    updated = _advance(
        practica,
        now,
        state=Voided(reason=cleaned, voided_by=actor.user_id, voided_at=now)
    )
    return updated, [_event(
        updated,
        EventType.PRACTICA_VOIDED,
        now,
        reason=cleaned,
        previous_state=practica.state_code.value
    )]
