"""
Pydantic schemas for data validation and serialization.
Covers: Sites, Programs, Staff, Practicas (with per-state variants), Events.
"""
from datetime import date, datetime
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .enums import (
    ActorRole,
    EventType,
    InternshipKind,
    InternshipState,
)


EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
PHONE_PATTERN = r"^\+?[0-9\s\-()]{7,20}$"


# ==========================================
# ORGANIZATION SCHEMAS
# ==========================================

class Site(BaseModel):
    """Organizational site (campus)."""
    id: str
    name: str = Field(..., min_length=1, max_length=200)


class Program(BaseModel):
    """Academic program. Required hours are set per internship kind."""
    id: str
    name: str = Field(..., min_length=1, max_length=200)
    site_id: str
    laboral_hours: Optional[int] = Field(None, gt=0, le=320)
    profesional_hours: Optional[int] = Field(None, gt=0, le=320)


class StaffMember(BaseModel):
    """Coordinator or program director, scoped to one site."""
    id: str
    name: str
    email: str
    role: ActorRole
    site_id: Optional[str] = None
    active: bool = True


class Person(BaseModel):
    """Student, tutor or employer contact."""
    id: str
    name: str
    email: str


class Actor(BaseModel):
    """Identity performing a lifecycle action, established upstream."""
    model_config = ConfigDict(frozen=True)

    user_id: str
    role: ActorRole


# ==========================================
# PRACTICA SUB-RECORDS
# ==========================================

class StudentActaFields(BaseModel):
    """Host organization data the student fills in to complete Acta 1."""
    address: str = Field(..., min_length=5, max_length=255)
    department: Optional[str] = Field(None, max_length=100)
    supervisor_name: str = Field(..., min_length=3, max_length=100)
    supervisor_title: str = Field(..., min_length=3, max_length=100)
    supervisor_email: str = Field(..., max_length=100, pattern=EMAIL_PATTERN)
    supervisor_phone: Optional[str] = Field(None, pattern=PHONE_PATTERN)
    distance_work: bool = False
    main_tasks: str = Field(..., min_length=10, max_length=2000)


class Evaluation(BaseModel):
    """A grade on the 1.0 - 7.0 scale."""
    score: float = Field(..., ge=1.0, le=7.0)
    evaluator_id: str
    comments: Optional[str] = Field(None, max_length=2000)
    recorded_at: datetime


class ClosingRecord(BaseModel):
    """Final weighted score, present only once a practica is CLOSED."""
    final_score: float
    tutor_weight: int
    employer_weight: int
    closed_at: datetime
    closed_by: str


# ==========================================
# STATE VARIANTS
# ==========================================

class _StateBase(BaseModel):
    model_config = ConfigDict(frozen=True)


class Pending(_StateBase):
    code: Literal["PENDING"] = "PENDING"


class PendingTutorAcceptance(_StateBase):
    code: Literal["PENDING_TUTOR_ACCEPTANCE"] = "PENDING_TUTOR_ACCEPTANCE"


class RejectedByTutor(_StateBase):
    code: Literal["REJECTED_BY_TUTOR"] = "REJECTED_BY_TUTOR"
    reason: str = Field(..., min_length=1, max_length=1000)
    rejected_at: datetime


class InProgress(_StateBase):
    code: Literal["IN_PROGRESS"] = "IN_PROGRESS"


class FinishedPendingEval(_StateBase):
    code: Literal["FINISHED_PENDING_EVAL"] = "FINISHED_PENDING_EVAL"


class EvaluationComplete(_StateBase):
    code: Literal["EVALUATION_COMPLETE"] = "EVALUATION_COMPLETE"


class Closed(_StateBase):
    code: Literal["CLOSED"] = "CLOSED"
    closing: ClosingRecord


class Voided(_StateBase):
    code: Literal["VOIDED"] = "VOIDED"
    reason: Optional[str] = Field(None, max_length=1000)
    voided_by: str
    voided_at: datetime


PracticaState = Annotated[
    Union[
        Pending,
        PendingTutorAcceptance,
        RejectedByTutor,
        InProgress,
        FinishedPendingEval,
        EvaluationComplete,
        Closed,
        Voided,
    ],
    Field(discriminator="code"),
]


# ==========================================
# PRACTICA
# ==========================================

class Practica(BaseModel):
    """
    An internship as tracked by the lifecycle.

    State-specific data (rejection reason, closing record, void reason)
    lives on the state variant, never on the practica itself.
    """
    id: str
    student_id: str
    tutor_id: Optional[str] = None
    program_id: str
    employer_id: Optional[str] = None
    kind: InternshipKind
    start_date: date
    completion_date: date
    state: PracticaState = Field(default_factory=Pending)
    acta: Optional[StudentActaFields] = None
    student_completed_at: Optional[datetime] = None
    report_url: Optional[str] = None
    tutor_evaluation: Optional[Evaluation] = None
    employer_evaluation: Optional[Evaluation] = None
    version: int = Field(1, ge=1)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def state_code(self) -> InternshipState:
        return InternshipState(self.state.code)

    @property
    def rejection_reason(self) -> Optional[str]:
        return self.state.reason if isinstance(self.state, RejectedByTutor) else None

    @property
    def closing(self) -> Optional[ClosingRecord]:
        return self.state.closing if isinstance(self.state, Closed) else None


class PracticaCreate(BaseModel):
    """Request body for creating a practica (coordinator action)."""
    student_id: str
    program_id: str
    kind: InternshipKind
    start_date: date
    completion_date: Optional[date] = Field(
        None,
        description="Omit to compute it from the program's required hours"
    )
    tutor_id: Optional[str] = None
    employer_id: Optional[str] = None

    @model_validator(mode='after')
    def validate_dates(self) -> 'PracticaCreate':
        """Ensure completion date is not before start date."""
        if self.completion_date and self.completion_date < self.start_date:
            raise ValueError("completion_date cannot be before start_date")
        return self


class DomainEvent(BaseModel):
    """Event emitted by a transition and delivered later through the outbox."""
    event_type: EventType
    practica_id: str
    payload: dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime
