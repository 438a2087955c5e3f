"""
Enum types that match the text columns stored in Supabase.
These must stay in sync with the database schema.
"""
from enum import Enum


class InternshipState(str, Enum):
    """
    Lifecycle states of a practica.
    CLOSED and VOIDED are terminal.
    """
    PENDING = "PENDING"
    PENDING_TUTOR_ACCEPTANCE = "PENDING_TUTOR_ACCEPTANCE"
    REJECTED_BY_TUTOR = "REJECTED_BY_TUTOR"
    IN_PROGRESS = "IN_PROGRESS"
    FINISHED_PENDING_EVAL = "FINISHED_PENDING_EVAL"
    EVALUATION_COMPLETE = "EVALUATION_COMPLETE"
    CLOSED = "CLOSED"
    VOIDED = "VOIDED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({InternshipState.CLOSED, InternshipState.VOIDED})

NON_TERMINAL_STATES = tuple(s for s in InternshipState if s not in TERMINAL_STATES)


class InternshipKind(str, Enum):
    """Internship category. Each program sets its own required hours per kind."""
    LABORAL = "LABORAL"
    PROFESIONAL = "PROFESIONAL"


class Severity(str, Enum):
    """Overdue severity tier."""
    NORMAL = "NORMAL"
    LOW = "LOW"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {Severity.NORMAL: 0, Severity.LOW: 1, Severity.CRITICAL: 2}


class ActorRole(str, Enum):
    """Roles that can act on a practica."""
    STUDENT = "STUDENT"
    TUTOR = "TUTOR"
    EMPLOYER = "EMPLOYER"
    COORDINATOR = "COORDINATOR"
    PROGRAM_DIRECTOR = "PROGRAM_DIRECTOR"


ADMIN_ROLES = frozenset({ActorRole.COORDINATOR, ActorRole.PROGRAM_DIRECTOR})


class EventType(str, Enum):
    """Domain events written to the outbox by lifecycle transitions."""
    PRACTICA_CREATED = "PRACTICA_CREATED"
    TUTOR_ASSIGNED = "TUTOR_ASSIGNED"
    ACTA_COMPLETED = "ACTA_COMPLETED"
    TUTOR_ACCEPTED = "TUTOR_ACCEPTED"
    TUTOR_REJECTED = "TUTOR_REJECTED"
    RESUBMITTED = "RESUBMITTED"
    REPORT_UPLOADED = "REPORT_UPLOADED"
    EVALUATION_RECORDED = "EVALUATION_RECORDED"
    EVALUATION_COMPLETE = "EVALUATION_COMPLETE"
    PRACTICA_CLOSED = "PRACTICA_CLOSED"
    PRACTICA_VOIDED = "PRACTICA_VOIDED"


class EventStatus(str, Enum):
    """Delivery status of an outbox row."""
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    DISPATCHED = "DISPATCHED"
    FAILED = "FAILED"


class ResendPolicy(str, Enum):
    """
    Escalation notice re-send policy across batch runs.

    ALWAYS: every run notifies every recipient.
    MIN_INTERVAL: a record is re-notified to a recipient only when the
    interval elapsed or its severity increased.
    """
    ALWAYS = "ALWAYS"
    MIN_INTERVAL = "MIN_INTERVAL"


class ReminderKind(str, Enum):
    """Deadline reminder categories sent by the daily reminder pass."""
    ACTA1_EXPIRING = "ACTA1_EXPIRING"
    TUTOR_ACCEPTANCE_EXPIRING = "TUTOR_ACCEPTANCE_EXPIRING"
    END_APPROACHING = "END_APPROACHING"
    REPORT_PENDING = "REPORT_PENDING"
