# Data models - Enums and Pydantic Schemas
from .enums import (
    InternshipState,
    InternshipKind,
    Severity,
    ActorRole,
    EventType,
    EventStatus,
    ResendPolicy,
    ReminderKind,
    TERMINAL_STATES,
    NON_TERMINAL_STATES,
)
from .schemas import (
    Site,
    Program,
    StaffMember,
    Person,
    Actor,
    StudentActaFields,
    Evaluation,
    ClosingRecord,
    Practica,
    PracticaCreate,
    DomainEvent,
)

__all__ = [
    # Enums
    "InternshipState",
    "InternshipKind",
    "Severity",
    "ActorRole",
    "EventType",
    "EventStatus",
    "ResendPolicy",
    "ReminderKind",
    "TERMINAL_STATES",
    "NON_TERMINAL_STATES",
    # Organization Schemas
    "Site",
    "Program",
    "StaffMember",
    "Person",
    "Actor",
    # Practica Schemas
    "StudentActaFields",
    "Evaluation",
    "ClosingRecord",
    "Practica",
    "PracticaCreate",
    "DomainEvent",
]
