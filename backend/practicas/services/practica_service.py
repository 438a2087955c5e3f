"""
Practica Service: load -> transition -> compare-and-swap save -> outbox + audit.

The pure transition functions in `lifecycle` decide; this layer persists.
"""
import logging
from datetime import date
from functools import partial
from typing import Callable, Optional

from practicas.core.database import SupabaseClient
from practicas.core.exceptions import ValidationError
from practicas.models.schemas import (
    Actor,
    DomainEvent,
    Practica,
    PracticaCreate,
    StudentActaFields,
)
from practicas.repositories import PracticaRepository, StaffRepository
from practicas.services import lifecycle
from practicas.services.events import enqueue_events
from practicas.services.holiday_calendar import HolidayCalendar


logger = logging.getLogger(__name__)

Transition = Callable[[Practica], lifecycle.TransitionResult]


class PracticaService:
    def __init__(self, db: SupabaseClient, calendar: Optional[HolidayCalendar] = None):
        self.db = db
        self.practicas = PracticaRepository(db)
        self.staff = StaffRepository(db)
        self.calendar = calendar

    def get(self, practica_id: str) -> Practica:
        return self.practicas.get(practica_id)

    def create(self, data: PracticaCreate, actor: Actor) -> Practica:
        program = self.staff.get_program(data.program_id)
        if program is None:
            raise ValidationError("Unknown program", field="program_id", value=data.program_id)

        practica, events = lifecycle.create_practica(data, program, actor, calendar=self.calendar)
        stored = self.practicas.insert(practica)
        self._after_write(None, stored, events, actor, "create")
        return stored

    def apply(self, practica_id: str, actor: Actor, action: str, transition: Transition) -> Practica:
        """
        Run ``transition`` against the stored record and persist the result.

        Guard violations raise before anything is written. A concurrent
        write raises ConcurrentModificationError and nothing is written.
        """
        current = self.practicas.get(practica_id)
        updated, events = transition(current)
        saved = self.practicas.save(updated, expected_version=current.version)
        self._after_write(current, saved, events, actor, action)
        return saved

    def _after_write(
        self,
        before: Optional[Practica],
        after: Practica,
        events: list[DomainEvent],
        actor: Actor,
        action: str
    ) -> None:
        # The state write already succeeded; outbox and audit problems are logged only
        try:
            enqueue_events(self.db, events)
        except Exception as e:
            logger.error(f"Failed to enqueue {len(events)} events for practica {after.id}: {e}")

        try:
            self.db.log_audit(
                entity_type="practica",
                entity_id=after.id,
                action=action.upper(),
                old_value=before.state_code.value if before else None,
                new_value=after.state_code.value,
                change_source="api",
                changed_by=actor.user_id,
                reason=getattr(after.state, "reason", None),
                metadata={"actor_role": actor.role.value, "version": after.version},
            )
        except Exception as e:
            logger.error(f"Failed to audit {action} on practica {after.id}: {e}")

        logger.info(
            f"Practica {after.id}: {action} by {actor.role.value} {actor.user_id} "
            f"-> {after.state_code.value} (v{after.version})"
        )

    # ==========================================
    # TRANSITIONS
    # ==========================================

    def assign_tutor(self, practica_id: str, actor: Actor, tutor_id: str) -> Practica:
        return self.apply(
            practica_id, actor, "assign_tutor",
            partial(lifecycle.assign_tutor, actor=actor, tutor_id=tutor_id)
        )

    def complete_student_acta(
        self,
        practica_id: str,
        actor: Actor,
        acta: StudentActaFields,
        today: Optional[date] = None
    ) -> Practica:
        return self.apply(
            practica_id, actor, "complete_student_acta",
            partial(lifecycle.complete_student_acta, actor=actor, acta=acta, today=today)
        )

    def tutor_accept(self, practica_id: str, actor: Actor) -> Practica:
        return self.apply(
            practica_id, actor, "tutor_accept",
            partial(lifecycle.tutor_accept, actor=actor)
        )

    def tutor_reject(self, practica_id: str, actor: Actor, reason: Optional[str]) -> Practica:
        return self.apply(
            practica_id, actor, "tutor_reject",
            partial(lifecycle.tutor_reject, actor=actor, reason=reason)
        )

    def resubmit_to_tutor(self, practica_id: str, actor: Actor, tutor_id: Optional[str] = None) -> Practica:
        return self.apply(
            practica_id, actor, "resubmit_to_tutor",
            partial(lifecycle.resubmit_to_tutor, actor=actor, tutor_id=tutor_id)
        )

    def upload_report(
        self,
        practica_id: str,
        actor: Actor,
        report_url: str,
        today: Optional[date] = None
    ) -> Practica:
        return self.apply(
            practica_id, actor, "upload_report",
            partial(lifecycle.upload_report, actor=actor, report_url=report_url, today=today)
        )

    def record_tutor_evaluation(
        self,
        practica_id: str,
        actor: Actor,
        score: float,
        comments: Optional[str] = None
    ) -> Practica:
        return self.apply(
            practica_id, actor, "record_tutor_evaluation",
            partial(lifecycle.record_tutor_evaluation, actor=actor, score=score, comments=comments)
        )

    def record_employer_evaluation(
        self,
        practica_id: str,
        actor: Actor,
        score: float,
        comments: Optional[str] = None
    ) -> Practica:
        return self.apply(
            practica_id, actor, "record_employer_evaluation",
            partial(lifecycle.record_employer_evaluation, actor=actor, score=score, comments=comments)
        )

    def close(self, practica_id: str, actor: Actor) -> Practica:
        return self.apply(practica_id, actor, "close", partial(lifecycle.close, actor=actor))

    def void(self, practica_id: str, actor: Actor, reason: Optional[str] = None) -> Practica:
        return self.apply(
            practica_id, actor, "void",
            partial(lifecycle.void, actor=actor, reason=reason)
        )
