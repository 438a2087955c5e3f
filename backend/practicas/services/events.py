"""
Domain event outbox.

Lifecycle transitions never send email themselves. They return events, the
service layer appends them to the `practica_events` table after the state
write succeeds, and the dispatcher delivers them later (scheduler job or a
FastAPI background task). A delivery failure never affects the transition.

A row is claimed (PENDING -> PROCESSING) before delivery so concurrent
dispatchers never handle it twice, and each successful email is recorded in
`event_deliveries` so a retried row skips recipients already reached.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional

from practicas.core.config import settings
from practicas.core.database import SupabaseClient
from practicas.models.enums import ActorRole, EventStatus, EventType
from practicas.models.schemas import DomainEvent, Person
from practicas.repositories import StaffRepository
from practicas.services.notifications import (
    NotificationResult,
    NotificationService,
    notification_service,
)


logger = logging.getLogger(__name__)

OUTBOX_TABLE = "practica_events"
DELIVERIES_TABLE = "event_deliveries"


def enqueue_events(db: SupabaseClient, events: list[DomainEvent]) -> list[dict]:
    """Append events to the outbox as PENDING rows."""
    if not events:
        return []
    rows = [
        {
            "event_type": event.event_type.value,
            "practica_id": event.practica_id,
            "payload": event.payload,
            "occurred_at": event.occurred_at.isoformat(),
            "status": EventStatus.PENDING.value,
            "attempts": 0,
        }
        for event in events
    ]
    response = db.client.table(OUTBOX_TABLE).insert(rows).execute()
    return response.data or []


class EventDispatcher:
    """Delivers pending outbox rows. One failing row never blocks the others."""

    def __init__(
        self,
        db: SupabaseClient,
        staff: StaffRepository,
        sender: Optional[NotificationService] = None,
        max_attempts: int = 5
    ):
        self.db = db
        self.staff = staff
        self.sender = sender or notification_service
        self.max_attempts = max_attempts
        self._handlers: dict[EventType, Callable[[dict], Awaitable[bool]]] = {
            EventType.ACTA_COMPLETED: self._notify_tutor_acta_completed,
            EventType.TUTOR_ACCEPTED: self._notify_student_accepted,
            EventType.TUTOR_REJECTED: self._notify_coordinators_rejected,
            EventType.REPORT_UPLOADED: self._notify_tutor_report_uploaded,
            EventType.PRACTICA_VOIDED: self._notify_student_voided,
            EventType.PRACTICA_CLOSED: self._notify_student_closed,
        }

    async def dispatch_pending(self, limit: int = 100) -> dict[str, int]:
        """Deliver up to ``limit`` pending events, oldest first."""
        self._release_stale_claims()

        response = (
            self.db.client.table(OUTBOX_TABLE)
            .select("*")
            .eq("status", EventStatus.PENDING.value)
            .order("occurred_at")
            .limit(limit)
            .execute()
        )

        stats = {"dispatched": 0, "failed": 0}
        for row in response.data or []:
            if not self._claim(row):
                logger.debug(f"Event {row['id']} already claimed by another dispatcher")
                continue

            try:
                delivered = await self.handle(row)
                error = None if delivered else "delivery failed"
            except Exception as e:
                logger.error(f"Event {row.get('id')} ({row.get('event_type')}) raised: {e}")
                delivered, error = False, str(e)

            if delivered:
                self._mark(row, EventStatus.DISPATCHED)
                stats["dispatched"] += 1
            else:
                self._mark_failure(row, error)
                stats["failed"] += 1

        if stats["dispatched"] or stats["failed"]:
            logger.info(f"Outbox: {stats['dispatched']} dispatched, {stats['failed']} failed")
        return stats

    async def handle(self, row: dict) -> bool:
        event_type = EventType(row["event_type"])
        handler = self._handlers.get(event_type)
        if handler is None:
            logger.debug(f"No delivery for {event_type.value} on practica {row['practica_id']}")
            return True
        return await handler(row)

    # ==========================================
    # ROW STATUS
    # ==========================================

    def _claim(self, row: dict) -> bool:
        """Move a PENDING row to PROCESSING. False when another dispatcher got it first."""
        response = (
            self.db.client.table(OUTBOX_TABLE)
            .update({
                "status": EventStatus.PROCESSING.value,
                "claimed_at": datetime.now(timezone.utc).isoformat(),
            })
            .eq("id", row["id"])
            .eq("status", EventStatus.PENDING.value)
            .execute()
        )
        return bool(response.data)

    def _release_stale_claims(self) -> None:
        """Return rows left PROCESSING by a dispatcher that died mid-delivery."""
        cutoff = datetime.now(timezone.utc) - timedelta(minutes=settings.outbox_claim_timeout_minutes)
        response = (
            self.db.client.table(OUTBOX_TABLE)
            .update({"status": EventStatus.PENDING.value})
            .eq("status", EventStatus.PROCESSING.value)
            .lt("claimed_at", cutoff.isoformat())
            .execute()
        )
        if response.data:
            logger.warning(f"Outbox: released {len(response.data)} stale claims")

    def _mark(self, row: dict, status: EventStatus, **extra: Any) -> None:
        update = {
            "status": status.value,
            "processed_at": datetime.now(timezone.utc).isoformat(),
            **extra,
        }
        self.db.client.table(OUTBOX_TABLE).update(update).eq("id", row["id"]).execute()

    def _mark_failure(self, row: dict, error: Optional[str]) -> None:
        attempts = (row.get("attempts") or 0) + 1
        if attempts >= self.max_attempts:
            self._mark(row, EventStatus.FAILED, attempts=attempts, last_error=error)
            logger.error(f"Event {row['id']} gave up after {attempts} attempts: {error}")
        else:
            self.db.client.table(OUTBOX_TABLE).update({
                "status": EventStatus.PENDING.value,
                "attempts": attempts,
                "last_error": error,
            }).eq("id", row["id"]).execute()

    # ==========================================
    # PER-RECIPIENT DELIVERY LOG
    # ==========================================

    def _already_delivered(self, row: dict, recipient_id: str) -> bool:
        response = (
            self.db.client.table(DELIVERIES_TABLE)
            .select("id")
            .eq("event_id", row["id"])
            .eq("recipient_id", recipient_id)
            .limit(1)
            .execute()
        )
        return bool(response.data)

    def _remember_delivery(self, row: dict, recipient_id: str, message_id: Optional[str]) -> None:
        try:
            self.db.client.table(DELIVERIES_TABLE).insert({
                "event_id": row["id"],
                "recipient_id": recipient_id,
                "message_id": message_id,
                "delivered_at": datetime.now(timezone.utc).isoformat(),
            }).execute()
        except Exception as e:
            logger.error(f"Failed to record delivery of event {row['id']} to {recipient_id}: {e}")

    # ==========================================
    # HANDLERS
    # ==========================================

    async def _send(
        self,
        row: dict,
        person: Person,
        subject: str,
        lines: list[str],
        role: str
    ) -> bool:
        if self._already_delivered(row, person.id):
            logger.debug(f"Event {row['id']} already delivered to {person.id}")
            return True

        result: NotificationResult = await self.sender.send_notice(
            to_email=person.email,
            to_name=person.name,
            subject=subject,
            lines=lines
        )
        if result.success:
            self._remember_delivery(row, person.id, result.message_id)
        try:
            self.db.log_email_delivery(
                sender_id=settings.system_user_id,
                recipient_id=person.id,
                notification_type=f"NOTICE_{row['event_type']}",
                detail={
                    "recipient_email": person.email,
                    "recipient_name": person.name,
                    "recipient_role": role,
                    "subject": subject,
                    "success": result.success,
                    "email_id": result.message_id,
                    "error_message": result.error,
                },
                entity_type="practica",
                entity_id=row["practica_id"],
            )
        except Exception as e:
            logger.error(f"Failed to audit notice for practica {row['practica_id']}: {e}")
        return result.success

    def _student_name(self, payload: dict) -> str:
        student = self.staff.get_person(payload.get("student_id"))
        return student.name if student else "the student"

    async def _notify_tutor_acta_completed(self, row: dict) -> bool:
        payload = row.get("payload") or {}
        tutor = self.staff.get_person(payload.get("tutor_id"))
        if tutor is None:
            logger.warning(f"Practica {row['practica_id']} has no tutor to notify of Acta 1")
            return True
        return await self._send(
            row, tutor,
            "Practica pending your acceptance",
            [
                f"{self._student_name(payload)} completed Acta 1.",
                f"Please accept or reject supervision within {settings.tutor_acceptance_days} days.",
            ],
            role="tutor",
        )

    async def _notify_student_accepted(self, row: dict) -> bool:
        payload = row.get("payload") or {}
        student = self.staff.get_person(payload.get("student_id"))
        if student is None:
            return True
        return await self._send(
            row, student,
            "Your practica was accepted",
            ["Your tutor accepted supervision. Your practica is now in progress."],
            role="student",
        )

    async def _notify_coordinators_rejected(self, row: dict) -> bool:
        payload = row.get("payload") or {}
        program = self.staff.get_program(payload.get("program_id"))
        if program is None:
            logger.warning(f"Rejected practica {row['practica_id']} has no program, nobody notified")
            return True

        coordinators = self.staff.active_staff_for_site(program.site_id, ActorRole.COORDINATOR)
        if not coordinators:
            logger.warning(f"No active coordinator for site {program.site_id}")
            return True

        lines = [
            f"The tutor rejected the practica of {self._student_name(payload)} ({program.name}).",
            f"Reason: {payload.get('reason')}",
        ]
        delivered = True
        for coordinator in coordinators:
            person = Person(id=coordinator.id, name=coordinator.name, email=coordinator.email)
            ok = await self._send(row, person, "Practica rejected by tutor", lines, role="coordinator")
            delivered = delivered and ok
        return delivered

    async def _notify_tutor_report_uploaded(self, row: dict) -> bool:
        payload = row.get("payload") or {}
        tutor = self.staff.get_person(payload.get("tutor_id"))
        if tutor is None:
            return True
        return await self._send(
            row, tutor,
            f"Practica report uploaded - {self._student_name(payload)}",
            ["The final report is available for evaluation."],
            role="tutor",
        )

    async def _notify_student_voided(self, row: dict) -> bool:
        payload = row.get("payload") or {}
        student = self.staff.get_person(payload.get("student_id"))
        if student is None:
            return True
        lines = ["Your practica was voided by the coordination."]
        if payload.get("reason"):
            lines.append(f"Reason: {payload['reason']}")
        return await self._send(row, student, "Practica voided", lines, role="student")

    async def _notify_student_closed(self, row: dict) -> bool:
        payload = row.get("payload") or {}
        student = self.staff.get_person(payload.get("student_id"))
        if student is None:
            return True
        return await self._send(
            row, student,
            "Practica closed",
            [f"Your practica was closed with a final score of {payload.get('final_score')}."],
            role="student",
        )
