"""
Deadline reminders for students and tutors.

Daily pass sending:
- ACTA1_EXPIRING: Acta 1 still pending one day before its grace period ends (student)
- TUTOR_ACCEPTANCE_EXPIRING: tutor has not answered one day before the acceptance
  period ends (tutor)
- END_APPROACHING: practica ends within the next 7 days (student and tutor)
- REPORT_PENDING: practica ended 3+ days ago and no report was uploaded (student and tutor)

The two *_EXPIRING reminders are sent once per practica and recipient; the
others at most once per day. Sent reminders are tracked in `reminder_log`.
"""
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Optional
from zoneinfo import ZoneInfo

from practicas.core.config import settings
from practicas.core.database import SupabaseClient
from practicas.models.enums import InternshipState, ReminderKind
from practicas.models.schemas import Person, Practica
from practicas.repositories import PracticaRepository, StaffRepository
from practicas.services.business_days import acta1_deadline, local_today
from practicas.services.notifications import (
    NotificationResult,
    NotificationService,
    notification_service,
)


logger = logging.getLogger(__name__)

REMINDER_LOG_TABLE = "reminder_log"

ONE_SHOT_KINDS = frozenset({
    ReminderKind.ACTA1_EXPIRING,
    ReminderKind.TUTOR_ACCEPTANCE_EXPIRING,
})


def _local_date(moment: datetime) -> date:
    """Calendar date of ``moment`` in the institution's timezone."""
    return moment.astimezone(ZoneInfo(settings.local_timezone)).date()


@dataclass
class Reminder:
    kind: ReminderKind
    practica_id: str
    recipient: Person
    subject: str
    lines: list[str] = field(default_factory=list)


class ReminderService:
    def __init__(self, db: SupabaseClient, sender: Optional[NotificationService] = None):
        self.db = db
        self.practicas = PracticaRepository(db)
        self.staff = StaffRepository(db)
        self.sender = sender or notification_service

    # ==========================================
    # SELECTION
    # ==========================================

    def _acta1_expiring(self, today: date) -> list[tuple[Practica, ReminderKind]]:
        notice_from = today - timedelta(
            days=settings.acta1_grace_days - settings.reminder_previous_days
        )
        return [
            (p, ReminderKind.ACTA1_EXPIRING)
            for p in self.practicas.find([InternshipState.PENDING])
            if p.student_completed_at is None
            and p.start_date <= notice_from
            and today <= acta1_deadline(p.start_date)
        ]

    def _tutor_acceptance_expiring(self, today: date) -> list[tuple[Practica, ReminderKind]]:
        notice_from = today - timedelta(
            days=settings.tutor_acceptance_days - settings.reminder_previous_days
        )
        return [
            (p, ReminderKind.TUTOR_ACCEPTANCE_EXPIRING)
            for p in self.practicas.find([InternshipState.PENDING_TUTOR_ACCEPTANCE])
            if p.student_completed_at is not None
            and _local_date(p.student_completed_at) <= notice_from
        ]

    def _end_approaching(self, today: date) -> list[tuple[Practica, ReminderKind]]:
        practicas = self.practicas.find(
            [InternshipState.IN_PROGRESS],
            completion_from=today,
            completion_to=today + timedelta(days=settings.reminder_end_approaching_days),
        )
        return [(p, ReminderKind.END_APPROACHING) for p in practicas]

    def _report_pending(self, today: date) -> list[tuple[Practica, ReminderKind]]:
        practicas = self.practicas.find(
            [InternshipState.IN_PROGRESS],
            completion_to=today - timedelta(days=settings.reminder_report_pending_days),
        )
        return [(p, ReminderKind.REPORT_PENDING) for p in practicas if p.report_url is None]

    def _build(self, practica: Practica, kind: ReminderKind, today: date) -> list[Reminder]:
        student = self.staff.get_person(practica.student_id)
        tutor = self.staff.get_person(practica.tutor_id)
        student_name = student.name if student else "the student"

        if kind == ReminderKind.ACTA1_EXPIRING:
            deadline = acta1_deadline(practica.start_date)
            recipients = [student]
            subject = "Reminder: Acta 1 expires soon"
            lines = [f"Please complete Acta 1 of your practica before {deadline.isoformat()}."]
        elif kind == ReminderKind.TUTOR_ACCEPTANCE_EXPIRING:
            recipients = [tutor]
            subject = "Reminder: supervision acceptance expires soon"
            lines = [f"Please accept or reject the practica of {student_name}."]
        elif kind == ReminderKind.END_APPROACHING:
            days_left = (practica.completion_date - today).days
            recipients = [student, tutor]
            subject = "Reminder: practica ending soon"
            lines = [
                f"The practica of {student_name} ends on {practica.completion_date.isoformat()} "
                f"({days_left} days left)."
            ]
        else:
            days_late = (today - practica.completion_date).days
            recipients = [student, tutor]
            subject = "Reminder: final report pending"
            lines = [
                f"The practica of {student_name} ended {days_late} days ago and its "
                f"final report has not been uploaded."
            ]

        return [
            Reminder(kind=kind, practica_id=practica.id, recipient=r, subject=subject, lines=lines)
            for r in recipients
            if r is not None
        ]

    def collect(self, today: Optional[date] = None) -> list[Reminder]:
        """Every reminder due today, before de-duplication."""
        today = today or local_today()
        candidates = [
            *self._acta1_expiring(today),
            *self._tutor_acceptance_expiring(today),
            *self._end_approaching(today),
            *self._report_pending(today),
        ]
        reminders = []
        for practica, kind in candidates:
            reminders.extend(self._build(practica, kind, today))
        return reminders

    # ==========================================
    # DE-DUPLICATION
    # ==========================================

    def already_sent(self, reminder: Reminder, today: date) -> bool:
        query = (
            self.db.client.table(REMINDER_LOG_TABLE)
            .select("id")
            .eq("practica_id", reminder.practica_id)
            .eq("kind", reminder.kind.value)
            .eq("recipient_id", reminder.recipient.id)
        )
        if reminder.kind not in ONE_SHOT_KINDS:
            query = query.eq("sent_on", today.isoformat())
        return bool(query.execute().data)

    def _reserve(self, reminder: Reminder, today: date) -> str:
        """Write the log row before sending so a later storage error cannot cause a resend."""
        response = self.db.client.table(REMINDER_LOG_TABLE).insert({
            "practica_id": reminder.practica_id,
            "kind": reminder.kind.value,
            "recipient_id": reminder.recipient.id,
            "sent_on": today.isoformat(),
            "message_id": None,
        }).execute()
        return response.data[0]["id"]

    def _confirm(self, log_id: str, message_id: Optional[str]) -> None:
        try:
            self.db.client.table(REMINDER_LOG_TABLE).update(
                {"message_id": message_id}
            ).eq("id", log_id).execute()
        except Exception as e:
            logger.error(f"Failed to store message id on reminder log {log_id}: {e}")

    def _release(self, log_id: str) -> None:
        try:
            self.db.client.table(REMINDER_LOG_TABLE).delete().eq("id", log_id).execute()
        except Exception as e:
            logger.error(f"Failed to release reminder log {log_id}, it will not be retried: {e}")

    # ==========================================
    # RUN
    # ==========================================

    def _audit(self, reminder: Reminder, result: NotificationResult) -> None:
        try:
            self.db.log_email_delivery(
                sender_id=settings.system_user_id,
                recipient_id=reminder.recipient.id,
                notification_type=f"REMINDER_{reminder.kind.value}",
                detail={
                    "recipient_email": reminder.recipient.email,
                    "recipient_name": reminder.recipient.name,
                    "subject": reminder.subject,
                    "success": result.success,
                    "email_id": result.message_id,
                    "error_message": result.error,
                },
                entity_type="practica",
                entity_id=reminder.practica_id,
            )
        except Exception as e:
            logger.error(f"Failed to audit reminder for practica {reminder.practica_id}: {e}")

    async def run(self, today: Optional[date] = None) -> dict[str, Any]:
        """Send due reminders. Failures are collected, not raised."""
        today = today or local_today()
        sent, skipped, errors = 0, 0, []

        for reminder in self.collect(today):
            label = (
                f"{reminder.kind.value} for practica {reminder.practica_id} "
                f"to {reminder.recipient.name}"
            )
            try:
                if self.already_sent(reminder, today):
                    skipped += 1
                    continue
                log_id = self._reserve(reminder, today)
            except Exception as e:
                logger.error(f"Reminder log unavailable for {label}: {e}")
                errors.append(f"{label}: {e}")
                continue

            try:
                result = await self.sender.send_notice(
                    to_email=reminder.recipient.email,
                    to_name=reminder.recipient.name,
                    subject=reminder.subject,
                    lines=reminder.lines,
                )
            except Exception as e:
                logger.error(f"Unexpected error sending {label}: {e}")
                result = NotificationResult(success=False, error=str(e))

            if result.success:
                sent += 1
                self._confirm(log_id, result.message_id)
            else:
                self._release(log_id)
                errors.append(f"{label}: {result.error}")

            self._audit(reminder, result)

        logger.info(f"Reminders: {sent} sent, {skipped} already sent, {len(errors)} failed")
        return {
            "success": not errors or len(errors) < sent + len(errors),
            "sent": sent,
            "skipped": skipped,
            "errors": errors,
        }
