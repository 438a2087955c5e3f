"""
Alert Orchestrator for practicas.

Entry points shared by the cron routes and the scheduler:
1. Overdue pass: detection + one escalation summary per coordinator / director
2. Overdue statistics (read only)
3. Deadline reminders
4. Manual alerts from a coordinator to a student
"""
import logging
from datetime import date, datetime, timezone
from typing import Any, Optional

from practicas.core.config import settings
from practicas.core.database import SupabaseClient, get_supabase_client
from practicas.core.exceptions import UnauthorizedActorError, ValidationError
from practicas.models.enums import ADMIN_ROLES
from practicas.models.schemas import Actor
from practicas.repositories import PracticaRepository, StaffRepository
from practicas.services.escalation import EscalationRouter
from practicas.services.notifications import NotificationService, notification_service
from practicas.services.overdue import OverdueDetector, overdue_statistics
from practicas.services.reminders import ReminderService


logger = logging.getLogger(__name__)


def _detector(db: SupabaseClient) -> OverdueDetector:
    return OverdueDetector(PracticaRepository(db), StaffRepository(db))


async def run_overdue_pass(
    db: Optional[SupabaseClient] = None,
    today: Optional[date] = None,
    router: Optional[EscalationRouter] = None
) -> dict[str, Any]:
    """
    Detect overdue practicas and escalate them.

    Detection errors propagate. Delivery errors are collected in ``errors``.
    """
    db = db or get_supabase_client()
    logger.info("Starting overdue practica pass...")

    records = _detector(db).scan(today)
    if not records:
        logger.info("No overdue practicas found")
        return {"success": True, "sent": 0, "skipped": 0, "errors": [], "flagged": 0}

    router = router or EscalationRouter(StaffRepository(db), db)
    result = await router.dispatch(records)

    logger.info(
        f"Overdue pass completed: {len(records)} flagged, {result.sent} notices sent, "
        f"{len(result.errors)} errors"
    )
    return {
        "success": result.success,
        "sent": result.sent,
        "skipped": result.skipped,
        "errors": result.errors,
        "flagged": len(records),
    }


def get_overdue_statistics(
    db: Optional[SupabaseClient] = None,
    site_id: Optional[str] = None,
    today: Optional[date] = None
) -> dict[str, Any]:
    """Current overdue counts without sending anything."""
    db = db or get_supabase_client()
    return overdue_statistics(_detector(db).scan(today), site_id)


async def run_deadline_reminders(
    db: Optional[SupabaseClient] = None,
    today: Optional[date] = None
) -> dict[str, Any]:
    db = db or get_supabase_client()
    return await ReminderService(db).run(today)


async def send_manual_alert(
    practica_id: str,
    actor: Actor,
    message: str,
    subject: Optional[str] = None,
    db: Optional[SupabaseClient] = None,
    sender: Optional[NotificationService] = None
) -> dict[str, Any]:
    """
    Email the student of a practica on behalf of a coordinator or director.

    The alert is stored in `manual_alerts` before sending; the delivery
    outcome is audited either way.
    """
    if actor.role not in ADMIN_ROLES:
        raise UnauthorizedActorError(
            "Only a coordinator or program director can send manual alerts",
            action="manual_alert",
            actor_role=actor.role.value
        )
    if not message or not message.strip():
        raise ValidationError("Message is required", field="message")

    db = db or get_supabase_client()
    sender = sender or notification_service

    practica = PracticaRepository(db).get(practica_id)
    student = StaffRepository(db).get_person(practica.student_id)
    if student is None:
        raise ValidationError("Student of this practica has no contact data", field="student_id")

    subject = (subject or "").strip() or "Practica alert"
    alert_row = {
        "practica_id": practica_id,
        "subject": subject,
        "message": message.strip(),
        "sent_by": actor.user_id,
        "sent_at": datetime.now(timezone.utc).isoformat(),
    }
    response = db.client.table("manual_alerts").insert(alert_row).execute()
    alert = response.data[0] if response.data else alert_row

    result = await sender.send_notice(
        to_email=student.email,
        to_name=student.name,
        subject=subject,
        lines=[message.strip()],
    )

    db.log_email_delivery(
        sender_id=settings.system_user_id,
        recipient_id=student.id,
        notification_type="MANUAL_ALERT_SENT" if result.success else "MANUAL_ALERT_FAILED",
        detail={
            "recipient_email": student.email,
            "recipient_name": student.name,
            "subject": subject,
            "success": result.success,
            "email_id": result.message_id,
            "error_message": result.error,
            "sent_by": actor.user_id,
        },
        entity_type="manual_alert",
        entity_id=str(alert.get("id", practica_id)),
    )

    return {
        "success": result.success,
        "alert_id": alert.get("id"),
        "error": result.error,
    }


def get_manual_alert_history(practica_id: str, db: Optional[SupabaseClient] = None) -> list[dict]:
    db = db or get_supabase_client()
    response = (
        db.client.table("manual_alerts")
        .select("*")
        .eq("practica_id", practica_id)
        .order("sent_at", desc=True)
        .execute()
    )
    return response.data or []
