"""
Escalation Router for overdue practicas.

Groups flagged practicas by site and produces ONE consolidated summary per
responsible staff member:

    site -> active coordinators of the site
    site -> active program directors of the site (independently)

Key Features:
- One notice per recipient, never one per practica
- A failed delivery never stops the remaining recipients
- Every attempt, sent or failed, is written to the audit trail
- Configurable resend policy across batch runs (ALWAYS / MIN_INTERVAL)
"""
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional, Protocol

from practicas.core.config import settings
from practicas.core.database import SupabaseClient
from practicas.models.enums import ActorRole, ResendPolicy, Severity
from practicas.models.schemas import StaffMember
from practicas.repositories import StaffRepository
from practicas.services.notifications import NotificationResult, notification_service
from practicas.services.overdue import OverdueRecord


logger = logging.getLogger(__name__)

NOTICES_TABLE = "escalation_notices"

ROLE_LABELS = {
    ActorRole.COORDINATOR: "coordinator",
    ActorRole.PROGRAM_DIRECTOR: "director",
}

ENTITY_PREFIXES = {
    ActorRole.COORDINATOR: "coord",
    ActorRole.PROGRAM_DIRECTOR: "dir",
}


@dataclass
class EscalationSummary:
    """Everything one recipient needs to know about overdue practicas in scope."""
    recipient: StaffMember
    site_id: str
    site_name: Optional[str]
    program_ids: list[str]
    program_names: list[str]
    records: list[OverdueRecord]

    @property
    def counts(self) -> dict[str, int]:
        return {
            "total": len(self.records),
            "critical": sum(1 for r in self.records if r.severity == Severity.CRITICAL),
            "low": sum(1 for r in self.records if r.severity == Severity.LOW),
            "normal": sum(1 for r in self.records if r.severity == Severity.NORMAL),
        }

    @property
    def role_label(self) -> str:
        return ROLE_LABELS[self.recipient.role]

    @property
    def entity_id(self) -> str:
        return f"{ENTITY_PREFIXES[self.recipient.role]}-{self.recipient.id}"


@dataclass
class EscalationResult:
    """Outcome of one escalation pass."""
    sent: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return self.sent + len(self.errors)

    @property
    def success(self) -> bool:
        """True unless every attempted delivery failed."""
        return self.attempted == 0 or len(self.errors) < self.attempted


class SummarySender(Protocol):
    async def send_overdue_summary(self, summary: EscalationSummary) -> NotificationResult:
        ...


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def build_summaries(
    records: list[OverdueRecord],
    coordinators: list[StaffMember],
    directors: list[StaffMember]
) -> list[EscalationSummary]:
    """
    Group flagged records per recipient.

    Coordinators come first, then directors. Staff whose site has no
    flagged record get no summary.
    """
    by_site: dict[str, list[OverdueRecord]] = defaultdict(list)
    for record in records:
        if record.site_id is None:
            logger.warning(f"Overdue practica {record.practica_id} has no site, not routed")
            continue
        by_site[record.site_id].append(record)

    summaries = []
    for member in [*coordinators, *directors]:
        if not member.active or member.site_id not in by_site:
            continue
        site_records = by_site[member.site_id]

        program_ids: list[str] = []
        program_names: list[str] = []
        for record in site_records:
            if record.program_id not in program_ids:
                program_ids.append(record.program_id)
                program_names.append(record.program_name)

        summaries.append(EscalationSummary(
            recipient=member,
            site_id=member.site_id,
            site_name=site_records[0].site_name,
            program_ids=program_ids,
            program_names=program_names,
            records=list(site_records),
        ))

    return summaries


class EscalationRouter:
    """Builds summaries and delivers them through NotificationDispatch."""

    def __init__(
        self,
        staff: StaffRepository,
        db: SupabaseClient,
        sender: Optional[SummarySender] = None,
        policy: Optional[ResendPolicy] = None,
        resend_interval: Optional[timedelta] = None,
        clock: Callable[[], datetime] = _utc_now
    ):
        self.staff = staff
        self.db = db
        self.sender = sender or notification_service
        self.policy = policy or ResendPolicy(settings.escalation_resend_policy)
        self.resend_interval = resend_interval or timedelta(
            hours=settings.escalation_resend_interval_hours
        )
        self._clock = clock

    def build_summaries(self, records: list[OverdueRecord]) -> list[EscalationSummary]:
        coordinators = self.staff.active_staff(ActorRole.COORDINATOR)
        directors = self.staff.active_staff(ActorRole.PROGRAM_DIRECTOR)
        return build_summaries(records, coordinators, directors)

    # ==========================================
    # RESEND POLICY
    # ==========================================

    def _last_notices(self, summary: EscalationSummary) -> dict[str, dict]:
        response = (
            self.db.client.table(NOTICES_TABLE)
            .select("*")
            .eq("recipient_id", summary.recipient.id)
            .in_("practica_id", [r.practica_id for r in summary.records])
            .execute()
        )
        return {row["practica_id"]: row for row in (response.data or [])}

    def is_due(self, summary: EscalationSummary, now: datetime) -> bool:
        """
        Whether ``summary`` should be sent under the configured policy.

        MIN_INTERVAL sends when at least one record was never notified to
        this recipient, was last notified longer ago than the interval, or
        got more severe since.
        """
        if self.policy == ResendPolicy.ALWAYS:
            return True

        notices = self._last_notices(summary)
        for record in summary.records:
            notice = notices.get(record.practica_id)
            if notice is None:
                return True
            last_at = datetime.fromisoformat(notice["last_notified_at"])
            if now - last_at >= self.resend_interval:
                return True
            if record.severity.rank > Severity(notice["last_severity"]).rank:
                return True
        return False

    def _remember_notices(self, summary: EscalationSummary, now: datetime) -> None:
        rows = [
            {
                "practica_id": record.practica_id,
                "recipient_id": summary.recipient.id,
                "last_notified_at": now.isoformat(),
                "last_severity": record.severity.value,
            }
            for record in summary.records
        ]
        self.db.client.table(NOTICES_TABLE).upsert(
            rows, on_conflict="practica_id,recipient_id"
        ).execute()

    # ==========================================
    # DISPATCH
    # ==========================================

    def _audit(self, summary: EscalationSummary, result: NotificationResult, subject: str) -> None:
        detail: dict[str, Any] = {
            "recipient_email": summary.recipient.email,
            "recipient_name": summary.recipient.name,
            "recipient_role": summary.recipient.role.value,
            "subject": subject,
            "success": result.success,
            "email_id": result.message_id,
            "error_message": result.error,
            "counts": summary.counts,
            "practica_ids": [r.practica_id for r in summary.records],
        }
        try:
            self.db.log_email_delivery(
                sender_id=settings.system_user_id,
                recipient_id=summary.recipient.id,
                notification_type=(
                    "ESCALATION_NOTICE_SENT" if result.success else "ESCALATION_NOTICE_FAILED"
                ),
                detail=detail,
                entity_type="escalation_notice",
                entity_id=summary.entity_id,
            )
        except Exception as e:
            logger.error(f"Failed to audit escalation notice for {summary.entity_id}: {e}")

    async def dispatch(self, records: list[OverdueRecord]) -> EscalationResult:
        """Send one summary per recipient. Failures are collected, never raised."""
        result = EscalationResult()
        now = self._clock()

        for summary in self.build_summaries(records):
            try:
                due = self.is_due(summary, now)
            except Exception as e:
                # Unknown notice history: send rather than stay silent
                logger.warning(f"Could not read notice history for {summary.entity_id}, sending: {e}")
                due = True

            if not due:
                result.skipped += 1
                logger.info(f"Skipping {summary.entity_id}: notified recently, no severity change")
                continue

            subject = f"Alert: {summary.counts['total']} practicas pending closure"
            try:
                outcome = await self.sender.send_overdue_summary(summary)
            except Exception as e:
                logger.error(f"Unexpected error notifying {summary.entity_id}: {e}")
                outcome = NotificationResult(success=False, error=str(e))

            self._audit(summary, outcome, subject)

            if outcome.success:
                result.sent += 1
                try:
                    self._remember_notices(summary, now)
                except Exception as e:
                    logger.error(f"Failed to record notices for {summary.entity_id}: {e}")
            else:
                result.errors.append(
                    f"Error sending alert to {summary.role_label} {summary.recipient.name}: {outcome.error}"
                )

        logger.info(
            f"Escalation pass: {result.sent} sent, {len(result.errors)} failed, {result.skipped} skipped"
        )
        return result
