"""
Tests for the alert orchestrator entry points.
"""
import pytest
import asyncio
from datetime import date


TODAY = date(2025, 4, 14)


class TestOverduePass:
    """Tests for run_overdue_pass and get_overdue_statistics."""

    @pytest.mark.integration
    def test_nothing_overdue(self, fresh_mock_client, organization, create_practica_row):
        from practicas.services.alert_orchestrator import run_overdue_pass

        create_practica_row(completion_date=date(2025, 4, 11))

        result = asyncio.run(run_overdue_pass(db=fresh_mock_client, today=TODAY))

        assert result == {"success": True, "sent": 0, "skipped": 0, "errors": [], "flagged": 0}

    @pytest.mark.integration
    def test_overdue_practicas_are_escalated(self, fresh_mock_client, organization, create_practica_row, sender):
        """Two overdue practicas on one site produce one notice per staff member."""
        from practicas.repositories import StaffRepository
        from practicas.services.alert_orchestrator import run_overdue_pass
        from practicas.services.escalation import EscalationRouter

        create_practica_row(practica_id="a", completion_date=date(2025, 3, 25))
        create_practica_row(practica_id="b", completion_date=date(2025, 4, 1))
        router = EscalationRouter(StaffRepository(fresh_mock_client), fresh_mock_client, sender=sender)

        result = asyncio.run(run_overdue_pass(db=fresh_mock_client, today=TODAY, router=router))

        assert result["flagged"] == 2
        assert result["sent"] == 2
        assert result["errors"] == []
        assert {s.recipient.id for s in sender.summaries} == {"coord-1", "dir-1"}
        assert all(len(s.records) == 2 for s in sender.summaries)

    @pytest.mark.integration
    def test_statistics(self, fresh_mock_client, organization, create_practica_row):
        from practicas.services.alert_orchestrator import get_overdue_statistics

        create_practica_row(practica_id="a", completion_date=date(2025, 3, 25))
        create_practica_row(practica_id="b", completion_date=date(2025, 4, 4))

        stats = get_overdue_statistics(db=fresh_mock_client, today=TODAY)

        assert stats["total"] == 2
        assert stats["critical"] == 1
        assert stats["low"] == 1
        assert stats["average_days_overdue"] == 15

    @pytest.mark.integration
    def test_statistics_for_other_site(self, fresh_mock_client, organization, create_practica_row):
        from practicas.services.alert_orchestrator import get_overdue_statistics

        create_practica_row(completion_date=date(2025, 3, 25))

        assert get_overdue_statistics(db=fresh_mock_client, site_id="site-2", today=TODAY)["total"] == 0


class TestManualAlert:
    """Tests for send_manual_alert."""

    @pytest.mark.integration
    def test_coordinator_alerts_student(self, fresh_mock_client, organization, create_practica_row, sender):
        from practicas.models import Actor, ActorRole
        from practicas.services.alert_orchestrator import get_manual_alert_history, send_manual_alert

        create_practica_row(practica_id="pr-1")
        actor = Actor(user_id="coord-1", role=ActorRole.COORDINATOR)

        result = asyncio.run(send_manual_alert(
            "pr-1", actor, "  Recuerda subir tu informe  ", db=fresh_mock_client, sender=sender
        ))

        assert result["success"] is True
        assert result["alert_id"] is not None
        assert sender.notices[0]["to_email"] == "ana@alumnos.cl"
        assert sender.notices[0]["subject"] == "Practica alert"
        assert sender.notices[0]["lines"] == ["Recuerda subir tu informe"]

        history = get_manual_alert_history("pr-1", db=fresh_mock_client)
        assert len(history) == 1
        assert history[0]["sent_by"] == "coord-1"
        assert fresh_mock_client.mock_data["audit_logs"][0]["action"] == "MANUAL_ALERT_SENT"

    @pytest.mark.integration
    def test_student_cannot_send(self, fresh_mock_client, organization, create_practica_row, sender):
        from practicas.core.exceptions import UnauthorizedActorError
        from practicas.models import Actor, ActorRole
        from practicas.services.alert_orchestrator import send_manual_alert

        create_practica_row(practica_id="pr-1")

        with pytest.raises(UnauthorizedActorError):
            asyncio.run(send_manual_alert(
                "pr-1", Actor(user_id="student-1", role=ActorRole.STUDENT), "hola",
                db=fresh_mock_client, sender=sender,
            ))
        assert fresh_mock_client.mock_data["manual_alerts"] == []

    @pytest.mark.integration
    def test_blank_message(self, fresh_mock_client, organization, create_practica_row, sender):
        from practicas.core.exceptions import ValidationError
        from practicas.models import Actor, ActorRole
        from practicas.services.alert_orchestrator import send_manual_alert

        create_practica_row(practica_id="pr-1")

        with pytest.raises(ValidationError):
            asyncio.run(send_manual_alert(
                "pr-1", Actor(user_id="coord-1", role=ActorRole.COORDINATOR), "   ",
                db=fresh_mock_client, sender=sender,
            ))

    @pytest.mark.integration
    def test_failed_delivery_is_audited(
        self, fresh_mock_client, organization, create_practica_row, sender_factory
    ):
        from practicas.models import Actor, ActorRole
        from practicas.services.alert_orchestrator import send_manual_alert

        create_practica_row(practica_id="pr-1")
        failing = sender_factory(failing_emails={"ana@alumnos.cl"})

        result = asyncio.run(send_manual_alert(
            "pr-1", Actor(user_id="coord-1", role=ActorRole.COORDINATOR), "Hola",
            db=fresh_mock_client, sender=failing,
        ))

        assert result["success"] is False
        assert "SMTP 550" in result["error"]
        assert fresh_mock_client.mock_data["audit_logs"][0]["action"] == "MANUAL_ALERT_FAILED"
