"""
Tests for Scheduler Service.

Covers:
- PracticasScheduler job configuration and lifecycle
- JobFailureMonitor failure counting, alerting and pausing
- Overdue escalation skips weekends and holidays
- Each job reports success / failure to the monitor
"""
import pytest
import asyncio
from datetime import date
from unittest.mock import AsyncMock, patch


@pytest.fixture(autouse=True)
def reset_job_monitor():
    """The failure monitor is module global; start every test clean."""
    from practicas.services.scheduler import job_monitor

    job_monitor.failed_jobs.clear()
    job_monitor.paused_jobs.clear()
    yield
    job_monitor.failed_jobs.clear()
    job_monitor.paused_jobs.clear()


class TestSchedulerStructure:
    """Tests for scheduler structure and configuration."""

    @pytest.mark.unit
    def test_scheduler_job_configuration(self):
        """PracticasScheduler registers the four background jobs."""
        from practicas.services.scheduler import PracticasScheduler

        scheduler = PracticasScheduler()

        assert set(scheduler.jobs_config) == {
            "overdue_escalation",
            "deadline_reminders",
            "outbox_dispatcher",
            "holiday_prefetch",
        }

    @pytest.mark.unit
    def test_cron_jobs_use_local_timezone(self):
        """The overdue pass fires at 08:00 in the institution's timezone."""
        from practicas.services.scheduler import PracticasScheduler

        trigger = PracticasScheduler().jobs_config["overdue_escalation"]["trigger"]

        assert str(trigger.timezone) == "America/Santiago"
        fields = {f.name: str(f) for f in trigger.fields}
        assert fields["hour"] == "8"
        assert fields["minute"] == "0"

    @pytest.mark.unit
    def test_scheduler_not_running_by_default(self):
        from practicas.services.scheduler import PracticasScheduler

        scheduler = PracticasScheduler()

        assert scheduler.is_running is False
        assert scheduler.scheduler is None
        assert scheduler.get_jobs_status() == []
        assert scheduler.trigger_job("overdue_escalation") is False

    @pytest.mark.unit
    def test_get_health_status_structure(self):
        """Health status should have correct structure."""
        from practicas.services.scheduler import PracticasScheduler

        health = PracticasScheduler().get_health_status()

        assert health["status"] == "healthy"
        assert health["is_running"] is False
        assert health["jobs"] == []
        assert health["failures"] == {}
        assert health["paused_jobs"] == []

    @pytest.mark.integration
    def test_start_and_stop(self):
        """Starting inside an event loop schedules every job."""
        from practicas.services.scheduler import PracticasScheduler

        scheduler = PracticasScheduler()

        async def lifecycle():
            scheduler.start()
            scheduler.start()  # second start is ignored
            try:
                jobs = scheduler.get_jobs_status()
                triggered = scheduler.trigger_job("holiday_prefetch")
                missing = scheduler.trigger_job("no_such_job")
                paused = scheduler.pause_job("deadline_reminders")
                return jobs, triggered, missing, paused
            finally:
                scheduler.stop()

        jobs, triggered, missing, paused = asyncio.run(lifecycle())

        assert {j["id"] for j in jobs} == set(scheduler.jobs_config)
        assert triggered is True
        assert missing is False
        assert paused is True
        assert scheduler.is_running is False


class TestJobFailureMonitor:
    """Tests for job failure monitoring."""

    @pytest.mark.unit
    def test_record_success_resets_failure_count(self):
        """Recording success should reset failure count."""
        from practicas.services.scheduler import JobFailureMonitor

        monitor = JobFailureMonitor(failure_threshold=3)

        asyncio.run(monitor.record_failure("test_job", "error1"))
        asyncio.run(monitor.record_failure("test_job", "error2"))
        asyncio.run(monitor.record_success("test_job"))

        assert monitor.get_status()["test_job"]["failure_count"] == 0

    @pytest.mark.unit
    def test_failure_threshold_triggers_pause(self):
        """Reaching the failure threshold alerts and pauses the job."""
        from practicas.services.scheduler import JobFailureMonitor

        monitor = JobFailureMonitor(failure_threshold=2)

        with patch.object(monitor, "_send_critical_alert", new_callable=AsyncMock) as alert:
            first = asyncio.run(monitor.record_failure("test_job", "error1"))
            second = asyncio.run(monitor.record_failure("test_job", "error2"))

        assert first is False
        assert second is True
        alert.assert_awaited_once_with("test_job", 2, "error2")
        assert monitor.get_status()["test_job"]["is_paused"] is True

    @pytest.mark.unit
    def test_critical_alert_goes_to_ops_mailbox(self):
        from practicas.services.scheduler import JobFailureMonitor

        monitor = JobFailureMonitor(failure_threshold=1)

        with patch("practicas.services.scheduler.settings.ops_escalation_email", "ops@uni.cl"):
            with patch(
                "practicas.services.scheduler.notification_service._send_email_simple",
                new_callable=AsyncMock,
            ) as send:
                asyncio.run(monitor.record_failure("overdue_escalation", "db down"))

        assert send.await_args.kwargs["to_email"] == "ops@uni.cl"
        assert "overdue_escalation" in send.await_args.kwargs["subject"]

    @pytest.mark.unit
    def test_alert_failure_is_swallowed(self):
        """A broken mail relay never hides the original job failure."""
        from practicas.services.scheduler import JobFailureMonitor

        monitor = JobFailureMonitor(failure_threshold=1)

        with patch("practicas.services.scheduler.settings.ops_escalation_email", "ops@uni.cl"):
            with patch(
                "practicas.services.scheduler.notification_service._send_email_simple",
                new_callable=AsyncMock,
                side_effect=ConnectionError("relay down"),
            ):
                assert asyncio.run(monitor.record_failure("job", "boom")) is True

    @pytest.mark.unit
    def test_degraded_health_after_failure(self):
        from practicas.services.scheduler import PracticasScheduler

        scheduler = PracticasScheduler()
        asyncio.run(scheduler.job_monitor.record_failure("outbox_dispatcher", "timeout"))

        assert scheduler.get_health_status()["status"] == "degraded"


class TestOverdueEscalationJob:
    """Tests for the overdue escalation job."""

    @pytest.mark.unit
    def test_skips_weekend(self, frozen_weekend):
        """On Saturday the job does nothing."""
        from practicas.services.scheduler import overdue_escalation_job

        with patch("practicas.services.scheduler.run_overdue_pass", new_callable=AsyncMock) as run:
            result = asyncio.run(overdue_escalation_job())

        assert result == {"skipped": True, "reason": "non_business_day"}
        run.assert_not_awaited()

    @pytest.mark.unit
    def test_skips_holiday(self, frozen_monday, calendar_factory):
        """A weekday holiday is skipped like a weekend."""
        from practicas.services.scheduler import overdue_escalation_job

        calendar = calendar_factory([date(2025, 4, 14)])
        with patch("practicas.services.business_days.get_holiday_calendar", return_value=calendar):
            with patch("practicas.services.scheduler.run_overdue_pass", new_callable=AsyncMock) as run:
                result = asyncio.run(overdue_escalation_job())

        assert result["skipped"] is True
        run.assert_not_awaited()

    @pytest.mark.unit
    def test_runs_on_business_day(self, frozen_monday):
        """On a business day the pass runs for the local date."""
        from practicas.services.scheduler import overdue_escalation_job

        outcome = {"success": True, "sent": 2, "skipped": 0, "errors": [], "flagged": 3}
        with patch(
            "practicas.services.scheduler.run_overdue_pass",
            new_callable=AsyncMock,
            return_value=outcome,
        ) as run:
            result = asyncio.run(overdue_escalation_job())

        assert result == outcome
        run.assert_awaited_once_with(today=date(2025, 4, 14))

    @pytest.mark.unit
    def test_failure_is_recorded_and_reraised(self, frozen_monday):
        from practicas.services.scheduler import job_monitor, overdue_escalation_job

        with patch(
            "practicas.services.scheduler.run_overdue_pass",
            new_callable=AsyncMock,
            side_effect=RuntimeError("storage unavailable"),
        ):
            with pytest.raises(RuntimeError):
                asyncio.run(overdue_escalation_job())

        assert job_monitor.get_status()["overdue_escalation"]["failure_count"] == 1


class TestOtherJobs:
    """Tests for reminders, outbox and holiday prefetch jobs."""

    @pytest.mark.unit
    def test_deadline_reminders_job(self, frozen_monday):
        from practicas.services.scheduler import deadline_reminders_job

        outcome = {"success": True, "sent": 1, "skipped": 0, "errors": []}
        with patch(
            "practicas.services.scheduler.run_deadline_reminders",
            new_callable=AsyncMock,
            return_value=outcome,
        ) as run:
            assert asyncio.run(deadline_reminders_job()) == outcome

        run.assert_awaited_once_with(today=date(2025, 4, 14))

    @pytest.mark.integration
    def test_outbox_dispatcher_job(self, fresh_mock_client, organization):
        """The job delivers pending events from storage."""
        from practicas.models import DomainEvent, EventType
        from practicas.services.events import enqueue_events
        from practicas.services.scheduler import outbox_dispatcher_job
        from datetime import datetime, timezone

        enqueue_events(fresh_mock_client, [DomainEvent(
            event_type=EventType.TUTOR_ASSIGNED,
            practica_id="pr-1",
            payload={"student_id": "student-1"},
            occurred_at=datetime(2025, 4, 14, tzinfo=timezone.utc),
        )])

        with patch("practicas.services.scheduler.get_supabase_client", return_value=fresh_mock_client):
            result = asyncio.run(outbox_dispatcher_job())

        assert result == {"dispatched": 1, "failed": 0}

    @pytest.mark.unit
    def test_holiday_prefetch_warms_two_years(self, frozen_monday, offline_holiday_calendar):
        from practicas.services.scheduler import holiday_prefetch_job

        result = asyncio.run(holiday_prefetch_job())

        assert set(result) == {"2025", "2026"}
        assert {2025, 2026} <= set(offline_holiday_calendar.provider.calls)

    @pytest.mark.unit
    def test_handle_failure_pauses_running_job(self):
        """Crossing the threshold pauses the job on the live scheduler."""
        from unittest.mock import MagicMock
        from practicas.services import scheduler as scheduler_module

        live = MagicMock()
        with patch.object(scheduler_module.job_monitor, "failure_threshold", 1):
            with patch.object(scheduler_module.job_monitor, "_send_critical_alert", new_callable=AsyncMock):
                with patch.object(scheduler_module, "get_scheduler", return_value=live):
                    asyncio.run(scheduler_module._handle_job_failure("deadline_reminders", RuntimeError("x")))

        live.pause_job.assert_called_once_with("deadline_reminders")
