# Services - Business Logic Layer
"""
Practicas Services Module.

This module provides the core business logic for:
- Practica lifecycle (pure state machine + persistence)
- Business-day deadlines and the holiday calendar
- Overdue detection and escalation
- Deadline reminders and event notifications
- Background Job Scheduling
"""

# Business Day Calculations
from .business_days import (
    is_business_day,
    is_weekend,
    local_today,
    required_work_days,
    required_hours_for,
    compute_completion_date,
    acta1_deadline,
    get_business_days_between,
)

# Holiday Calendar
from .holiday_calendar import (
    HolidayCache,
    InMemoryHolidayCache,
    HolidayProvider,
    HolidayCalendar,
    get_holiday_calendar,
)

# Lifecycle
from .practica_service import PracticaService

# Overdue Detection & Escalation
from .overdue import (
    OverdueRecord,
    OverdueDetector,
    classify_severity,
    detect_overdue,
    overdue_statistics,
)
from .escalation import (
    EscalationSummary,
    EscalationResult,
    EscalationRouter,
    build_summaries,
)

# Events & Reminders
from .events import EventDispatcher, enqueue_events
from .reminders import ReminderService

# Alert Orchestration
from .alert_orchestrator import (
    run_overdue_pass,
    get_overdue_statistics,
    run_deadline_reminders,
    send_manual_alert,
    get_manual_alert_history,
)

# Notification Services
from .notifications import (
    NotificationChannel,
    NotificationResult,
    NotificationService,
)

# Background Job Scheduler
from .scheduler import (
    PracticasScheduler,
    get_scheduler,
)


__all__ = [
    # Business Days
    "is_business_day",
    "is_weekend",
    "local_today",
    "required_work_days",
    "required_hours_for",
    "compute_completion_date",
    "acta1_deadline",
    "get_business_days_between",

    # Holiday Calendar
    "HolidayCache",
    "InMemoryHolidayCache",
    "HolidayProvider",
    "HolidayCalendar",
    "get_holiday_calendar",

    # Lifecycle
    "PracticaService",

    # Overdue & Escalation
    "OverdueRecord",
    "OverdueDetector",
    "classify_severity",
    "detect_overdue",
    "overdue_statistics",
    "EscalationSummary",
    "EscalationResult",
    "EscalationRouter",
    "build_summaries",

    # Events & Reminders
    "EventDispatcher",
    "enqueue_events",
    "ReminderService",

    # Alert Orchestration
    "run_overdue_pass",
    "get_overdue_statistics",
    "run_deadline_reminders",
    "send_manual_alert",
    "get_manual_alert_history",

    # Notifications
    "NotificationChannel",
    "NotificationResult",
    "NotificationService",

    # Scheduler
    "PracticasScheduler",
    "get_scheduler",
]
