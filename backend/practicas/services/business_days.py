"""
Business Day Calculator for internship deadlines.

Projects the completion date of a practica from its start date and the
work-hours its program requires, skipping weekends and national holidays.

Key Rules:
- required days = ceil(required hours / 8)
- The start date itself counts when it is a business day
- Holidays come from the HolidayCalendar (fail-open)
- The walk is bounded to required days + 2 years of iterations
"""
import math
from datetime import date, datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from practicas.core.config import settings
from practicas.core.exceptions import ConfigurationError, DeadlineComputationError
from practicas.models.enums import InternshipKind
from practicas.models.schemas import Program
from practicas.services.holiday_calendar import HolidayCalendar, get_holiday_calendar


SAFETY_MARGIN_DAYS = 730


def local_today() -> date:
    """Today's date in the institution's timezone."""
    return datetime.now(ZoneInfo(settings.local_timezone)).date()


def is_weekend(check_date: date) -> bool:
    """Check if date is a weekend (Saturday=5, Sunday=6)."""
    return check_date.weekday() >= 5


def is_business_day(check_date: date, calendar: Optional[HolidayCalendar] = None) -> bool:
    """
    Check if a date is a business day.

    Business day = Not weekend AND not holiday
    """
    if is_weekend(check_date):
        return False
    calendar = calendar or get_holiday_calendar()
    return not calendar.is_holiday(check_date)


def required_work_days(required_hours: int, hours_per_day: Optional[int] = None) -> int:
    """Number of work days needed to cover ``required_hours``."""
    if required_hours <= 0:
        raise ConfigurationError(
            f"Required hours must be positive, got {required_hours}",
            config_key="required_hours"
        )
    hours_per_day = hours_per_day or settings.hours_per_work_day
    return math.ceil(required_hours / hours_per_day)


def compute_completion_date(
    start_date: date,
    required_hours: int,
    calendar: Optional[HolidayCalendar] = None,
    hours_per_day: Optional[int] = None
) -> date:
    """
    Project the completion date of a practica.

    Example:
        start_date = Monday April 14
        required_hours = 40
        result = Friday April 18 (5 business days, start inclusive)

    Args:
        start_date: First day of the practica
        required_hours: Hours the program requires for the internship kind
        calendar: Holiday source (defaults to the shared calendar)
        hours_per_day: Override for the configured work-day length

    Returns:
        The date on which the last required business day falls

    Raises:
        ConfigurationError: required_hours <= 0
        DeadlineComputationError: the iteration bound was exhausted
    """
    required_days = required_work_days(required_hours, hours_per_day)
    calendar = calendar or get_holiday_calendar()

    max_iterations = required_days + SAFETY_MARGIN_DAYS
    current = start_date
    days_counted = 0

    for _ in range(max_iterations):
        if is_business_day(current, calendar):
            days_counted += 1
            if days_counted == required_days:
                return current
        current += timedelta(days=1)

    raise DeadlineComputationError(
        "Could not compute completion date within the iteration bound",
        start_date=start_date.isoformat(),
        required_days=required_days,
        iterations=max_iterations
    )


def required_hours_for(program: Program, kind: InternshipKind) -> int:
    """Hours the program requires for an internship kind."""
    hours = program.laboral_hours if kind == InternshipKind.LABORAL else program.profesional_hours
    if hours is None:
        raise ConfigurationError(
            f"Program '{program.name}' has no required hours for {kind.value} internships",
            config_key=f"{kind.value.lower()}_hours"
        )
    if hours <= 0:
        raise ConfigurationError(
            f"Program '{program.name}' has non-positive hours for {kind.value} internships",
            config_key=f"{kind.value.lower()}_hours"
        )
    return hours


def acta1_deadline(start_date: date, grace_days: Optional[int] = None) -> date:
    """Last day on which the student may complete Acta 1 (calendar days)."""
    if grace_days is None:
        grace_days = settings.acta1_grace_days
    return start_date + timedelta(days=grace_days)


def get_business_days_between(
    start_date: date,
    end_date: date,
    calendar: Optional[HolidayCalendar] = None
) -> int:
    """
    Count business days between two dates (exclusive of end).

    Returns:
        Number of business days
    """
    if start_date >= end_date:
        return 0

    calendar = calendar or get_holiday_calendar()
    count = 0
    current = start_date

    while current < end_date:
        if is_business_day(current, calendar):
            count += 1
        current += timedelta(days=1)

    return count
