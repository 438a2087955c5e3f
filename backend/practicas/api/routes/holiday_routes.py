"""
Holiday Calendar API Routes.

Read-only view of the national holiday calendar used in business-day
calculations, plus the completion-date projection built on it.
"""
from datetime import date
from typing import Optional

from fastapi import APIRouter, Path, Query
from pydantic import BaseModel, Field, model_validator

from practicas.core.database import get_supabase_client
from practicas.core.exceptions import ValidationError
from practicas.models.enums import InternshipKind
from practicas.repositories import StaffRepository
from practicas.services.business_days import (
    acta1_deadline,
    compute_completion_date,
    get_business_days_between,
    is_business_day,
    is_weekend,
    required_hours_for,
    required_work_days,
)
from practicas.services.holiday_calendar import get_holiday_calendar


router = APIRouter(prefix="/api/holidays", tags=["Holidays"])


# ==========================================
# PYDANTIC MODELS
# ==========================================

class CompletionDateRequest(BaseModel):
    """Either ``required_hours`` or ``program_id`` + ``kind`` must be given."""
    start_date: date
    required_hours: Optional[int] = Field(None, description="Explicit hours, overrides the program")
    program_id: Optional[str] = None
    kind: Optional[InternshipKind] = None

    @model_validator(mode='after')
    def validate_source(self) -> 'CompletionDateRequest':
        if self.required_hours is None and not (self.program_id and self.kind):
            raise ValueError("Provide required_hours, or program_id and kind")
        return self


# ==========================================
# ENDPOINTS
# ==========================================

@router.get(
    "/check-business-day",
    summary="Check Business Day",
    description="Whether a date is a business day (not a weekend, not a holiday)"
)
async def check_business_day(
    check_date: date = Query(..., description="Date to check")
) -> dict:
    calendar = get_holiday_calendar()
    weekend = is_weekend(check_date)
    holiday = calendar.is_holiday(check_date)

    return {
        "date": check_date.isoformat(),
        "is_business_day": is_business_day(check_date, calendar),
        "is_weekend": weekend,
        "is_holiday": holiday,
    }


@router.get(
    "/business-days-between",
    summary="Count Business Days",
    description="Business days from start (inclusive) to end (exclusive)"
)
async def business_days_between(
    start_date: date = Query(...),
    end_date: date = Query(...)
) -> dict:
    calendar = get_holiday_calendar()
    return {
        "start_date": start_date.isoformat(),
        "end_date": end_date.isoformat(),
        "business_days": get_business_days_between(start_date, end_date, calendar),
        "holidays": [d.isoformat() for d in calendar.holidays_between(start_date, end_date)],
    }


@router.post(
    "/completion-date",
    summary="Project Completion Date",
    description="Completion date of a practica starting on start_date, counting the start day"
)
async def project_completion_date(body: CompletionDateRequest) -> dict:
    hours = body.required_hours
    if hours is None:
        program = StaffRepository(get_supabase_client()).get_program(body.program_id)
        if program is None:
            raise ValidationError("Unknown program", field="program_id", value=body.program_id)
        hours = required_hours_for(program, body.kind)

    calendar = get_holiday_calendar()
    completion = compute_completion_date(body.start_date, hours, calendar)

    return {
        "start_date": body.start_date.isoformat(),
        "required_hours": hours,
        "work_days": required_work_days(hours),
        "completion_date": completion.isoformat(),
        "acta1_deadline": acta1_deadline(body.start_date).isoformat(),
    }


@router.get(
    "/{year}",
    summary="List Holidays",
    description="National holidays for a year. Empty when the provider is unavailable and nothing is cached."
)
async def list_holidays(year: int = Path(..., ge=1900, le=2200)) -> dict:
    holidays = sorted(get_holiday_calendar().holidays_for_year(year))
    return {
        "year": year,
        "holidays": [d.isoformat() for d in holidays],
        "count": len(holidays),
    }
