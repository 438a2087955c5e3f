"""
Overdue Detector for practicas.

Flags every practica that is still open (not CLOSED / VOIDED) and whose
completion date is more than the grace window in the past.

Severity (calendar days past completion):
    >= 15     CRITICAL
    7 .. 14   LOW
    otherwise NORMAL
"""
import logging
import math
from collections import Counter
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Iterable, Optional

from practicas.core.config import settings
from practicas.models.enums import InternshipState, Severity
from practicas.models.schemas import Practica
from practicas.repositories import PracticaRepository, StaffRepository
from practicas.services.business_days import local_today


logger = logging.getLogger(__name__)


@dataclass
class OverdueFlag:
    """A practica past its completion date plus grace."""
    practica: Practica
    days_overdue: int
    severity: Severity


@dataclass
class OverdueRecord:
    """An overdue practica enriched with the names used in notices."""
    practica_id: str
    student_id: str
    student_name: Optional[str]
    tutor_id: Optional[str]
    program_id: str
    program_name: str
    site_id: Optional[str]
    site_name: Optional[str]
    state: InternshipState
    completion_date: date
    days_overdue: int
    severity: Severity

    def to_dict(self) -> dict[str, Any]:
        return {
            "practica_id": self.practica_id,
            "student_id": self.student_id,
            "student_name": self.student_name,
            "tutor_id": self.tutor_id,
            "program_id": self.program_id,
            "program_name": self.program_name,
            "site_id": self.site_id,
            "site_name": self.site_name,
            "state": self.state.value,
            "completion_date": self.completion_date.isoformat(),
            "days_overdue": self.days_overdue,
            "severity": self.severity.value,
        }


def classify_severity(
    days_overdue: int,
    critical_days: Optional[int] = None,
    low_days: Optional[int] = None
) -> Severity:
    """Map days overdue to exactly one severity tier."""
    critical_days = critical_days if critical_days is not None else settings.severity_critical_days
    low_days = low_days if low_days is not None else settings.severity_low_days

    if days_overdue >= critical_days:
        return Severity.CRITICAL
    if days_overdue >= low_days:
        return Severity.LOW
    return Severity.NORMAL


def detect_overdue(
    practicas: Iterable[Practica],
    today: date,
    grace_days: Optional[int] = None
) -> list[OverdueFlag]:
    """
    Pure detection over already-loaded practicas.

    A practica is flagged when it is not terminal and
    ``completion_date < today - grace_days``.
    """
    grace_days = grace_days if grace_days is not None else settings.overdue_grace_days
    cutoff = today - timedelta(days=grace_days)

    flags = []
    for practica in practicas:
        if practica.state_code.is_terminal:
            continue
        if practica.completion_date >= cutoff:
            continue
        days_overdue = (today - practica.completion_date).days
        flags.append(OverdueFlag(practica, days_overdue, classify_severity(days_overdue)))

    flags.sort(key=lambda f: (-f.days_overdue, f.practica.id))
    return flags


class OverdueDetector:
    """Runs detection against storage and resolves program / site / student names."""

    def __init__(self, practicas: PracticaRepository, staff: StaffRepository):
        self.practicas = practicas
        self.staff = staff

    def scan(self, today: Optional[date] = None) -> list[OverdueRecord]:
        today = today or local_today()
        grace_days = settings.overdue_grace_days
        cutoff = today - timedelta(days=grace_days)

        candidates = self.practicas.list_overdue_candidates(cutoff)
        flags = detect_overdue(candidates, today, grace_days)
        if not flags:
            return []

        programs = self.staff.get_programs(f.practica.program_id for f in flags)
        sites = self.staff.get_sites(p.site_id for p in programs.values())
        students = self.staff.get_people(f.practica.student_id for f in flags)

        records = []
        for flag in flags:
            practica = flag.practica
            program = programs.get(practica.program_id)
            if program is None:
                logger.warning(f"Practica {practica.id} references unknown program {practica.program_id}")
            site = sites.get(program.site_id) if program else None
            student = students.get(practica.student_id)

            records.append(OverdueRecord(
                practica_id=practica.id,
                student_id=practica.student_id,
                student_name=student.name if student else None,
                tutor_id=practica.tutor_id,
                program_id=practica.program_id,
                program_name=program.name if program else "Unknown program",
                site_id=program.site_id if program else None,
                site_name=site.name if site else None,
                state=practica.state_code,
                completion_date=practica.completion_date,
                days_overdue=flag.days_overdue,
                severity=flag.severity,
            ))

        logger.info(f"Overdue scan flagged {len(records)} practicas (cutoff {cutoff.isoformat()})")
        return records


def overdue_statistics(records: list[OverdueRecord], site_id: Optional[str] = None) -> dict[str, Any]:
    """Dashboard counts over flagged records, optionally for one site."""
    if site_id:
        records = [r for r in records if r.site_id == site_id]

    severities = Counter(r.severity for r in records)
    by_program = Counter(r.program_name for r in records)

    average = 0
    if records:
        average = math.floor(sum(r.days_overdue for r in records) / len(records) + 0.5)

    return {
        "total": len(records),
        "critical": severities[Severity.CRITICAL],
        "low": severities[Severity.LOW],
        "normal": severities[Severity.NORMAL],
        "by_program": dict(by_program),
        "average_days_overdue": average,
    }
