"""
Pytest fixtures and configuration for the practicas tests.

Provides:
- Mock Supabase client for isolated testing
- Offline holiday calendar (no provider calls during tests)
- Recording notification sender
- Test client with patched storage
- Time freezing utilities
- Sample organization and practica fixtures
"""
import pytest
from datetime import date, datetime, timedelta, timezone
from typing import Generator, Dict, Any, List, Optional
from unittest.mock import patch
from uuid import uuid4

from fastapi.testclient import TestClient
from freezegun import freeze_time

from practicas.main import app
from practicas.services.holiday_calendar import HolidayCalendar, InMemoryHolidayCache
from practicas.services.notifications import NotificationResult


# ==========================================
# MOCK SUPABASE RESPONSE & TABLE
# ==========================================

class MockSupabaseResponse:
    """Mock response from Supabase operations."""

    def __init__(self, data: list = None, error: dict = None, count: int = None):
        self.data = data or []
        self.error = error
        self.count = count if count is not None else len(self.data)

    def execute(self):
        return self


class MockSupabaseTable:
    """Mock Supabase table operations."""

    def __init__(self, table_name: str, mock_data: Dict[str, list]):
        self.table_name = table_name
        self.mock_data = mock_data
        self._filters = []
        self._select_fields = "*"
        self._order_by = None
        self._order_desc = False
        self._limit = None

    def select(self, fields: str = "*", count: str = None):
        self._select_fields = fields
        return self

    def eq(self, column: str, value: Any):
        self._filters.append(("eq", column, value))
        return self

    def neq(self, column: str, value: Any):
        self._filters.append(("neq", column, value))
        return self

    def in_(self, column: str, values: list):
        self._filters.append(("in", column, values))
        return self

    def lt(self, column: str, value: Any):
        self._filters.append(("lt", column, value))
        return self

    def gt(self, column: str, value: Any):
        self._filters.append(("gt", column, value))
        return self

    def gte(self, column: str, value: Any):
        self._filters.append(("gte", column, value))
        return self

    def lte(self, column: str, value: Any):
        self._filters.append(("lte", column, value))
        return self

    def order(self, column: str, desc: bool = False):
        self._order_by = column
        self._order_desc = desc
        return self

    def limit(self, count: int):
        self._limit = count
        return self

    def insert(self, data: Any):
        """Mock insert operation."""
        rows = data if isinstance(data, list) else [data]
        for item in rows:
            if "id" not in item:
                item["id"] = str(uuid4())
            if not item.get("created_at"):
                item["created_at"] = datetime.now(timezone.utc).isoformat()
        self.mock_data.setdefault(self.table_name, []).extend(rows)
        return MockSupabaseResponse(rows)

    def upsert(self, data: Any, on_conflict: str = None):
        """Mock upsert operation keyed on the ``on_conflict`` columns."""
        rows = data if isinstance(data, list) else [data]
        keys = [k.strip() for k in (on_conflict or "id").split(",")]
        table = self.mock_data.setdefault(self.table_name, [])

        results = []
        for item in rows:
            existing = next(
                (r for r in table if all(r.get(k) == item.get(k) for k in keys)),
                None
            )
            if existing:
                existing.update(item)
                results.append(existing)
            else:
                item.setdefault("id", str(uuid4()))
                table.append(item)
                results.append(item)
        return MockSupabaseResponse(results)

    def update(self, data: dict):
        """Mock update operation - returns self for chaining."""
        self._update_data = data
        return self

    def delete(self):
        """Mock delete operation - returns self for chaining."""
        self._delete = True
        return self

    def _apply_filters(self, results: list) -> list:
        """Apply all filters to results."""
        for op, column, value in self._filters:
            if op == "eq":
                results = [r for r in results if r.get(column) == value]
            elif op == "neq":
                results = [r for r in results if r.get(column) != value]
            elif op == "in":
                results = [r for r in results if r.get(column) in value]
            elif op == "lt":
                results = [r for r in results if r.get(column) is not None and r[column] < value]
            elif op == "gt":
                results = [r for r in results if r.get(column) is not None and r[column] > value]
            elif op == "gte":
                results = [r for r in results if r.get(column) is not None and r[column] >= value]
            elif op == "lte":
                results = [r for r in results if r.get(column) is not None and r[column] <= value]
        return results

    def execute(self):
        """Execute the query and return results."""
        table_data = list(self.mock_data.get(self.table_name, []))
        results = self._apply_filters(table_data)

        if hasattr(self, "_update_data"):
            for result in results:
                result.update(self._update_data)
            return MockSupabaseResponse(results, count=len(results))

        if hasattr(self, "_delete"):
            for result in results:
                self.mock_data[self.table_name].remove(result)
            return MockSupabaseResponse(results, count=len(results))

        if self._order_by:
            results.sort(
                key=lambda x: x.get(self._order_by) or "",
                reverse=self._order_desc
            )

        total_count = len(results)
        if self._limit:
            results = results[:self._limit]

        return MockSupabaseResponse(results, count=total_count)


class MockSupabaseClientInner:
    """Mock inner Supabase client (the actual client with table() method)."""

    def __init__(self, mock_data: Dict[str, list]):
        self.mock_data = mock_data

    def table(self, table_name: str) -> MockSupabaseTable:
        return MockSupabaseTable(table_name, self.mock_data)


class MockSupabaseClient:
    """
    Mock Supabase client wrapper (matches SupabaseClient class structure).
    This has a .client property that provides the actual table operations.
    """

    def __init__(self):
        self.mock_data: Dict[str, list] = {
            "sites": [],
            "programs": [],
            "staff": [],
            "users": [],
            "practicas": [],
            "practica_events": [],
            "event_deliveries": [],
            "escalation_notices": [],
            "reminder_log": [],
            "manual_alerts": [],
            "audit_logs": [],
        }
        self.client = MockSupabaseClientInner(self.mock_data)

    def log_audit(self, **kwargs):
        """Mock log audit."""
        log = {
            "id": str(uuid4()),
            "created_at": datetime.now(timezone.utc).isoformat(),
            **kwargs
        }
        self.mock_data.setdefault("audit_logs", []).append(log)
        return log

    def log_email_delivery(
        self,
        sender_id: str,
        recipient_id: str,
        notification_type: str,
        detail: dict,
        entity_type: str,
        entity_id: str
    ):
        """Mock email delivery audit (same shape as the real one)."""
        return self.log_audit(
            entity_type=entity_type,
            entity_id=entity_id,
            action=notification_type,
            change_source="notification",
            changed_by=sender_id,
            metadata={"recipient_id": recipient_id, **detail},
        )


# ==========================================
# HOLIDAYS & NOTIFICATIONS
# ==========================================

class FakeHolidayProvider:
    """In-memory holiday provider counting fetches per year."""

    def __init__(self, holidays: Optional[List[date]] = None, error: Exception = None):
        self.holidays = set(holidays or [])
        self.error = error
        self.calls: List[int] = []

    def fetch(self, year: int) -> frozenset:
        self.calls.append(year)
        if self.error is not None:
            raise self.error
        return frozenset(d for d in self.holidays if d.year == year)


def make_calendar(holidays: Optional[List[date]] = None) -> HolidayCalendar:
    """Holiday calendar backed by a fixed list of dates."""
    return HolidayCalendar(provider=FakeHolidayProvider(holidays), cache=InMemoryHolidayCache())


class RecordingSender:
    """Notification sender that records calls and fails for chosen addresses."""

    def __init__(self, failing_emails: Optional[set] = None):
        self.failing_emails = failing_emails or set()
        self.summaries: list = []
        self.notices: List[Dict[str, Any]] = []

    async def send_overdue_summary(self, summary) -> NotificationResult:
        self.summaries.append(summary)
        if summary.recipient.email in self.failing_emails:
            return NotificationResult(success=False, error="SMTP 550 mailbox unavailable")
        return NotificationResult(success=True, message_id=f"msg-{len(self.summaries)}")

    async def send_notice(self, to_email: str, to_name: str, subject: str, lines: list) -> NotificationResult:
        self.notices.append({"to_email": to_email, "to_name": to_name, "subject": subject, "lines": lines})
        if to_email in self.failing_emails:
            return NotificationResult(success=False, error="SMTP 550 mailbox unavailable")
        return NotificationResult(success=True, message_id=f"notice-{len(self.notices)}")


@pytest.fixture(autouse=True)
def offline_holiday_calendar():
    """Every code path using the shared calendar sees a holiday-free calendar."""
    calendar = make_calendar()
    with patch("practicas.services.business_days.get_holiday_calendar", return_value=calendar):
        with patch("practicas.api.routes.holiday_routes.get_holiday_calendar", return_value=calendar):
            with patch("practicas.services.scheduler.get_holiday_calendar", return_value=calendar):
                yield calendar


@pytest.fixture
def calendar_factory():
    """Build a holiday calendar from a list of dates."""
    return make_calendar


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
def sender_factory():
    """Build a recording sender failing for the given addresses."""
    return RecordingSender


# ==========================================
# FIXTURES
# ==========================================

@pytest.fixture(scope="function")
def fresh_mock_client():
    """Function-scoped fresh mock client (clean for each test)."""
    return MockSupabaseClient()


@pytest.fixture(scope="function")
def mock_data(fresh_mock_client) -> Dict[str, list]:
    """Access to the mock data store for direct manipulation."""
    return fresh_mock_client.mock_data


@pytest.fixture(scope="function")
def client(fresh_mock_client) -> Generator[TestClient, None, None]:
    """
    Create test client with mocked Supabase.

    Each test gets a fresh mock client with clean data.
    """
    with patch("practicas.api.routes.practica_routes.get_supabase_client", return_value=fresh_mock_client):
        with patch("practicas.api.routes.cron_routes.get_supabase_client", return_value=fresh_mock_client):
            with patch("practicas.api.routes.alert_routes.get_supabase_client", return_value=fresh_mock_client):
                with patch("practicas.api.routes.holiday_routes.get_supabase_client", return_value=fresh_mock_client):
                    with TestClient(app) as test_client:
                        yield test_client

    app.dependency_overrides.clear()


def actor_headers(user_id: str, role: str) -> Dict[str, str]:
    return {"X-User-Id": user_id, "X-User-Role": role}


@pytest.fixture
def headers_for():
    """Build identity headers for any user id and role."""
    return actor_headers


@pytest.fixture
def coordinator_headers() -> Dict[str, str]:
    return actor_headers("coord-1", "COORDINATOR")


@pytest.fixture
def student_headers() -> Dict[str, str]:
    return actor_headers("student-1", "STUDENT")


@pytest.fixture
def tutor_headers() -> Dict[str, str]:
    return actor_headers("tutor-1", "TUTOR")


@pytest.fixture
def employer_headers() -> Dict[str, str]:
    return actor_headers("employer-1", "EMPLOYER")


# ==========================================
# TIME FIXTURES
# ==========================================

@pytest.fixture
def frozen_monday():
    """Freeze time at Monday noon UTC (April 14, 2025; morning in Santiago)."""
    monday = datetime(2025, 4, 14, 12, 0, 0)
    with freeze_time(monday):
        yield monday


@pytest.fixture
def frozen_weekend():
    """Freeze time at Saturday noon UTC (April 19, 2025)."""
    saturday = datetime(2025, 4, 19, 12, 0, 0)
    with freeze_time(saturday):
        yield saturday


# ==========================================
# SAMPLE DATA FIXTURES
# ==========================================

@pytest.fixture
def organization(mock_data) -> Dict[str, Any]:
    """
    Two sites, one program each, staff on both sites and the people of a practica.

    Site "site-1" has an active coordinator, an inactive coordinator and a
    program director. Site "site-2" only has a coordinator.
    """
    mock_data["sites"].extend([
        {"id": "site-1", "name": "Campus Santiago"},
        {"id": "site-2", "name": "Campus Concepcion"},
    ])
    mock_data["programs"].extend([
        {"id": "prog-1", "name": "Ingenieria Civil Informatica", "site_id": "site-1",
         "laboral_hours": 40, "profesional_hours": 320},
        {"id": "prog-2", "name": "Ingenieria Comercial", "site_id": "site-2",
         "laboral_hours": 160, "profesional_hours": None},
    ])
    mock_data["staff"].extend([
        {"id": "coord-1", "name": "Carla Rojas", "email": "carla@uni.cl",
         "role": "COORDINATOR", "site_id": "site-1", "active": True},
        {"id": "coord-old", "name": "Osvaldo Pinto", "email": "osvaldo@uni.cl",
         "role": "COORDINATOR", "site_id": "site-1", "active": False},
        {"id": "dir-1", "name": "Diego Soto", "email": "diego@uni.cl",
         "role": "PROGRAM_DIRECTOR", "site_id": "site-1", "active": True},
        {"id": "coord-2", "name": "Beatriz Fuentes", "email": "beatriz@uni.cl",
         "role": "COORDINATOR", "site_id": "site-2", "active": True},
    ])
    mock_data["users"].extend([
        {"id": "student-1", "name": "Ana Perez", "email": "ana@alumnos.cl"},
        {"id": "student-2", "name": "Bruno Diaz", "email": "bruno@alumnos.cl"},
        {"id": "tutor-1", "name": "Tomas Vera", "email": "tomas@uni.cl"},
        {"id": "employer-1", "name": "Elena Mora", "email": "elena@empresa.cl"},
    ])
    return {
        "site_id": "site-1",
        "program_id": "prog-1",
        "other_program_id": "prog-2",
        "student_id": "student-1",
        "tutor_id": "tutor-1",
        "employer_id": "employer-1",
    }


@pytest.fixture
def create_practica_row(mock_data):
    """
    Factory fixture inserting a practica row in the storage format.

    State specific columns (rejection_reason, closing_record, evaluations...)
    are passed as keyword overrides.
    """
    def _create(
        state: str = "IN_PROGRESS",
        start_date: date = date(2025, 3, 3),
        completion_date: date = date(2025, 4, 30),
        practica_id: Optional[str] = None,
        **overrides
    ) -> Dict[str, Any]:
        now = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc).isoformat()
        row = {
            "id": practica_id or str(uuid4()),
            "student_id": "student-1",
            "tutor_id": "tutor-1",
            "program_id": "prog-1",
            "employer_id": "employer-1",
            "kind": "LABORAL",
            "start_date": start_date.isoformat(),
            "completion_date": completion_date.isoformat(),
            "state": state,
            "rejection_reason": None,
            "rejected_at": None,
            "void_reason": None,
            "voided_by": None,
            "voided_at": None,
            "closing_record": None,
            "acta_fields": None,
            "student_completed_at": None,
            "report_url": None,
            "tutor_evaluation": None,
            "employer_evaluation": None,
            "version": 1,
            "created_at": now,
            "updated_at": now,
        }
        row.update(overrides)
        mock_data["practicas"].append(row)
        return row

    return _create


@pytest.fixture
def evaluation_row():
    """Factory for a stored evaluation JSON value."""
    def _create(score: float, evaluator_id: str) -> Dict[str, Any]:
        return {
            "score": score,
            "evaluator_id": evaluator_id,
            "comments": None,
            "recorded_at": datetime(2025, 4, 10, 12, 0, tzinfo=timezone.utc).isoformat(),
        }
    return _create


@pytest.fixture
def acta_payload() -> Dict[str, Any]:
    """Valid Acta 1 fields as the student submits them."""
    return {
        "address": "Av. Providencia 1234, Santiago",
        "department": "Desarrollo",
        "supervisor_name": "Marcela Ibarra",
        "supervisor_title": "Jefa de Proyectos",
        "supervisor_email": "marcela@empresa.cl",
        "supervisor_phone": "+56912345678",
        "distance_work": False,
        "main_tasks": "Desarrollo de APIs internas y pruebas automatizadas",
    }


# ==========================================
# CLEANUP
# ==========================================

@pytest.fixture(autouse=True)
def cleanup_overrides():
    """Reset dependency overrides after each test."""
    yield
    app.dependency_overrides.clear()


# ==========================================
# MARKERS
# ==========================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (isolated, fast)")
    config.addinivalue_line("markers", "integration: Integration tests (mocked storage, full stack)")
    config.addinivalue_line("markers", "e2e: End-to-end tests (full workflow)")
    config.addinivalue_line("markers", "edge: Edge case tests")
    config.addinivalue_line("markers", "security: Security-related tests")
