"""
Persistence for practicas on the Supabase `practicas` table.

The state variant is flattened into columns on write and rebuilt on read.
Writes use a version compare-and-swap: an update only matches the row if
its version is still the one the caller read.
"""
import logging
from datetime import date
from typing import Any, Iterable, Optional

from practicas.core.database import SupabaseClient
from practicas.core.exceptions import ConcurrentModificationError, PracticaNotFoundError
from practicas.models.enums import NON_TERMINAL_STATES, InternshipState
from practicas.models.schemas import (
    Closed,
    Practica,
    RejectedByTutor,
    Voided,
)


logger = logging.getLogger(__name__)

TABLE = "practicas"


class PracticaRepository:
    def __init__(self, db: SupabaseClient):
        self._db = db

    # ==========================================
    # MAPPERS
    # ==========================================

    @staticmethod
    def to_row(practica: Practica) -> dict[str, Any]:
        data = practica.model_dump(mode="json")
        state = practica.state

        row = {
            "id": data["id"],
            "student_id": data["student_id"],
            "tutor_id": data["tutor_id"],
            "program_id": data["program_id"],
            "employer_id": data["employer_id"],
            "kind": data["kind"],
            "start_date": data["start_date"],
            "completion_date": data["completion_date"],
            "state": state.code,
            "rejection_reason": None,
            "rejected_at": None,
            "void_reason": None,
            "voided_by": None,
            "voided_at": None,
            "closing_record": None,
            "acta_fields": data["acta"],
            "student_completed_at": data["student_completed_at"],
            "report_url": data["report_url"],
            "tutor_evaluation": data["tutor_evaluation"],
            "employer_evaluation": data["employer_evaluation"],
            "version": data["version"],
            "created_at": data["created_at"],
            "updated_at": data["updated_at"],
        }

        if isinstance(state, RejectedByTutor):
            row["rejection_reason"] = state.reason
            row["rejected_at"] = data["state"]["rejected_at"]
        elif isinstance(state, Voided):
            row["void_reason"] = state.reason
            row["voided_by"] = state.voided_by
            row["voided_at"] = data["state"]["voided_at"]
        elif isinstance(state, Closed):
            row["closing_record"] = data["state"]["closing"]

        return row

    @staticmethod
    def from_row(row: dict[str, Any]) -> Practica:
        code = row["state"]
        state: dict[str, Any] = {"code": code}
        if code == InternshipState.REJECTED_BY_TUTOR.value:
            state.update(reason=row.get("rejection_reason"), rejected_at=row.get("rejected_at"))
        elif code == InternshipState.VOIDED.value:
            state.update(
                reason=row.get("void_reason"),
                voided_by=row.get("voided_by"),
                voided_at=row.get("voided_at"),
            )
        elif code == InternshipState.CLOSED.value:
            state["closing"] = row.get("closing_record")

        return Practica.model_validate({
            "id": row["id"],
            "student_id": row["student_id"],
            "tutor_id": row.get("tutor_id"),
            "program_id": row["program_id"],
            "employer_id": row.get("employer_id"),
            "kind": row["kind"],
            "start_date": row["start_date"],
            "completion_date": row["completion_date"],
            "state": state,
            "acta": row.get("acta_fields"),
            "student_completed_at": row.get("student_completed_at"),
            "report_url": row.get("report_url"),
            "tutor_evaluation": row.get("tutor_evaluation"),
            "employer_evaluation": row.get("employer_evaluation"),
            "version": row.get("version") or 1,
            "created_at": row.get("created_at"),
            "updated_at": row.get("updated_at"),
        })

    # ==========================================
    # QUERIES
    # ==========================================

    def get(self, practica_id: str) -> Practica:
        response = self._db.client.table(TABLE).select("*").eq("id", practica_id).execute()
        if not response.data:
            raise PracticaNotFoundError(practica_id)
        return self.from_row(response.data[0])

    def find(
        self,
        states: Iterable[InternshipState],
        completion_before: Optional[date] = None,
        completion_from: Optional[date] = None,
        completion_to: Optional[date] = None,
        program_ids: Optional[list[str]] = None
    ) -> list[Practica]:
        """Practicas in ``states``; completion bounds are before (<), from (>=), to (<=)."""
        query = self._db.client.table(TABLE).select("*").in_(
            "state", [s.value for s in states]
        )
        if completion_before:
            query = query.lt("completion_date", completion_before.isoformat())
        if completion_from:
            query = query.gte("completion_date", completion_from.isoformat())
        if completion_to:
            query = query.lte("completion_date", completion_to.isoformat())
        if program_ids is not None:
            query = query.in_("program_id", program_ids)

        response = query.order("completion_date").execute()
        return [self.from_row(row) for row in (response.data or [])]

    def list_overdue_candidates(self, cutoff: date) -> list[Practica]:
        """Non-terminal practicas whose completion date is strictly before ``cutoff``."""
        return self.find(NON_TERMINAL_STATES, completion_before=cutoff)

    # ==========================================
    # WRITES
    # ==========================================

    def insert(self, practica: Practica) -> Practica:
        response = self._db.client.table(TABLE).insert(self.to_row(practica)).execute()
        return self.from_row(response.data[0]) if response.data else practica

    def save(self, practica: Practica, expected_version: int) -> Practica:
        """
        Persist ``practica`` only if the stored version is ``expected_version``.

        Raises:
            ConcurrentModificationError: another write landed first
            PracticaNotFoundError: the row no longer exists
        """
        row = self.to_row(practica)
        row["version"] = expected_version + 1
        row.pop("id")
        row.pop("created_at", None)

        response = (
            self._db.client.table(TABLE)
            .update(row)
            .eq("id", practica.id)
            .eq("version", expected_version)
            .execute()
        )

        if not response.data:
            exists = self._db.client.table(TABLE).select("id").eq("id", practica.id).execute()
            if not exists.data:
                raise PracticaNotFoundError(practica.id)
            logger.warning(
                f"Version conflict on practica {practica.id} (expected v{expected_version})"
            )
            raise ConcurrentModificationError(practica.id, expected_version)

        return self.from_row(response.data[0])
