"""
Read access to the organization: sites, programs, staff and people.
Joins are resolved in Python with one query per table.
"""
from typing import Iterable, Optional

from practicas.core.database import SupabaseClient
from practicas.models.enums import ActorRole
from practicas.models.schemas import Person, Program, Site, StaffMember


class StaffRepository:
    def __init__(self, db: SupabaseClient):
        self._db = db

    def _select_in(self, table: str, ids: Iterable[str]) -> list[dict]:
        ids = sorted({i for i in ids if i})
        if not ids:
            return []
        response = self._db.client.table(table).select("*").in_("id", ids).execute()
        return response.data or []

    # ---- programs & sites ----

    def get_program(self, program_id: str) -> Optional[Program]:
        response = self._db.client.table("programs").select("*").eq("id", program_id).execute()
        return Program.model_validate(response.data[0]) if response.data else None

    def get_programs(self, program_ids: Iterable[str]) -> dict[str, Program]:
        return {
            row["id"]: Program.model_validate(row)
            for row in self._select_in("programs", program_ids)
        }

    def get_sites(self, site_ids: Iterable[str]) -> dict[str, Site]:
        return {
            row["id"]: Site.model_validate(row)
            for row in self._select_in("sites", site_ids)
        }

    # ---- staff ----

    def active_staff(self, role: ActorRole) -> list[StaffMember]:
        """Active staff members with ``role``, ordered by name."""
        response = (
            self._db.client.table("staff")
            .select("*")
            .eq("role", role.value)
            .eq("active", True)
            .order("name")
            .execute()
        )
        return [StaffMember.model_validate(row) for row in (response.data or [])]

    def active_staff_for_site(self, site_id: str, role: ActorRole) -> list[StaffMember]:
        return [member for member in self.active_staff(role) if member.site_id == site_id]

    # ---- people ----

    def get_person(self, person_id: Optional[str]) -> Optional[Person]:
        if not person_id:
            return None
        response = self._db.client.table("users").select("*").eq("id", person_id).execute()
        return Person.model_validate(response.data[0]) if response.data else None

    def get_people(self, person_ids: Iterable[Optional[str]]) -> dict[str, Person]:
        return {
            row["id"]: Person.model_validate(row)
            for row in self._select_in("users", person_ids)
        }
