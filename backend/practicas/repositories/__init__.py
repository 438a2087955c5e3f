# Repositories - row <-> model mapping over Supabase tables
from .practica_repository import PracticaRepository
from .staff_repository import StaffRepository

__all__ = [
    "PracticaRepository",
    "StaffRepository",
]
