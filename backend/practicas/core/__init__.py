# Core modules - Database, Config, Exceptions
from .database import get_supabase_client
from .config import settings
from .exceptions import (
    PracticasException,
    ValidationError,
    ConfigurationError,
    DatabaseError,
)

__all__ = [
    "get_supabase_client",
    "settings",
    "PracticasException",
    "ValidationError",
    "ConfigurationError",
    "DatabaseError",
]
