"""
Custom exceptions for the internship service.
Provides meaningful error types for different failure scenarios.
"""
from typing import Any, Optional


class PracticasException(Exception):
    """Base exception for all service errors."""

    def __init__(
        self,
        message: str,
        details: Optional[dict[str, Any]] = None,
        status_code: int = 500
    ):
        self.message = message
        self.details = details or {}
        self.status_code = status_code
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API response."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(PracticasException):
    """Raised when input validation fails."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None
    ):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)

        super().__init__(message, details, status_code=422)


class ConfigurationError(PracticasException):
    """
    Raised when required configuration is missing or invalid.

    Examples: non-positive required hours, a program without hours for
    the requested internship kind, score weights not summing to 100.
    """

    def __init__(self, message: str, config_key: Optional[str] = None):
        details = {}
        if config_key:
            details["config_key"] = config_key
        super().__init__(message, details, status_code=422)


class DatabaseError(PracticasException):
    """Raised when database operations fail."""

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        operation: Optional[str] = None,
        original_error: Optional[str] = None
    ):
        details = {}
        if table:
            details["table"] = table
        if operation:
            details["operation"] = operation
        if original_error:
            details["original_error"] = original_error

        super().__init__(message, details, status_code=500)


class HolidayProviderError(PracticasException):
    """Raised by the holiday provider on a non-success or malformed response."""

    def __init__(self, message: str, year: int, original_error: Optional[str] = None):
        details: dict[str, Any] = {"year": year}
        if original_error:
            details["original_error"] = original_error
        super().__init__(message, details, status_code=502)


class PracticaNotFoundError(PracticasException):
    """Raised when a referenced internship doesn't exist."""

    def __init__(self, practica_id: str):
        super().__init__(
            f"Practica {practica_id} not found",
            {"practica_id": practica_id},
            status_code=404
        )


# ==========================================
# LIFECYCLE GUARD VIOLATIONS
# ==========================================

class GuardViolationError(PracticasException):
    """Base for every rejected lifecycle transition. State is left untouched."""

    def __init__(
        self,
        message: str,
        current_state: Optional[str] = None,
        action: Optional[str] = None,
        status_code: int = 409
    ):
        details = {}
        if current_state:
            details["current_state"] = current_state
        if action:
            details["action"] = action
        super().__init__(message, details, status_code=status_code)


class IllegalTransitionError(GuardViolationError):
    """Raised when the current state does not allow the requested action."""


class UnauthorizedActorError(IllegalTransitionError):
    """Raised when the actor lacks the role or ownership the transition requires."""

    def __init__(
        self,
        message: str,
        current_state: Optional[str] = None,
        action: Optional[str] = None,
        actor_role: Optional[str] = None
    ):
        super().__init__(message, current_state, action, status_code=403)
        if actor_role:
            self.details["actor_role"] = actor_role


class DeadlineExpiredError(GuardViolationError):
    """Raised when a deadline-guarded transition is attempted too late."""

    def __init__(
        self,
        message: str,
        deadline: Optional[str] = None,
        current_state: Optional[str] = None,
        action: Optional[str] = None
    ):
        super().__init__(message, current_state, action)
        if deadline:
            self.details["deadline"] = deadline


class EarlySubmissionError(GuardViolationError):
    """Raised when the final report is uploaded before the completion date."""

    def __init__(self, message: str, completion_date: Optional[str] = None):
        super().__init__(message, action="upload_report")
        if completion_date:
            self.details["completion_date"] = completion_date


class ConcurrentModificationError(PracticasException):
    """
    Raised when a write loses the version compare-and-swap.

    Another request modified the record after it was read. The caller
    can reload and retry.
    """

    def __init__(self, practica_id: str, expected_version: int):
        details = {
            "practica_id": practica_id,
            "expected_version": expected_version,
            "retryable": True,
        }
        super().__init__(
            "Practica was modified concurrently, reload and retry",
            details,
            status_code=409
        )


class DeadlineComputationError(PracticasException):
    """Raised when the deadline walk exhausts its iteration bound."""

    def __init__(self, message: str, start_date: str, required_days: int, iterations: int):
        details = {
            "start_date": start_date,
            "required_days": required_days,
            "iterations": iterations,
        }
        super().__init__(message, details, status_code=500)
