"""
Configuration management using Pydantic Settings.
Loads environment variables from .env file.
"""
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "Practicas Service"
    app_version: str = "0.1.0"
    debug: bool = False

    # Supabase Configuration
    supabase_url: Optional[str] = None
    supabase_anon_key: Optional[str] = None
    supabase_service_role_key: Optional[str] = None  # Preferred by the batch jobs

    # CORS Settings (for Frontend)
    cors_origins: str = "http://localhost:3000"

    # Local calendar used for "today" in every deadline decision
    local_timezone: str = "America/Santiago"

    # Holiday Provider
    holiday_api_url: str = "https://api.boostr.cl/holidays/{year}.json"
    holiday_cache_ttl_hours: int = 6
    holiday_fetch_timeout_seconds: float = 5.0
    holiday_retry_after_minutes: int = 10  # Back-off after a failed fetch

    # Deadline Calculation
    hours_per_work_day: int = 8
    acta1_grace_days: int = 5  # Student must complete Acta 1 within start + N days
    tutor_acceptance_days: int = 5  # Used for reminders only
    max_program_hours: int = 320

    # Overdue Detection
    overdue_grace_days: int = 5
    severity_critical_days: int = 15
    severity_low_days: int = 7

    # Escalation resend policy: ALWAYS or MIN_INTERVAL
    escalation_resend_policy: str = "ALWAYS"
    escalation_resend_interval_hours: int = 24

    # Deadline Reminders
    reminder_previous_days: int = 1
    reminder_end_approaching_days: int = 7
    reminder_report_pending_days: int = 3

    # Event outbox
    outbox_claim_timeout_minutes: int = 15  # PROCESSING rows older than this are retried

    # Final score weights (percent, must sum to 100)
    tutor_report_weight: int = 50
    employer_weight: int = 50

    # Periodic trigger protection (Authorization: Bearer <secret>)
    cron_secret: Optional[str] = None

    # Identity used as sender in the audit trail for automated notices
    system_user_id: str = "system"

    # Email Configuration (SMTP)
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_from_email: str = "noreply@practicas.local"
    smtp_from_name: str = "Gestion de Practicas"
    smtp_use_tls: bool = True

    # SendGrid Configuration (alternative to SMTP)
    sendgrid_api_key: Optional[str] = None
    sendgrid_from_email: str = "noreply@practicas.local"

    max_email_retries: int = 3

    # Scheduler Settings
    enable_scheduler: bool = True
    scheduler_timezone: str = "America/Santiago"

    # Only ONE worker should run the scheduler in multi-worker deployments
    run_scheduler: bool = False

    # Receives alerts when scheduler jobs keep failing
    ops_escalation_email: Optional[str] = None

    # Job Monitoring
    job_failure_alert_threshold: int = 2

    @property
    def cors_origin_list(self) -> list[str]:
        """Parse comma-separated CORS origins into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def email_enabled(self) -> bool:
        """Check if email is configured."""
        return bool(self.smtp_host or self.sendgrid_api_key)


@lru_cache
def get_settings() -> Settings:
    """
    Cached settings instance.
    Call this function to get application settings.
    """
    return Settings()


# Global settings instance
settings = get_settings()
