"""
Supabase database client management.

Features:
- Singleton client shared by routes, services and scheduled jobs
- Audit logging for every lifecycle change and outbound email
"""
from datetime import datetime, timezone
from typing import Any, Optional

from supabase import create_client, Client

from .config import settings
from .exceptions import ConfigurationError


class SupabaseClient:
    """
    Singleton wrapper for Supabase client.
    Provides the audit trail on top of raw table access.
    """

    _instance: Optional["SupabaseClient"] = None
    _client: Optional[Client] = None

    def __new__(cls) -> "SupabaseClient":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if self._client is None:
            if not settings.supabase_url:
                raise ConfigurationError(
                    "Supabase URL is not configured",
                    config_key="SUPABASE_URL"
                )
            key = settings.supabase_service_role_key or settings.supabase_anon_key
            if not key:
                raise ConfigurationError(
                    "Supabase key is not configured",
                    config_key="SUPABASE_ANON_KEY"
                )
            self._client = create_client(settings.supabase_url, key)

    @property
    def client(self) -> Client:
        """Get the Supabase client instance."""
        if self._client is None:
            raise RuntimeError("Supabase client not initialized")
        return self._client

    # ==========================================
    # AUDIT LOGGING
    # ==========================================

    def log_audit(
        self,
        entity_type: str,
        entity_id: str,
        action: str,
        old_value: Optional[str] = None,
        new_value: Optional[str] = None,
        change_source: str = "api",
        changed_by: Optional[str] = None,
        reason: Optional[str] = None,
        metadata: Optional[dict] = None
    ) -> dict:
        """
        Log an audit entry.

        Args:
            entity_type: 'practica', 'escalation_notice', 'manual_alert', ...
            entity_id: Identifier of the subject entity
            action: e.g. 'TUTOR_ACCEPTED', 'ESCALATION_NOTICE_SENT'
            old_value: Previous value as string (state before a transition)
            new_value: New value as string (state after a transition)
            change_source: 'api', 'scheduler', 'cron'
            changed_by: User identifier or the configured system user
            reason: Reason for change
            metadata: Additional context as JSON
        """
        audit_data = {
            "entity_type": entity_type,
            "entity_id": entity_id,
            "action": action,
            "old_value": old_value,
            "new_value": new_value,
            "change_source": change_source,
            "changed_by": changed_by or settings.system_user_id,
            "reason": reason,
            "metadata": metadata,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        # Remove None values
        audit_data = {k: v for k, v in audit_data.items() if v is not None}

        response = self.client.table("audit_logs").insert(audit_data).execute()
        return response.data[0] if response.data else {}

    def log_email_delivery(
        self,
        sender_id: str,
        recipient_id: str,
        notification_type: str,
        detail: dict[str, Any],
        entity_type: str,
        entity_id: str
    ) -> dict:
        """
        Record an outbound email attempt, successful or not.

        ``detail`` carries recipient email/name, subject, success flag,
        provider message id and error message.
        """
        return self.log_audit(
            entity_type=entity_type,
            entity_id=entity_id,
            action=notification_type,
            change_source="notification",
            changed_by=sender_id,
            metadata={"recipient_id": recipient_id, **detail},
        )


def get_supabase_client() -> SupabaseClient:
    """Get the singleton Supabase client instance."""
    return SupabaseClient()
