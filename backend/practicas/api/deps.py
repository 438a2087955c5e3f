"""
Shared FastAPI dependencies.

Identity is resolved upstream (API gateway / frontend session); this service
trusts the X-User-Id and X-User-Role headers it forwards.
"""
import hmac
from typing import Optional

from fastapi import Header, HTTPException

from practicas.core.config import settings
from practicas.models.enums import ActorRole
from practicas.models.schemas import Actor


async def get_current_actor(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id", description="Authenticated user id"),
    x_user_role: Optional[str] = Header(None, alias="X-User-Role", description="Role of the authenticated user"),
) -> Actor:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    if not x_user_role:
        raise HTTPException(status_code=401, detail="Missing X-User-Role header")

    try:
        role = ActorRole(x_user_role.strip().upper())
    except ValueError:
        raise HTTPException(
            status_code=422,
            detail=f"Invalid role '{x_user_role}'. Must be one of: {[r.value for r in ActorRole]}"
        )

    return Actor(user_id=x_user_id.strip(), role=role)


async def verify_cron_secret(
    authorization: Optional[str] = Header(None, description="Bearer <CRON_SECRET>"),
) -> None:
    """Reject cron calls that do not carry the configured shared secret."""
    expected = settings.cron_secret
    if not expected:
        return

    provided = ""
    if authorization and authorization.startswith("Bearer "):
        provided = authorization[len("Bearer "):]

    if not hmac.compare_digest(provided, expected):
        raise HTTPException(
            status_code=401,
            detail={"success": False, "error": "Unauthorized"}
        )
