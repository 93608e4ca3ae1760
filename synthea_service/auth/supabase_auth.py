"""Job owner resolution from Supabase bearer tokens."""

from typing import Optional

from fastapi import Header, HTTPException

from synthea_service.config import settings
from synthea_service.db.supabase_client import get_anon_supabase


def _user_id(user) -> Optional[str]:
    user_id = getattr(user, "id", None)
    if user_id is None and isinstance(user, dict):
        user_id = user.get("id")
    return str(user_id) if user_id else None


async def current_owner(authorization: str = Header(None)) -> Optional[str]:
    """Owner id for job routes.

    Returns None when AUTH_REQUIRED is off, so every job is visible to every
    caller. Otherwise the bearer token must resolve to a Supabase user.
    """
    if not settings.auth_required:
        return None

    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing or invalid token")

    token = authorization[len("Bearer "):]
    try:
        user_response = get_anon_supabase().auth.get_user(token)
    except Exception:
        raise HTTPException(status_code=401, detail="Invalid token")

    owner_id = _user_id(user_response.user if user_response else None)
    if owner_id is None:
        raise HTTPException(status_code=401, detail="Invalid token")
    return owner_id
