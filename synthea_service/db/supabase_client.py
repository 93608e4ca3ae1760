"""Supabase clients: service role for jobs/storage, anon for token checks."""

from supabase import create_client, Client
from synthea_service.config import settings

_service_client: Client | None = None
_anon_client: Client | None = None


def get_supabase() -> Client:
    """Service-role client backing the ``jobs`` table and the output bucket."""
    global _service_client
    if _service_client is None:
        if not settings.supabase_url or not settings.supabase_service_role_key:
            raise RuntimeError(
                "SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set when "
                "PERSISTENCE_ENABLED is true or STORAGE_BACKEND is 'supabase'"
            )
        _service_client = create_client(settings.supabase_url, settings.supabase_service_role_key)
    return _service_client


def get_anon_supabase() -> Client:
    """Anon-key client used to resolve bearer tokens to users."""
    global _anon_client
    if _anon_client is None:
        if not settings.supabase_url or not settings.supabase_anon_key:
            raise RuntimeError("SUPABASE_URL and SUPABASE_ANON_KEY must be set when AUTH_REQUIRED is true")
        _anon_client = create_client(settings.supabase_url, settings.supabase_anon_key)
    return _anon_client
