"""Supabase Storage access for processed artifacts (service-role client)."""

from supabase import create_client, Client
from mediatrack.config import settings

_client: Client | None = None


def storage_configured() -> bool:
    return bool(settings.supabase_url and settings.supabase_service_role_key)


def get_supabase() -> Client:
    """Get or create the service-role client. Raises if storage is not configured."""
    global _client
    if _client is None:
        if not storage_configured():
            raise RuntimeError(
                "SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set to upload artifacts"
            )
        _client = create_client(
            settings.supabase_url,
            settings.supabase_service_role_key,
        )
    return _client


def get_bucket(name: str | None = None):
    """Storage bucket handle for ``name`` (defaults to SUPABASE_BUCKET)."""
    return get_supabase().storage.from_(name or settings.supabase_bucket)
