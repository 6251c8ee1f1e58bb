"""Shared Supabase client for the keyed store, the vector index and usage logging."""

from functools import lru_cache

from supabase import Client, create_client

from app.core.config import get_settings


@lru_cache(maxsize=1)
def get_supabase() -> Client:
    """
    Return the process-wide client, created on first use with the service role key.

    Raises:
        RuntimeError: If the client cannot be created from SUPABASE_URL/SUPABASE_SERVICE_ROLE_KEY
    """
    settings = get_settings()
    try:
        return create_client(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY)
    except Exception as e:
        raise RuntimeError(f"Could not connect to Supabase at {settings.SUPABASE_URL}: {e}") from e
