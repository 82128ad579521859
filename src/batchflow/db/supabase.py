"""Shared Supabase client for batch persistence and directory lookups."""

import logging
from functools import lru_cache

from supabase import Client, create_client

from ..config import settings


@lru_cache()
def get_supabase_client() -> Client | None:
    """Return the process-wide Supabase client, or None when credentials are missing.

    Creating the client does not open a connection; query errors surface on use.
    """
    if not settings.supabase_configured:
        logging.warning("Supabase URL/key not set - batch persistence falls back to files")
        return None
    return create_client(settings.supabase_url, settings.supabase_key)
