"""
Supabase client for the persistence store
"""
from typing import Optional

from supabase import create_client, Client

from adaptive_form_engine.settings import Settings, load_settings

_supabase_client: Optional[Client] = None


def get_supabase_client(settings: Optional[Settings] = None) -> Client:
    """Get or create Supabase client singleton"""
    global _supabase_client

    if _supabase_client is None:
        settings = settings or load_settings()
        # Service role key: the store reads and writes every session row
        if not settings.supabase_configured:
            raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set in environment")

        _supabase_client = create_client(settings.supabase_url, settings.supabase_service_key)

    return _supabase_client


def reset_supabase_client() -> None:
    global _supabase_client
    _supabase_client = None
