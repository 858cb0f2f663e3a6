"""Database access layer."""

from src.manito.services.database.connection import get_supabase_client, reset_supabase_client

__all__ = ["get_supabase_client", "reset_supabase_client"]
