"""Supabase client management."""

import asyncio

from supabase import AsyncClient, acreate_client

from src.manito.config import Settings, get_settings

_client: AsyncClient | None = None
_client_lock = asyncio.Lock()


async def get_supabase_client(settings: Settings | None = None) -> AsyncClient:
    """
    Get the shared async Supabase client (anon key, RLS enforced).

    The client carries the signed-in user's session, so every profile RPC
    runs as that user.

    Example:
        >>> client = await get_supabase_client()
        >>> await client.auth.get_session()
    """
    global _client
    if _client is not None:
        return _client
    async with _client_lock:
        if _client is None:
            settings = settings or get_settings()
            _client = await acreate_client(settings.supabase_url, settings.supabase_anon_key)
    return _client


def reset_supabase_client() -> None:
    """Drop the cached client (tests, sign-out of a process-wide client)."""
    global _client
    _client = None
