"""Supabase client connection."""

from supabase import AsyncClient, create_async_client

from va_advisor.config import get_settings

# Singleton instance
_async_client: AsyncClient | None = None


async def get_async_supabase_client_async() -> AsyncClient:
    """Get async Supabase client in async context."""
    global _async_client
    if _async_client is None:
        settings = get_settings()
        _async_client = await create_async_client(
            settings.supabase_url,
            settings.supabase_service_key,
        )
    return _async_client


def reset_clients() -> None:
    """Reset clients for testing."""
    global _async_client
    _async_client = None
