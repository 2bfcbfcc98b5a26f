import logging

from supabase import create_client, Client

from src.config import config

logger = logging.getLogger(__name__)

_client: Client | None = None


def get_supabase() -> Client:
    """Return the shared Supabase client, creating it on first use."""
    global _client
    if _client is None:
        if not config.SUPABASE_URL:
            raise ValueError("❌ SUPABASE_URL is missing, check your .env path")
        if not config.SUPABASE_KEY:
            raise ValueError("❌ SUPABASE_KEY is missing, check your .env path")

        _client = create_client(config.SUPABASE_URL, config.SUPABASE_KEY)
        logger.info("✅ Supabase client created for %s", config.SUPABASE_URL)
    return _client
