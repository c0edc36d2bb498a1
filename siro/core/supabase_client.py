import logging
from functools import lru_cache
from typing import Optional

from supabase import create_client, Client

from siro.core.config import Settings


logger = logging.getLogger(__name__)


@lru_cache(maxsize=4)
def _client(url: str, key: str) -> Client:
    logger.info(f"supabase_client_created url={url}")
    return create_client(url, key)


def get_supabase(settings: Optional[Settings] = None) -> Client:
    """Shared Supabase client for the configured project."""
    settings = settings or Settings.from_env()

    if not settings.supabase_url or not settings.supabase_key:
        raise RuntimeError(
            "PUBLIC_SUPABASE_URL and SECRET_API_KEY must be set to use Supabase."
        )

    return _client(settings.supabase_url, settings.supabase_key)
