import logging
import threading

from supabase import create_client, Client, ClientOptions

from app.core.config import get_settings

logger = logging.getLogger(__name__)

# One client per worker thread; the HTTP/2 pool inside is not safe to share
_thread_local = threading.local()


def _service_options() -> ClientOptions:
    # Server-side service-role client: no user session to refresh or persist
    return ClientOptions(
        auto_refresh_token=False,
        persist_session=False,
        postgrest_client_timeout=get_settings().supabase_timeout,
    )


def get_supabase_client() -> Client:
    """Get the calling thread's service-role Supabase client.

    The secret key bypasses row level security, so this client must never
    be handed to code acting on behalf of an end user.
    """
    client = getattr(_thread_local, "client", None)
    if client is not None:
        return client

    settings = get_settings()
    if not settings.supabase_url or not settings.supabase_secret_key:
        raise RuntimeError(
            "Supabase credentials not configured. "
            "Set SUPABASE_URL and SUPABASE_SECRET_KEY environment variables."
        )

    client = create_client(settings.supabase_url, settings.supabase_secret_key, options=_service_options())
    _thread_local.client = client
    logger.debug(f"Created Supabase client for thread {threading.get_ident()}")
    return client


def reset_supabase_client() -> None:
    """Drop this thread's client so the next call reconnects."""
    _thread_local.__dict__.pop("client", None)
