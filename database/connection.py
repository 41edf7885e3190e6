import functools
import logging
import time
from typing import Callable, TypeVar

import httpx
from supabase import Client

from app.core.config import get_settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

PRO_STATUS_TABLE = "user_pro_status"

# Transport failures where the statement may not have reached PostgREST.
# Every repository write is idempotent, so replaying one is harmless.
RETRYABLE_ERRORS = (httpx.RemoteProtocolError, httpx.ConnectError, httpx.TimeoutException)


def init_db():
    """Verify the Supabase connection and report which schema is live.

    Schema is managed via Supabase migrations (see database/schema.py).
    A database still on the basic schema keeps working: reads fall back to
    the is_pro column alone.
    """
    settings = get_settings()
    if not settings.supabase_url or not settings.supabase_secret_key:
        logger.warning("Supabase credentials not configured. Database features disabled.")
        return

    from .supabase_client import get_supabase_client
    client = get_supabase_client()

    try:
        client.table(PRO_STATUS_TABLE).select("user_id, is_pro").limit(1).execute()
    except Exception as e:
        logger.warning(f"Supabase connection check failed: {e}")
        logger.warning(f"Make sure the {PRO_STATUS_TABLE} migration has run and credentials are correct.")
        return

    try:
        client.table(PRO_STATUS_TABLE).select("pro_expires_at, override_pro, stripe_customer_id").limit(1).execute()
        logger.info("Supabase connection verified")
    except Exception as e:
        logger.warning(f"{PRO_STATUS_TABLE} is missing enhanced columns, running on basic schema: {e}")


def get_db() -> Client:
    """Get database client - Supabase compatible."""
    from .supabase_client import get_supabase_client
    return get_supabase_client()


def with_retry(max_retries: int = 2, delay: float = 0.1) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator that retries a repository call on transport errors.

    Drops the thread's client before each retry so a stale pooled connection
    ("Server disconnected") is not reused. The wait doubles per attempt.

    Args:
        max_retries: Maximum number of retry attempts (default 2)
        delay: Initial delay in seconds between retries (default 0.1)
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> T:
            from .supabase_client import reset_supabase_client

            attempt = 0
            while True:
                try:
                    return func(*args, **kwargs)
                except RETRYABLE_ERRORS as e:
                    if attempt >= max_retries:
                        logger.error(f"Connection error in {func.__name__} after {max_retries} retries: {e}")
                        raise
                    attempt += 1
                    logger.warning(
                        f"Connection error in {func.__name__}, retrying ({attempt}/{max_retries}): {e}"
                    )
                    reset_supabase_client()
                    time.sleep(delay * 2 ** (attempt - 1))
        return wrapper
    return decorator
