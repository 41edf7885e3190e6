import logging
import os
from functools import lru_cache

from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


def _load_doppler_secrets():
    """Load secrets from Doppler API into environment variables.

    Must run BEFORE Settings is instantiated so pydantic can read the env vars.
    """
    token = os.getenv("DOPPLER_TOKEN")
    if not token:
        return

    try:
        import requests
        response = requests.get(
            "https://api.doppler.com/v3/configs/config/secrets/download",
            params={"format": "json"},
            auth=(token, ""),
            timeout=30,
        )
        response.raise_for_status()
        secrets = response.json()

        # Don't override existing env vars
        for key, value in secrets.items():
            if key not in os.environ:
                os.environ[key] = value

        logger.info(f"Loaded {len(secrets)} secrets from Doppler")
    except Exception as e:
        logger.warning(f"Failed to load Doppler secrets: {e}")


_load_doppler_secrets()


class Settings(BaseSettings):
    # Supabase
    supabase_url: str = ""
    supabase_publishable_key: str = ""
    supabase_secret_key: str = ""
    supabase_jwt_secret: str = ""  # JWT secret for HS256 token verification
    supabase_timeout: int = 10  # seconds, per PostgREST request

    # Stripe
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    stripe_webhook_tolerance: int = 300  # seconds
    stripe_price_pro_monthly: str = ""

    # Pro entitlements
    pro_trial_days: int = 7
    expiry_sweep_batch_size: int = 500

    # Shared secret for the auth hook and the scheduler
    hooks_secret: str = ""

    # Server
    base_url: str = "http://localhost:8000"
    web_app_url: str = "http://localhost:3000"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    return Settings()


