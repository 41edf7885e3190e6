import logging
import secrets
from functools import lru_cache
from typing import Optional

import httpx
from jose import jwt, JWTError
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from app.core.config import get_settings

logger = logging.getLogger(__name__)

# Bearer token extractor (auto_error=False allows optional auth)
security = HTTPBearer(auto_error=False)

ALLOWED_ALGORITHMS = ["RS256", "ES256", "EdDSA", "HS256"]


@lru_cache(maxsize=1)
def get_jwks() -> dict:
    """Fetch Supabase JWKS for JWT verification (cached)."""
    jwks_url = f"{get_settings().supabase_url}/auth/v1/.well-known/jwks.json"
    response = httpx.get(jwks_url, timeout=10.0)
    response.raise_for_status()
    return response.json()


def _find_key(kid: str | None) -> dict | None:
    for k in get_jwks().get("keys", []):
        if k.get("kid") == kid:
            return k
    return None


def _invalid_token(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=f"Invalid token: {detail}",
    )


def verify_jwt(token: str) -> dict:
    """Verify a Supabase JWT and return the payload."""
    try:
        header = jwt.get_unverified_header(token)
        alg = header.get("alg")
        kid = header.get("kid")

        if alg not in ALLOWED_ALGORITHMS:
            logger.warning(f"JWT unsupported algorithm: {alg}")
            raise _invalid_token(f"unsupported algorithm {alg}")

        if alg == "HS256" and get_settings().supabase_jwt_secret:
            key = get_settings().supabase_jwt_secret
        else:
            key = _find_key(kid)
            if not key:
                # JWKS might be stale, refresh once
                logger.warning(f"JWT kid={kid} not found in cached JWKS, refreshing...")
                get_jwks.cache_clear()
                key = _find_key(kid)
            if not key:
                logger.error(f"JWT kid={kid} not found even after JWKS refresh")
                raise _invalid_token(f"key not found for kid={kid}")

        return jwt.decode(
            token,
            key,
            algorithms=[alg],
            audience="authenticated",
            options={"verify_aud": True},
        )

    except JWTError as e:
        logger.warning(f"JWT verification failed: {e}")
        raise _invalid_token(str(e))


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> Optional[dict]:
    """Get current authenticated user from JWT (optional auth)."""
    if not credentials:
        return None
    return verify_jwt(credentials.credentials)


def require_auth(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> dict:
    """Require authentication - raises 401 if not authenticated."""
    if not credentials:
        logger.warning("Auth required but no Bearer token provided")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return verify_jwt(credentials.credentials)


def require_user_id(auth_payload: dict = Depends(require_auth)) -> str:
    """Return the authenticated user's id (the JWT ``sub`` claim)."""
    user_id = auth_payload.get("sub")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload: missing sub claim",
        )
    return user_id


def require_superadmin(auth_payload: dict = Depends(require_auth)) -> dict:
    """Require superadmin access - raises 403 if not a superadmin."""
    app_metadata = auth_payload.get("app_metadata", {})
    if not app_metadata.get("is_superadmin"):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Superadmin access required",
        )
    return auth_payload


def require_hooks_secret(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> None:
    """Authenticate server-to-server calls (auth hook, scheduler).

    The caller sends ``Authorization: Bearer <HOOKS_SECRET>``.
    """
    expected = get_settings().hooks_secret
    if not expected:
        logger.error("HOOKS_SECRET is not configured, rejecting hook call")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Hooks are not configured",
        )
    if not credentials or not secrets.compare_digest(credentials.credentials, expected):
        logger.warning("Hook call rejected: bad or missing secret")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid hook secret",
        )
