"""Authentication dependencies for FastAPI."""

import logging
from typing import Optional

import httpx
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from va_advisor.config import get_settings

logger = logging.getLogger(__name__)

security = HTTPBearer()
optional_security = HTTPBearer(auto_error=False)

# Cache for JWKS to avoid fetching on every request
_jwks_cache: dict | None = None


async def _fetch_jwks(supabase_url: str) -> dict:
    """Fetch JWKS from Supabase."""
    global _jwks_cache
    if _jwks_cache is not None:
        return _jwks_cache

    jwks_url = f"{supabase_url}/auth/v1/.well-known/jwks.json"
    async with httpx.AsyncClient() as client:
        response = await client.get(jwks_url)
        response.raise_for_status()
        _jwks_cache = response.json()
        return _jwks_cache


def _get_signing_key(token: str, jwks: dict) -> dict:
    """Get the signing key from JWKS that matches the token's kid."""
    unverified_header = jwt.get_unverified_header(token)
    kid = unverified_header.get("kid")

    for key in jwks.get("keys", []):
        if key.get("kid") == kid:
            return key

    raise JWTError("Unable to find matching key in JWKS")


async def _decode_token(token: str) -> dict:
    settings = get_settings()

    # Check the algorithm in the token header
    unverified_header = jwt.get_unverified_header(token)
    alg = unverified_header.get("alg", "HS256")

    if alg == "ES256":
        # Supabase Auth v2 uses ES256 with JWKS
        jwks = await _fetch_jwks(settings.supabase_url)
        signing_key = _get_signing_key(token, jwks)
        payload = jwt.decode(
            token,
            signing_key,
            algorithms=["ES256"],
            audience="authenticated",
        )
    else:
        # Legacy HS256 with anon key
        payload = jwt.decode(
            token,
            settings.supabase_key,
            algorithms=["HS256"],
            audience="authenticated",
        )

    return {
        "user_id": payload.get("sub"),
        "email": payload.get("email"),
        "role": payload.get("role"),
    }


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> dict:
    """
    Validate Supabase JWT token.

    Supports both ES256 (Supabase Auth v2) and HS256 tokens.
    Fetches JWKS from Supabase for ES256 verification.

    Args:
        credentials: Bearer token from Authorization header

    Returns:
        Dict with user_id, email, and role from token

    Raises:
        HTTPException: 401 if token is invalid or expired
    """
    try:
        return await _decode_token(credentials.credentials)
    except JWTError as e:
        logger.warning(f"JWT validation failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except httpx.HTTPError as e:
        logger.error(f"JWKS fetch failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authentication service unavailable",
        )


async def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(optional_security),
) -> Optional[dict]:
    """Like ``get_current_user`` but anonymous callers get ``None``.

    A bad token is treated as anonymous; the analysis endpoint runs
    without a knowledge base in that case.
    """
    if credentials is None:
        return None
    try:
        return await _decode_token(credentials.credentials)
    except (JWTError, httpx.HTTPError) as e:
        logger.info(f"Ignoring unusable bearer token: {e}")
        return None


async def get_user_organization_id(user_id: str) -> Optional[str]:
    """Organization of the user's active membership, if any."""
    from va_advisor.db.supabase import get_async_supabase_client_async

    supabase = await get_async_supabase_client_async()
    result = await (
        supabase.table("user_organizations")
        .select("organization_id")
        .eq("user_id", user_id)
        .is_("deactivated_at", "null")
        .order("created_at")
        .limit(1)
        .execute()
    )
    if not result.data:
        return None
    return result.data[0]["organization_id"]


async def require_organization_id(
    current_user: dict = Depends(get_current_user),
) -> str:
    """Organization of the authenticated user; 403 without a membership."""
    organization_id = await get_user_organization_id(current_user["user_id"])
    if not organization_id:
        raise HTTPException(status_code=403, detail="No organization membership")
    return organization_id
