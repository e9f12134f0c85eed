"""
Bearer token authentication.

Tokens are JWTs minted by the external identity issuer. Signatures are
verified against the issuer's published JWKS before any claim is trusted.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Optional

import jwt
from cachetools import TTLCache
from fastapi import HTTPException, Request, status

from onyx_api.core.config import settings

logger = logging.getLogger(__name__)

_CACHE_MAX_SIZE = 1000


@dataclass
class AuthenticatedUser:
    """Identity resolved from a verified bearer token."""

    issuer: str  # subject identifier assigned by the identity provider
    email: Optional[str] = None

    def __str__(self) -> str:
        return f"User({self.issuer}, {self.email})"


# token -> (user, exp claim); entries never outlive the token itself
_token_cache: TTLCache = TTLCache(maxsize=_CACHE_MAX_SIZE, ttl=settings.auth_cache_ttl_seconds)
_jwks_client: Optional[jwt.PyJWKClient] = None


def _get_jwks_client() -> jwt.PyJWKClient:
    global _jwks_client
    if _jwks_client is None:
        if not settings.auth_jwks_url:
            logger.error("AUTH_JWKS_URL is not configured; cannot verify tokens")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Server misconfiguration: token verification keys not set",
            )
        _jwks_client = jwt.PyJWKClient(settings.auth_jwks_url, cache_keys=True)
    return _jwks_client


def _decode_token(token: str) -> dict:
    """Verify signature, expiry, issuer and audience; return the claims."""
    signing_key = _get_jwks_client().get_signing_key_from_jwt(token)
    options = {"require": ["exp", "sub"]}
    if not settings.auth_audience:
        options["verify_aud"] = False
    return jwt.decode(
        token,
        signing_key.key,
        algorithms=settings.auth_algorithms,
        audience=settings.auth_audience,
        issuer=settings.auth_issuer,
        options=options,
    )


async def verify_token(token: str) -> AuthenticatedUser:
    """
    Verify a bearer token and return the caller's identity.

    Raises:
        HTTPException: 401 if the token is invalid, expired or not ours
    """
    cached = _token_cache.get(token)
    if cached is not None:
        user, expires_at = cached
        if time.time() < expires_at:
            return user
        # Token expired while cached; re-verification below rejects it
        _token_cache.pop(token, None)

    try:
        # PyJWKClient fetches keys over blocking HTTP
        claims = await asyncio.to_thread(_decode_token, token)
    except jwt.PyJWKClientError as e:
        logger.warning(f"Could not resolve signing key: {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e
    except jwt.InvalidTokenError as e:
        logger.warning(f"Token rejected: {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e

    user = AuthenticatedUser(issuer=claims["sub"], email=claims.get("email"))
    _token_cache[token] = (user, claims["exp"])
    logger.debug(f"Authenticated {user} (cache size: {len(_token_cache)})")
    return user


def _extract_bearer_token(authorization: Optional[str]) -> str:
    """Extract token from Authorization header."""
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Access denied. No token provided.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authorization header format. Expected: Bearer <token>",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return parts[1]


async def get_current_user(request: Request) -> AuthenticatedUser:
    """
    FastAPI dependency resolving the authenticated caller.

    Usage:
        @router.get("/endpoint")
        async def endpoint(user: AuthenticatedUser = Depends(get_current_user)):
            # user.issuer scopes every query
            ...
    """
    token = _extract_bearer_token(request.headers.get("Authorization"))
    return await verify_token(token)
