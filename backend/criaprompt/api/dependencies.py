"""
API Dependencies

FastAPI dependency injection for authentication and common services.

Security: JWT tokens are verified cryptographically using Supabase JWKS (ES256)
with HS256 fallback via the JWT secret. Never decode without verification.
"""

import logging
from typing import Optional
from uuid import UUID

import jwt
from jwt import PyJWKClient
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel

from criaprompt.config.settings import get_settings
from criaprompt.domain.subscription import ResourceKind
from criaprompt.infrastructure.exceptions import ForbiddenError, QuotaExceededError


logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)

# Cached JWKS client, shared across requests.
# PyJWKClient caches keys internally and refreshes ~every 10 min.
_jwks_client: Optional[PyJWKClient] = None


def _get_jwks_client() -> PyJWKClient:
    """Return a singleton PyJWKClient for the Supabase JWKS endpoint."""
    global _jwks_client
    if _jwks_client is None:
        settings = get_settings()
        jwks_url = f"{settings.supabase_url}/auth/v1/.well-known/jwks.json"
        _jwks_client = PyJWKClient(jwks_url, cache_keys=True)
    return _jwks_client


def _decode_with_jwks(token: str, issuer: str) -> dict:
    """Verify JWT using Supabase JWKS endpoint (ES256 asymmetric keys)."""
    client = _get_jwks_client()
    signing_key = client.get_signing_key_from_jwt(token)
    return jwt.decode(
        token,
        signing_key.key,
        algorithms=["ES256"],
        issuer=issuer,
        audience="authenticated",
        options={"require": ["exp", "sub", "iss"]},
    )


def _decode_with_secret(token: str, secret: str, issuer: str) -> dict:
    """Verify JWT using HS256 symmetric secret (legacy Supabase signing)."""
    return jwt.decode(
        token,
        secret,
        algorithms=["HS256"],
        issuer=issuer,
        audience="authenticated",
        options={"require": ["exp", "sub", "iss"]},
    )


class AuthenticatedUser(BaseModel):
    """Principal extracted from a verified Supabase JWT."""
    id: UUID
    email: Optional[str] = None


def _verify_token(credentials: Optional[HTTPAuthorizationCredentials]) -> dict:
    """
    Verify a Supabase JWT and return its claims.

    Verification strategy (in order):
      1. JWKS (ES256), which follows key rotation.
      2. HS256 with ``SUPABASE_JWT_SECRET`` for legacy signing.

    Raises:
        HTTPException 401: token missing, expired, or invalid.
    """
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authorization token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token = credentials.credentials
    settings = get_settings()
    issuer = f"{settings.supabase_url}/auth/v1"

    payload: Optional[dict] = None

    # --- Strategy 1: JWKS (ES256) ---
    try:
        payload = _decode_with_jwks(token, issuer)
    except (jwt.exceptions.PyJWKClientError, jwt.InvalidTokenError) as jwks_err:
        logger.debug("JWKS verification failed, trying HS256 fallback: %s", jwks_err)

    # --- Strategy 2: HS256 fallback ---
    if payload is None and settings.supabase_jwt_secret:
        try:
            payload = _decode_with_secret(
                token, settings.supabase_jwt_secret, issuer
            )
        except jwt.ExpiredSignatureError:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Token has expired",
            )
        except jwt.InvalidTokenError as e:
            logger.warning("HS256 JWT verification also failed: %s", e)

    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or unverifiable token",
        )

    return payload


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> AuthenticatedUser:
    """
    Authenticated principal (``sub`` and ``email`` claims).

    Raises:
        HTTPException 401: token missing, invalid, or without a UUID subject.
    """
    payload = _verify_token(credentials)

    try:
        user_id = UUID(payload.get("sub") or "")
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token: missing user ID",
        )

    return AuthenticatedUser(id=user_id, email=payload.get("email"))


async def get_current_user_id(
    user: AuthenticatedUser = Depends(get_current_user),
) -> UUID:
    """Extract the authenticated user ID."""
    return user.id


# =============================================================================
# Re-export DB dependencies for a single import source
# Routers should import from api.dependencies, not db.dependencies directly.
# =============================================================================
from criaprompt.infrastructure.db.dependencies import (  # noqa: E402, F401
    SessionDep,
    UserProfileRepoDep,
    AppConfigRepoDep,
    PlanRegistryDep,
    EntitlementServiceDep,
    QuotaServiceDep,
    ResourceServiceDep,
    SubscriptionServiceDep,
    WebhookReconcilerDep,
    get_quota_service,
    get_user_profile_repository,
)
from criaprompt.infrastructure.db.repositories import UserProfileRepository  # noqa: E402
from criaprompt.infrastructure.services.quota_service import QuotaService  # noqa: E402


async def get_is_admin(
    user: AuthenticatedUser = Depends(get_current_user),
    profiles: UserProfileRepository = Depends(get_user_profile_repository),
) -> bool:
    """Whether the caller's profile carries the admin flag."""
    return await profiles.is_admin(user.id)


async def require_admin(
    user: AuthenticatedUser = Depends(get_current_user),
    is_admin: bool = Depends(get_is_admin),
) -> AuthenticatedUser:
    """
    Admin-only guard.

    Raises:
        ForbiddenError: caller is not an admin
    """
    if not is_admin:
        raise ForbiddenError("Administrator access required")
    return user


def require_quota(kind: ResourceKind):
    """
    Build a guard that runs the quota check before a creation route.

    Usage:
        @router.post("/prompts", dependencies=[Depends(require_quota(ResourceKind.PROMPT))])
    """

    async def guard(
        user: AuthenticatedUser = Depends(get_current_user),
        quota: QuotaService = Depends(get_quota_service),
    ) -> None:
        decision = await quota.check(user.id, kind)
        if not decision.allowed:
            raise QuotaExceededError(decision)

    return guard
