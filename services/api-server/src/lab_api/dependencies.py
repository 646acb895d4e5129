"""FastAPI dependency providers: Redis, service auth, bearer auth and the launcher."""

from fastapi import Depends, Header, HTTPException, Request, status
from redis.asyncio import Redis
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lab_launcher.launcher import ComputeLauncher
from lab_shared.errors import Forbidden, Unauthorized
from lab_shared.tokens import TokenClaims, TokenVerifier, extract_bearer

from lab_api.config import settings
from lab_api.db.engine import get_db
from lab_api.db.models import User

# Redis client is initialized once in the lifespan and stored here.
_redis_client: Redis | None = None


def set_redis_client(client: Redis) -> None:
    """Called during app startup to register the shared Redis client."""
    global _redis_client
    _redis_client = client


async def get_redis() -> Redis:
    """FastAPI dependency that returns the shared async Redis client."""
    if _redis_client is None:
        raise RuntimeError("Redis client not initialized")
    return _redis_client


async def verify_service_token(
    x_service_token: str = Header(..., alias="X-Service-Token"),
) -> None:
    """Reject internal calls without the shared service secret."""
    if x_service_token != settings.service_token:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid or missing service token",
        )


def get_token_verifier(request: Request) -> TokenVerifier:
    return request.app.state.token_verifier


def get_launcher(request: Request) -> ComputeLauncher:
    return request.app.state.launcher


async def get_current_claims(
    authorization: str | None = Header(default=None),
    verifier: TokenVerifier = Depends(get_token_verifier),
) -> TokenClaims:
    """Verify the caller's bearer token. Raises Unauthorized/InvalidToken."""
    return verifier.verify(extract_bearer(authorization))


async def get_active_user_claims(
    claims: TokenClaims = Depends(get_current_claims),
    db: AsyncSession = Depends(get_db),
) -> TokenClaims:
    """Require the token's user to exist with status ``active``."""
    async with db.begin():
        result = await db.execute(select(User.status).where(User.id == claims.user_id))
        user_status = result.scalar_one_or_none()
    if user_status is None:
        raise Unauthorized(f"User {claims.user_id} not found")
    if user_status != "active":
        raise Forbidden("User account is not active")
    return claims
