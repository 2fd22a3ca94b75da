"""FastAPI dependencies for authentication.

Two credential types, one Bearer header:
- API tokens (PostgreSQL): long-lived, minted by `terraform login`
- Sessions (Redis): short-lived (sliding 12h), for the browser consent page

The auth dependency tries API token lookup first (fast SHA-256 hash + DB query),
then Redis session lookup. Both return the same AuthenticatedUser shape.
The consent page additionally accepts the session token from a cookie, since
browsers following a redirect cannot attach a Bearer header.
"""

import json
from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tfgate.auth.api_tokens import validate_api_token
from tfgate.auth.builtin_roles import EVERYONE_ROLE
from tfgate.auth.sessions import get_session, refresh_session, should_refresh_session
from tfgate.config import settings
from tfgate.db.models import RoleAssignment, User
from tfgate.db.session import get_db
from tfgate.logging_config import get_logger
from tfgate.redis.client import get_redis_client

logger = get_logger(__name__)
security = HTTPBearer()
optional_security = HTTPBearer(auto_error=False)

# Redis cache TTL for API token role resolution (seconds)
_TOKEN_ROLES_CACHE_TTL = 60
_TOKEN_ROLES_PREFIX = "tfg:token_roles:"


@dataclass
class AuthenticatedUser:
    """Unified user identity from either sessions or API tokens."""

    username: str
    display_name: str | None
    roles: list[str]
    auth_method: str  # "session" or "api_token"


async def _resolve_user_roles(db: AsyncSession, username: str) -> list[str]:
    """Resolve a user's roles from role_assignments.

    Checks Redis cache first (60s TTL). On miss, queries the table and
    caches the result.
    """
    redis = get_redis_client()
    cache_key = _TOKEN_ROLES_PREFIX + username

    cached = await redis.get(cache_key)
    if cached is not None:
        return json.loads(cached)

    result = await db.execute(
        select(RoleAssignment.role_name).where(RoleAssignment.username == username)
    )
    roles: set[str] = {row[0] for row in result.all()}
    roles.add(EVERYONE_ROLE)

    role_list = sorted(roles)
    await redis.set(cache_key, json.dumps(role_list), ex=_TOKEN_ROLES_CACHE_TTL)
    return role_list


async def _authenticate(db: AsyncSession, token: str) -> AuthenticatedUser | None:
    # Try API token first (fast hash + indexed DB lookup)
    api_token = await validate_api_token(db, token)
    if api_token is not None:
        user = await db.get(User, api_token.username)
        if user is None or not user.is_active:
            logger.info("API token for inactive user", token_id=api_token.id)
            return None
        return AuthenticatedUser(
            username=user.username,
            display_name=user.display_name,
            roles=await _resolve_user_roles(db, user.username),
            auth_method="api_token",
        )

    session = await get_session(token)
    if session is not None:
        # Sliding window: refresh TTL on activity (rate-limited to every 5 min)
        if should_refresh_session(session):
            await refresh_session(session)
        return AuthenticatedUser(
            username=session.username,
            display_name=session.display_name,
            roles=session.roles,
            auth_method="session",
        )

    return None


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> AuthenticatedUser:
    """Unified auth dependency: API tokens, then sessions, else 401."""
    user = await _authenticate(db, credentials.credentials)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


async def get_optional_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(optional_security),
    db: AsyncSession = Depends(get_db),
) -> AuthenticatedUser | None:
    """Like get_current_user, but returns None instead of raising.

    Checks the Bearer header first, then the session cookie.
    """
    if credentials is not None:
        user = await _authenticate(db, credentials.credentials)
        if user is not None:
            return user

    cookie = request.cookies.get(settings.auth.session_cookie_name)
    if cookie:
        return await _authenticate(db, cookie)
    return None
