"""API tokens minted by `terraform login`.

API tokens are long-lived Bearer tokens stored as SHA-256 hashes in PostgreSQL.
The raw token value is only available at creation time; terraform stores it
in its credentials file. Lookup is by hash (indexed column) on every request.

Token format: {random_id}.tfgate.{random_secret}
"""

import hashlib
import secrets
from datetime import timedelta

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tfgate.config import settings
from tfgate.db.models import APIToken, utc_now
from tfgate.logging_config import get_logger

logger = get_logger(__name__)

TOKEN_MARKER = ".tfgate."

# Minimum interval between last_used_at writes (seconds)
LAST_USED_UPDATE_INTERVAL = 60


def _generate_token_id() -> str:
    return f"at-{secrets.token_hex(8)}"


def _generate_raw_token() -> str:
    return f"{secrets.token_urlsafe(12)}{TOKEN_MARKER}{secrets.token_urlsafe(32)}"


def hash_token(raw_token: str) -> str:
    """SHA-256 hash a raw token for storage."""
    return hashlib.sha256(raw_token.encode()).hexdigest()


async def create_api_token(
    db: AsyncSession,
    username: str,
    description: str = "",
) -> tuple[APIToken, str]:
    """Create an API token bound to username. Returns (model, raw_token_value).

    No credential check happens here; callers are responsible for having
    established who username is.
    """
    raw_token = _generate_raw_token()

    api_token = APIToken(
        id=_generate_token_id(),
        token_hash=hash_token(raw_token),
        description=description,
        username=username,
    )
    db.add(api_token)
    await db.flush()

    logger.info("API token created", token_id=api_token.id, username=username)
    return api_token, raw_token


async def validate_api_token(db: AsyncSession, raw_token: str) -> APIToken | None:
    """Resolve a Bearer token to its APIToken row, or None.

    Enforces auth.api_token_max_ttl_hours and bumps last_used_at at most
    once per LAST_USED_UPDATE_INTERVAL.
    """
    if TOKEN_MARKER not in raw_token:
        return None

    result = await db.execute(
        select(APIToken).where(APIToken.token_hash == hash_token(raw_token))
    )
    api_token = result.scalar_one_or_none()
    if api_token is None:
        return None

    now = utc_now()
    max_ttl = settings.auth.api_token_max_ttl_hours
    if max_ttl > 0 and now > api_token.created_at + timedelta(hours=max_ttl):
        logger.debug("API token expired (max TTL)", token_id=api_token.id)
        return None

    if (
        api_token.last_used_at is None
        or (now - api_token.last_used_at).total_seconds() > LAST_USED_UPDATE_INTERVAL
    ):
        await db.execute(
            update(APIToken).where(APIToken.id == api_token.id).values(last_used_at=now)
        )

    return api_token
