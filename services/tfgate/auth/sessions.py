"""Redis-backed browser sessions.

The consent page at /oauth/authorize needs to know who is sitting at the
browser. That identity comes from an opaque session token (cookie or
Bearer header) looked up in Redis, which enables immediate revocation.
Sessions are issued by the login machinery in front of tfgate; this module
only resolves them and slides their expiry.
"""

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta

from tfgate.config import settings
from tfgate.db.models import utc_now
from tfgate.redis.client import get_redis_client

SESSION_PREFIX = "tfg:session:"

# Minimum interval between sliding-window refreshes (seconds)
SESSION_REFRESH_INTERVAL = 300


def _session_ttl() -> int:
    return settings.auth.session_ttl_hours * 3600


@dataclass
class Session:
    """Server-side session state stored in Redis."""

    username: str
    display_name: str | None
    roles: list[str]
    created_at: str  # ISO 8601
    expires_at: str  # ISO 8601
    last_active_at: str  # ISO 8601

    # The token is the Redis key, not part of the stored value
    token: str = field(default="", repr=False)


async def get_session(token: str) -> Session | None:
    """Look up a session by token. Returns None if not found or expired."""
    redis = get_redis_client()
    data = await redis.get(SESSION_PREFIX + token)
    if data is None:
        return None
    return Session(token=token, **json.loads(data))


def should_refresh_session(session: Session) -> bool:
    """True when last_active_at is older than SESSION_REFRESH_INTERVAL."""
    try:
        last_active = datetime.fromisoformat(session.last_active_at)
    except (ValueError, TypeError):
        return True
    return (utc_now() - last_active).total_seconds() > SESSION_REFRESH_INTERVAL


async def refresh_session(session: Session) -> None:
    """Extend session TTL on activity (sliding window)."""
    redis = get_redis_client()
    ttl = _session_ttl()
    now = utc_now()

    session.last_active_at = now.isoformat()
    session.expires_at = (now + timedelta(seconds=ttl)).isoformat()

    data = asdict(session)
    data.pop("token")
    # xx=True: never resurrect a session deleted between lookup and refresh
    await redis.set(SESSION_PREFIX + session.token, json.dumps(data), ex=ttl, xx=True)


