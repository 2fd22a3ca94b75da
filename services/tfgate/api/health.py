"""
Liveness and readiness probes.

/ready reports on everything a terraform login or configuration upload
touches: the database (tokens, configuration versions), Redis (browser
sessions), archive storage, and the signing key shared by authorization
codes and upload URLs.
"""

from fastapi import APIRouter, Response, status

from tfgate.auth.signed_urls import get_url_signer_or_none
from tfgate.db.session import get_db_health
from tfgate.logging_config import get_logger
from tfgate.redis.client import get_redis_health
from tfgate.storage import get_storage_or_none

router = APIRouter(tags=["health"])
logger = get_logger(__name__)

HEALTHY = "healthy"
UNHEALTHY = "unhealthy"


def _state(ok: bool) -> str:
    return HEALTHY if ok else UNHEALTHY


@router.get("/health", status_code=status.HTTP_200_OK)
async def health() -> dict[str, str]:
    """Process is up and serving requests."""
    return {"status": HEALTHY}


@router.get("/ready", status_code=status.HTTP_200_OK)
async def ready(response: Response) -> dict[str, str | dict[str, str]]:
    """503 until every dependency of the login and upload paths is usable."""
    checks = {
        "database": _state(await get_db_health()),
        "redis": _state(await get_redis_health()),
        "storage": _state(get_storage_or_none() is not None),
        "signing": _state(get_url_signer_or_none() is not None),
    }

    if UNHEALTHY in checks.values():
        logger.warning("Readiness check failed", checks=checks)
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {"status": "not ready", "checks": checks}

    return {"status": "ready", "checks": checks}
