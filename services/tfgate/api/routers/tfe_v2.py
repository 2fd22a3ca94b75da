"""TFE V2 API compatibility endpoints.

The minimum TFE V2 surface terraform and go-tfe touch around `terraform
login` and configuration uploads.

Endpoints:
    GET  /api/v2/ping: API version handshake
    GET  /api/v2/account/details: current user info
"""

from fastapi import APIRouter, Depends, Response
from fastapi.responses import JSONResponse

from tfgate.api.dependencies import AuthenticatedUser, get_current_user
from tfgate.auth.builtin_roles import ADMIN_ROLE
from tfgate.config import settings
from tfgate.logging_config import get_logger

router = APIRouter(prefix=settings.api_prefix, tags=["tfe-v2"])
logger = get_logger(__name__)

# Sent on every response under the API prefix (see app middleware)
TFP_API_VERSION = "2.5"


@router.get("/ping", status_code=204)
async def ping() -> Response:
    """TFE V2 API ping endpoint.

    No auth required. go-tfe calls it on client construction and reads the
    TFP-API-Version header.
    """
    return Response(status_code=204)


@router.get("/account/details")
async def account_details(
    user: AuthenticatedUser = Depends(get_current_user),
) -> JSONResponse:
    """Return current user in JSON:API format matching TFE schema.

    Used by `terraform login` to verify the token works after creation.
    """
    return JSONResponse(
        content={
            "data": {
                "id": user.username,
                "type": "users",
                "attributes": {
                    "username": user.username,
                    "is-service-account": False,
                    "avatar-url": "",
                    "v2-only": False,
                    "permissions": {
                        "can-create-organizations": ADMIN_ROLE in user.roles,
                        "can-change-email": False,
                        "can-change-username": False,
                    },
                },
            }
        }
    )
