"""OAuth2 endpoints for the terraform/tofu CLI login flow.

Implements terraform service discovery and the OAuth2 Authorization Code +
PKCE flow that `terraform login` drives. Authorization codes are sealed
(encrypted and authenticated) rather than stored, so nothing is written
anywhere until the token exchange mints the API token.

Endpoints:
    GET  /.well-known/terraform.json: service discovery
    GET  /oauth/authorize: consent page (terraform CLI sends the browser here)
    POST /oauth/authorize: consent submission, redirects back with a code
    POST /oauth/token: exchange the code for an API token
    GET  /api/terraform/motd: message of the day shown by the CLI
"""

import base64
import hashlib
import hmac
import json
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tfgate.api.consent import render_consent_page
from tfgate.api.dependencies import AuthenticatedUser, get_optional_user
from tfgate.auth.api_tokens import create_api_token
from tfgate.auth.code_codec import AuthorizationCodePayload, CodeCodec, CodeError, get_code_codec
from tfgate.config import settings
from tfgate.db.session import get_db
from tfgate.logging_config import get_logger

router = APIRouter(tags=["oauth"])
logger = get_logger(__name__)

OAUTH_CLIENT_ID = "terraform"
AUTHORIZE_PATH = "/oauth/authorize"
TOKEN_PATH = "/oauth/token"

# OAuth2 error identifiers (RFC 6749 section 4.1.2.1 / 5.2)
INVALID_REQUEST = "invalid_request"
INVALID_GRANT = "invalid_grant"
INVALID_CLIENT = "invalid_client"
UNSUPPORTED_GRANT_TYPE = "unsupported_grant_type"
UNSUPPORTED_RESPONSE_TYPE = "unsupported_response_type"
ACCESS_DENIED = "access_denied"
SERVER_ERROR = "server_error"

DISCOVERY_PAYLOAD: bytes = json.dumps(
    {
        "login.v1": {
            "authz": AUTHORIZE_PATH,
            "token": TOKEN_PATH,
            "client": OAUTH_CLIENT_ID,
            "ports": [10000, 10010],
        },
        "modules.v1": settings.module_registry_prefix,
        "motd.v1": "/api/terraform/motd",
        "state.v2": f"{settings.api_prefix}/",
        "tfe.v2": f"{settings.api_prefix}/",
        "tfe.v2.1": f"{settings.api_prefix}/",
        "tfe.v2.2": f"{settings.api_prefix}/",
    }
).encode()


def _append_query(url: str, params: dict[str, str]) -> str:
    """Add params to url, keeping whatever query it already has."""
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.extend(params.items())
    return urlunsplit(parts._replace(query=urlencode(query)))


def _redirect_error(
    redirect_uri: str, error: str, description: str = "", state: str = ""
) -> RedirectResponse:
    """Deliver an OAuth error to the client by redirecting back to it."""
    params = {"error": error}
    if description:
        params["error_description"] = description
    if state:
        params["state"] = state
    return RedirectResponse(url=_append_query(redirect_uri, params), status_code=302)


def _is_absolute_url(url: str) -> bool:
    try:
        parts = urlsplit(url)
    except ValueError:
        # e.g. an unterminated IPv6 literal
        return False
    return bool(parts.scheme and parts.netloc)


def _check_client(params: dict[str, str]) -> str:
    """Validate redirect_uri and client_id; errors here cannot be redirected.

    Returns the redirect_uri.
    """
    redirect_uri = params.get("redirect_uri", "")
    if not _is_absolute_url(redirect_uri):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="invalid redirect_uri"
        )
    if params.get("client_id") != OAUTH_CLIENT_ID:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=INVALID_CLIENT)
    return redirect_uri


async def _request_params(request: Request) -> dict[str, str]:
    """Query parameters overlaid with form fields (POST)."""
    params = dict(request.query_params)
    if request.method == "POST":
        form = await request.form()
        params.update({k: v for k, v in form.items() if isinstance(v, str)})
    return params


def _verify_pkce(code_verifier: str, code_challenge: str) -> bool:
    """Verify an S256 code_verifier against the sealed code_challenge."""
    digest = hashlib.sha256(code_verifier.encode()).digest()
    computed = base64.urlsafe_b64encode(digest).rstrip(b"=")
    return hmac.compare_digest(computed, code_challenge.encode())


@router.get("/.well-known/terraform.json")
async def terraform_service_discovery() -> Response:
    """Terraform/OpenTofu service discovery document."""
    return Response(content=DISCOVERY_PAYLOAD, media_type="application/json")


@router.api_route(AUTHORIZE_PATH, methods=["GET", "POST"])
async def oauth_authorize(
    request: Request,
    user: AuthenticatedUser | None = Depends(get_optional_user),
    codec: CodeCodec = Depends(get_code_codec),
) -> Response:
    """Start (GET) or complete (POST) the authorization step.

    GET renders a consent form; submitting it POSTs the same parameters
    back with consented=true, and the browser is redirected to the CLI's
    local listener with a sealed code.
    """
    params = await _request_params(request)
    redirect_uri = _check_client(params)
    state = params.get("state", "")

    if params.get("response_type") != "code":
        return _redirect_error(
            redirect_uri, UNSUPPORTED_RESPONSE_TYPE, "unsupported response type", state
        )

    if params.get("code_challenge_method") != "S256":
        return _redirect_error(
            redirect_uri, INVALID_REQUEST, "unsupported code challenge method", state
        )

    if not params.get("code_challenge"):
        return _redirect_error(redirect_uri, INVALID_REQUEST, "missing code challenge", state)

    if request.method == "GET":
        return render_consent_page(
            request.url.path, params, username=user.username if user else None
        )

    if params.get("consented") != "true":
        return _redirect_error(redirect_uri, ACCESS_DENIED, "user denied consent", state)

    if user is None:
        logger.warning("Consent submitted without an authenticated user")
        return _redirect_error(
            redirect_uri, SERVER_ERROR, "unable to find authenticated user", state
        )

    code = codec.seal(
        AuthorizationCodePayload(
            code_challenge=params["code_challenge"],
            code_challenge_method=params["code_challenge_method"],
            username=user.username,
        )
    )

    logger.info("OAuth authorize: issuing code for terraform login", username=user.username)

    response_params = {"code": code}
    if state:
        response_params["state"] = state
    return RedirectResponse(url=_append_query(redirect_uri, response_params), status_code=302)


@router.post(TOKEN_PATH)
async def oauth_token(
    request: Request,
    db: AsyncSession = Depends(get_db),
    codec: CodeCodec = Depends(get_code_codec),
) -> Response:
    """Exchange an authorization code for an API token.

    Returns the token in the OAuth2 shape terraform expects. No
    refresh_token, no expires_in; terraform stores it in its credentials file.
    """
    params = await _request_params(request)
    redirect_uri = _check_client(params)
    state = params.get("state", "")

    code = params.get("code", "")
    if not code:
        return _redirect_error(redirect_uri, INVALID_REQUEST, "missing code", state)

    code_verifier = params.get("code_verifier", "")
    if not code_verifier:
        return _redirect_error(redirect_uri, INVALID_REQUEST, "missing code verifier", state)

    if params.get("grant_type") != "authorization_code":
        return _redirect_error(redirect_uri, UNSUPPORTED_GRANT_TYPE, state=state)

    ttl = settings.auth.auth_code_ttl_seconds or None
    try:
        payload = codec.open(code, ttl=ttl)
    except CodeError as e:
        logger.info("Rejected authorization code", reason=type(e).__name__)
        return _redirect_error(
            redirect_uri, INVALID_REQUEST, "invalid or expired authorization code", state
        )

    if not _verify_pkce(code_verifier, payload.code_challenge):
        logger.warning("PKCE verification failed for terraform login", username=payload.username)
        return _redirect_error(redirect_uri, INVALID_GRANT, "PKCE verification failed", state)

    try:
        api_token, raw_token = await create_api_token(
            db, payload.username, description="terraform login"
        )
        await db.commit()
    except SQLAlchemyError:
        logger.error("Failed to create API token", username=payload.username, exc_info=True)
        await db.rollback()
        return _redirect_error(redirect_uri, SERVER_ERROR, "unable to create token", state)

    logger.info(
        "API token created via terraform login",
        username=payload.username,
        token_id=api_token.id,
    )

    return JSONResponse(
        content={"access_token": raw_token, "token_type": "bearer"},
        headers={"Cache-Control": "no-store"},
    )


@router.get("/api/terraform/motd")
async def terraform_motd() -> JSONResponse:
    """Message of the day, printed by the CLI after a successful login."""
    return JSONResponse(content={"msg": settings.motd})
