"""Configuration version endpoints (TFE V2 compatible).

Endpoints:
    POST   /api/v2/workspaces/{id}/configuration-versions
    GET    /api/v2/workspaces/{id}/configuration-versions
    GET    /api/v2/configuration-versions/{cv_id}
    GET    /api/v2/configuration-versions/{cv_id}/download
    DELETE /api/v2/configuration-versions/{cv_id}
    PUT    /signed/{signature}/configuration-versions/{cv_id}/upload  (signed, no auth)

go-tfe uploads the archive with a bare PUT to the upload-url returned by
create. That URL carries an HMAC signature and expiry in place of a token.
"""

import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime

from fastapi import APIRouter, Body, Depends, Header, HTTPException, Path, Query, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, StrictBool
from sqlalchemy.ext.asyncio import AsyncSession

from tfgate.api.dependencies import AuthenticatedUser, get_current_user
from tfgate.auth.signed_urls import URLSigner, get_url_signer, require_signed_url
from tfgate.config import settings
from tfgate.db.models import ConfigurationVersion
from tfgate.db.session import get_db
from tfgate.logging_config import get_logger
from tfgate.services import configuration_version_service as cv_service
from tfgate.services.configuration_version_service import (
    ConfigurationVersionNotFoundError,
    ConfigurationVersionStateError,
    ConfigurationVersionUploadError,
)
from tfgate.services.workspace_rbac_service import AuthorizationError

router = APIRouter(prefix=settings.api_prefix, tags=["configuration-versions"])
signed_router = APIRouter(
    prefix="/signed/{signature}",
    tags=["configuration-versions"],
    dependencies=[Depends(require_signed_url)],
)
logger = get_logger(__name__)

# Status → status-timestamps key presented to go-tfe
STATUS_TIMESTAMP_KEYS = {
    "pending": "queued-at",
    "uploaded": "started-at",
    "errored": "finished-at",
}


class CreateConfigurationVersionRequest(BaseModel):
    class Data(BaseModel):
        class Attributes(BaseModel):
            auto_queue_runs: StrictBool = Field(True, alias="auto-queue-runs")
            speculative: StrictBool = False
            commit_sha: str | None = Field(None, alias="commit-sha", max_length=40)
            commit_url: str | None = Field(None, alias="commit-url", max_length=500)

        type: str = "configuration-versions"
        attributes: Attributes = Field(default_factory=Attributes)

    data: Data = Field(default_factory=Data)


def _rfc3339(dt: datetime | None) -> str:
    if dt is None:
        return ""
    return dt.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def upload_path(cv: ConfigurationVersion) -> str:
    """Unsigned path of a configuration version's upload endpoint."""
    return f"/configuration-versions/cv-{cv.id}/upload"


def _ingress_json(cv: ConfigurationVersion) -> dict:
    return {
        "id": f"ia-{cv.id}",
        "type": "ingress-attributes",
        "attributes": {
            "commit-sha": cv.commit_sha,
            "commit-url": cv.commit_url,
        },
    }


def _cv_json(cv: ConfigurationVersion, upload_url: str | None = None) -> dict:
    """Serialize a ConfigurationVersion to a TFE V2 JSON:API resource object.

    upload-url is only present in the create response; it is a short-lived
    capability and is never re-issued.
    """
    cv_id = f"cv-{cv.id}"
    attributes = {
        "source": cv.source,
        "status": cv.status,
        "auto-queue-runs": cv.auto_queue_runs,
        "speculative": cv.speculative,
        "status-timestamps": {
            STATUS_TIMESTAMP_KEYS[ts.status]: _rfc3339(ts.timestamp)
            for ts in cv.status_timestamps
            if ts.status in STATUS_TIMESTAMP_KEYS
        },
        "created-at": _rfc3339(cv.created_at),
    }
    if upload_url is not None:
        attributes["upload-url"] = upload_url

    relationships: dict = {
        "workspace": {"data": {"id": f"ws-{cv.workspace_id}", "type": "workspaces"}},
    }
    if cv.commit_sha:
        relationships["ingress-attributes"] = {
            "data": {"id": f"ia-{cv.id}", "type": "ingress-attributes"},
        }

    return {
        "id": cv_id,
        "type": "configuration-versions",
        "attributes": attributes,
        "relationships": relationships,
        "links": {
            "self": f"{settings.api_prefix}/configuration-versions/{cv_id}",
            "download": f"{settings.api_prefix}/configuration-versions/{cv_id}/download",
        },
    }


def _parse_id(value: str, prefix: str) -> uuid.UUID:
    try:
        return uuid.UUID(value.removeprefix(prefix))
    except ValueError:
        raise HTTPException(status_code=404, detail="Not found") from None


@contextmanager
def _service_errors() -> Iterator[None]:
    """Translate service exceptions into HTTP errors."""
    try:
        yield
    except ConfigurationVersionNotFoundError as e:
        raise HTTPException(status_code=404, detail="Not found") from e
    except AuthorizationError as e:
        raise HTTPException(status_code=403, detail="Forbidden") from e
    except ConfigurationVersionStateError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e


@router.post("/workspaces/{workspace_id}/configuration-versions", status_code=201)
async def create_configuration_version(
    request: Request,
    workspace_id: str = Path(...),
    body: CreateConfigurationVersionRequest | None = Body(None),
    x_terraform_integration: str = Header(""),
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    signer: URLSigner = Depends(get_url_signer),
) -> JSONResponse:
    """Create a configuration version and return its signed upload URL."""
    attrs = (body or CreateConfigurationVersionRequest()).data.attributes
    source = (
        cv_service.SOURCE_CLI if x_terraform_integration == "cloud" else cv_service.SOURCE_API
    )

    with _service_errors():
        cv = await cv_service.create_configuration_version(
            db,
            user,
            _parse_id(workspace_id, "ws-"),
            source=source,
            auto_queue_runs=attrs.auto_queue_runs,
            speculative=attrs.speculative,
            commit_sha=attrs.commit_sha,
            commit_url=attrs.commit_url,
        )
    await db.commit()

    signed = signer.sign(upload_path(cv), settings.uploads.signed_url_ttl_seconds)
    upload_url = str(request.base_url).rstrip("/") + signed

    return JSONResponse(content={"data": _cv_json(cv, upload_url=upload_url)}, status_code=201)


@router.get("/workspaces/{workspace_id}/configuration-versions")
async def list_configuration_versions(
    workspace_id: str = Path(...),
    page_number: int = Query(1, alias="page[number]", ge=1),
    page_size: int = Query(20, alias="page[size]", ge=1, le=100),
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    with _service_errors():
        page = await cv_service.list_configuration_versions(
            db, user, _parse_id(workspace_id, "ws-"), page_number, page_size
        )

    return JSONResponse(
        content={
            "data": [_cv_json(cv) for cv in page.items],
            "meta": {
                "pagination": {
                    "current-page": page.current_page,
                    "page-size": page.page_size,
                    "prev-page": page.current_page - 1 if page.current_page > 1 else None,
                    "next-page": (
                        page.current_page + 1 if page.current_page < page.total_pages else None
                    ),
                    "total-pages": page.total_pages,
                    "total-count": page.total_count,
                }
            },
        }
    )


@router.get("/configuration-versions/{cv_id}")
async def show_configuration_version(
    cv_id: str = Path(...),
    include: str = Query(""),
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    """Show a configuration version. ?include=ingress_attributes side-loads the commit."""
    with _service_errors():
        cv = await cv_service.get_configuration_version(db, user, _parse_id(cv_id, "cv-"))

    content: dict = {"data": _cv_json(cv)}
    if "ingress_attributes" in include.split(",") and cv.commit_sha:
        content["included"] = [_ingress_json(cv)]
    return JSONResponse(content=content)


@router.get("/configuration-versions/{cv_id}/download")
async def download_configuration_version(
    cv_id: str = Path(...),
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Response:
    with _service_errors():
        data = await cv_service.download_configuration_version(
            db, user, _parse_id(cv_id, "cv-")
        )
    return Response(content=data, media_type="application/octet-stream")


@router.delete("/configuration-versions/{cv_id}", status_code=204)
async def delete_configuration_version(
    cv_id: str = Path(...),
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Response:
    with _service_errors():
        await cv_service.delete_configuration_version(db, user, _parse_id(cv_id, "cv-"))
    await db.commit()
    return Response(status_code=204)


@signed_router.put("/configuration-versions/{cv_id}/upload")
async def upload_configuration(
    request: Request,
    cv_id: str = Path(...),
    db: AsyncSession = Depends(get_db),
) -> Response:
    """Upload a configuration archive.

    No bearer auth: the router-level signature check has already run.
    """
    max_size = settings.uploads.max_config_size
    data = bytearray()
    async for chunk in request.stream():
        if len(data) + len(chunk) > max_size:
            logger.info("Rejected oversize configuration upload", cv_id=cv_id, max_size=max_size)
            raise HTTPException(
                status_code=422,
                detail=f"configuration version exceeds maximum size ({max_size} bytes)",
            )
        data.extend(chunk)

    with _service_errors():
        try:
            await cv_service.upload_configuration_version(
                db, _parse_id(cv_id, "cv-"), bytes(data)
            )
        except ConfigurationVersionUploadError:
            raise HTTPException(status_code=500, detail="Internal server error") from None
    await db.commit()

    return Response(status_code=200)
