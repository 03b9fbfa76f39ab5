"""
effective_access.api.routers.access

Effective access endpoint.

Responsibilities:
- Validate the identity reference and resolve it into an AccessReport.
- Map resolution failures to HTTP status codes.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from starlette.status import (
    HTTP_400_BAD_REQUEST,
    HTTP_404_NOT_FOUND,
    HTTP_502_BAD_GATEWAY,
    HTTP_503_SERVICE_UNAVAILABLE,
)

from effective_access.api.deps import report_service_dep
from effective_access.api.schemas import AccessReportOut
from effective_access.domain.errors import (
    AccessResolutionFailed,
    InvalidPrincipalId,
    ResolutionAborted,
    UnresolvableIdentity,
)
from effective_access.domain.models import Identity, IdentityType, ResolutionMode
from effective_access.resolution.role_assignments import validate_principal_id
from effective_access.services.access_report_service import AccessReportService

router = APIRouter(prefix="/v1/identities", tags=["access"])


@router.get("/{object_id}/access", response_model=AccessReportOut)
async def get_effective_access(
    object_id: str,
    identity_type: IdentityType = Query(default=IdentityType.user, alias="type"),
    name: str = Query(default=""),
    email: str | None = Query(default=None),
    application_id: str | None = Query(default=None),
    mode: ResolutionMode | None = Query(default=None),
    service: AccessReportService = Depends(report_service_dep),
) -> AccessReportOut:
    try:
        object_id = validate_principal_id(object_id)
        if application_id:
            application_id = validate_principal_id(application_id)
    except InvalidPrincipalId as e:
        raise HTTPException(status_code=HTTP_400_BAD_REQUEST, detail=str(e)) from e

    identity = Identity(
        object_id=object_id,
        type=identity_type,
        display_name=name,
        email=email,
        application_id=application_id,
    )

    try:
        report = await service.build_report(identity, mode=mode)
    except UnresolvableIdentity as e:
        raise HTTPException(status_code=HTTP_404_NOT_FOUND, detail=str(e)) from e
    except AccessResolutionFailed as e:
        raise HTTPException(status_code=HTTP_502_BAD_GATEWAY, detail=str(e)) from e
    except ResolutionAborted as e:
        raise HTTPException(status_code=HTTP_503_SERVICE_UNAVAILABLE, detail=str(e)) from e

    return AccessReportOut.from_report(report)
