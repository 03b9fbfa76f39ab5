"""
effective_access.api.deps

FastAPI dependency wiring for the API layer.
"""

from __future__ import annotations

from fastapi import HTTPException, Request
from starlette.status import HTTP_503_SERVICE_UNAVAILABLE

from effective_access.services.access_report_service import AccessReportService


def report_service_dep(request: Request) -> AccessReportService:
    # Created on app startup in `effective_access.api.app.create_app`.
    service = getattr(request.app.state, "report_service", None)
    if service is None:
        raise HTTPException(
            status_code=HTTP_503_SERVICE_UNAVAILABLE, detail="Service not initialised"
        )
    return service
