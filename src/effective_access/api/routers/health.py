"""
effective_access.api.routers.health

Health and readiness endpoints.

Responsibilities:
- Provide the liveness check (`/healthz`).
- Provide the readiness check (`/readyz`) gated on the report service being wired.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from effective_access.api.deps import report_service_dep
from effective_access.services.access_report_service import AccessReportService

router = APIRouter()


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz")
async def readyz(service: AccessReportService = Depends(report_service_dep)) -> dict[str, str]:
    return {"status": "ready", "default_mode": service.default_mode.value}


# --- Module Notes -----------------------------------------------------------
# Readiness does not call Graph or ARM: an upstream outage should surface as 502s
# on requests, not take every replica out of rotation.
