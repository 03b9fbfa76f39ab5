"""
effective_access.api.app

FastAPI app factory for the effective access service.

Responsibilities:
- Build the FastAPI application and register routers/middleware.
- Open and close the upstream HTTP clients the report service runs on (lifespan).
- Provide a single composition root where cross-cutting concerns live.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import AsyncExitStack, asynccontextmanager

import httpx
from fastapi import FastAPI

from effective_access import __version__
from effective_access.api.routers.access import router as access_router
from effective_access.api.routers.health import router as health_router
from effective_access.clients.graph_directory import GraphDirectoryClient
from effective_access.clients.http import bearer_headers
from effective_access.clients.resource_graph import ResourceGraphClient
from effective_access.observability.logging import configure_logging, get_logger
from effective_access.observability.middleware import RequestContextMiddleware
from effective_access.resolution.throttle import get_throttle_coordinator
from effective_access.services.access_report_service import AccessReportService
from effective_access.settings import Settings

log = get_logger(__name__)


def create_app(*, settings: Settings, service: AccessReportService | None = None) -> FastAPI:
    """
    `service` replaces the upstream-backed report service (tests inject fakes here).
    """

    configure_logging(
        service_name=settings.service_name,
        level=settings.log_level,
        json_logs=settings.log_json,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        log.info("startup", env=settings.env)
        async with AsyncExitStack() as stack:
            if app.state.report_service is None:
                app.state.report_service = await _open_report_service(settings, stack)
            try:
                yield
            finally:
                if service is None:
                    app.state.report_service = None
                log.info("shutdown")

    app = FastAPI(
        title="Effective Access Service",
        version=__version__,
        docs_url="/docs",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(RequestContextMiddleware)
    app.include_router(health_router, tags=["health"])
    app.include_router(access_router)

    app.state.settings = settings
    app.state.report_service = service

    return app


async def _open_report_service(settings: Settings, stack: AsyncExitStack) -> AccessReportService:
    # Both clients close when `stack` unwinds at shutdown.
    timeout = httpx.Timeout(settings.request_timeout_seconds)
    graph_http = await stack.enter_async_context(
        httpx.AsyncClient(
            base_url=settings.graph_base_url,
            headers=bearer_headers(settings.graph_access_token),
            timeout=timeout,
        )
    )
    management_http = await stack.enter_async_context(
        httpx.AsyncClient(
            headers=bearer_headers(settings.management_access_token),
            timeout=timeout,
        )
    )
    return AccessReportService(
        directory=GraphDirectoryClient(http=graph_http),
        authorization=ResourceGraphClient(
            http=management_http,
            url=settings.resource_graph_url,
            api_version=settings.resource_graph_api_version,
            page_size=settings.page_size,
        ),
        settings=settings,
        throttle=get_throttle_coordinator(),
    )


# --- Module Notes -----------------------------------------------------------
# App composition stays here; resolution logic lives in the service and pipeline layers.
