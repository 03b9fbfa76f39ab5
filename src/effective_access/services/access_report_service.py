"""
effective_access.services.access_report_service

Access report lifecycle service (composition + failure owner).

Responsibilities:
- Compose the resolver, query client and assembler into one resolution graph.
- Execute the graph per identity, logging each stage as it completes.
- Translate low-level failures into AccessResolutionFailed with progress counts.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from effective_access.domain.errors import (
    AccessQueryError,
    AccessResolutionFailed,
    ResolutionAborted,
    UnresolvableIdentity,
)
from effective_access.domain.models import AccessReport, Identity, ResolutionMode
from effective_access.observability.logging import get_logger
from effective_access.pipeline.graph import build_graph
from effective_access.pipeline.state import ResolutionState
from effective_access.pipeline.tracker import RunContext
from effective_access.reports.assembler import ResultAssembler
from effective_access.resolution.hierarchy import GroupHierarchyResolver
from effective_access.resolution.ports import AuthorizationQueryService, DirectoryClient
from effective_access.resolution.retry import RetryPolicy
from effective_access.resolution.role_assignments import RoleAssignmentQueryClient
from effective_access.resolution.throttle import ThrottleCoordinator
from effective_access.settings import Settings

log = get_logger(__name__)

_PASS_THROUGH = (AccessResolutionFailed, ResolutionAborted, UnresolvableIdentity)


class AccessReportService:
    def __init__(
        self,
        *,
        directory: DirectoryClient,
        authorization: AuthorizationQueryService,
        settings: Settings,
        throttle: ThrottleCoordinator | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._settings = settings
        retry = RetryPolicy.from_settings(settings)

        self.resolver = GroupHierarchyResolver.from_settings(
            directory=directory, settings=settings, sleep=sleep
        )
        self.query_client = RoleAssignmentQueryClient.from_settings(
            service=authorization, settings=settings, throttle=throttle, sleep=sleep
        )
        self._graph = build_graph(
            directory=directory,
            resolver=self.resolver,
            query_client=self.query_client,
            assembler=ResultAssembler(
                max_depth=settings.max_tree_depth, max_nodes=settings.max_tree_nodes
            ),
            retry=retry,
            sleep=sleep,
        )

    @property
    def default_mode(self) -> ResolutionMode:
        if self._settings.parallel_processing:
            return ResolutionMode.parallel
        return ResolutionMode.sequential

    async def build_report(
        self,
        identity: Identity,
        *,
        mode: ResolutionMode | None = None,
        cancel_event: asyncio.Event | None = None,
        run: RunContext | None = None,
    ) -> AccessReport:
        """
        Resolve `identity` end to end and return its access report.

        Pass `run` to observe stage transitions from outside; otherwise a fresh
        context is created from `mode` and `cancel_event`.
        """

        if run is None:
            run = RunContext(mode=mode or self.default_mode, cancel_event=cancel_event)
        state: ResolutionState = {"identity": identity, "run": run}

        with structlog.contextvars.bound_contextvars(
            run_id=run.run_id,
            identity=identity.object_id,
            identity_type=identity.type.value,
        ):
            log.info("resolution_started", mode=run.mode.value)
            try:
                final_state = await self._execute(state)
            except AccessQueryError as e:
                failed_stage = run.tracker.stage
                run.tracker.fail()
                log.error(
                    "resolution_failed",
                    stage=failed_stage.value,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                if isinstance(e, _PASS_THROUGH):
                    raise
                raise AccessResolutionFailed(
                    stage=failed_stage.value,
                    resolved_groups=run.tracker.resolved_groups,
                    failed_groups=run.tracker.failed_groups,
                ) from e
            except BaseException:
                run.tracker.fail()
                raise

            report = final_state["report"]
            log.info(
                "resolution_completed",
                groups=len(report.direct_groups) + len(report.indirect_groups),
                failed_groups=len(report.failed_group_ids),
            )
            return report

    async def _execute(self, state: ResolutionState) -> dict[str, Any]:
        final_state: dict[str, Any] = dict(state)
        async for update in self._graph.astream(state, stream_mode="updates"):
            # update shape: {node_name: partial_state}
            for node_name, node_update in update.items():
                if isinstance(node_update, dict):
                    final_state.update(node_update)
                log.debug("stage_completed", node=node_name)
        return final_state


# --- Module Notes -----------------------------------------------------------
# The compiled graph is stateless between runs; everything run-specific travels in
# ResolutionState, so one service instance serves concurrent requests.
