from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Literal

from effective_access.domain.errors import UnresolvableIdentity, UpstreamError
from effective_access.domain.models import (
    ApiPermission,
    Identity,
    ResolutionStage,
    ResolvedGroupSet,
)
from effective_access.observability.logging import get_logger
from effective_access.pipeline.state import ResolutionState
from effective_access.reports.assembler import ResultAssembler
from effective_access.resolution.hierarchy import GroupHierarchyResolver
from effective_access.resolution.ports import DirectoryClient
from effective_access.resolution.retry import RetryPolicy, call_with_retry
from effective_access.resolution.role_assignments import RoleAssignmentQueryClient

log = get_logger(__name__)


async def direct_groups_node(
    state: ResolutionState,
    *,
    directory: DirectoryClient,
    retry: RetryPolicy,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> ResolutionState:
    run = state["run"]
    run.tracker.advance(ResolutionStage.resolving_direct_groups)
    run.raise_if_cancelled()

    identity = state["identity"]
    try:
        group_ids = await call_with_retry(
            lambda: directory.get_direct_group_memberships(identity),
            policy=retry,
            sleep=sleep,
            operation=f"membership lookup {identity.object_id}",
        )
    except UpstreamError as e:
        log.warning("identity_unresolvable", status_code=e.status_code, error=str(e))
        raise UnresolvableIdentity(identity.object_id) from e

    direct = list(dict.fromkeys(g for g in group_ids if g))
    log.info("direct_groups_found", count=len(direct))
    return {"direct_group_ids": direct}


def route_after_direct_groups(
    state: ResolutionState,
) -> Literal["transitive_closure", "query_assignments"]:
    if state.get("direct_group_ids"):
        return "transitive_closure"
    return "query_assignments"


async def transitive_closure_node(
    state: ResolutionState, *, resolver: GroupHierarchyResolver
) -> ResolutionState:
    run = state["run"]
    run.tracker.advance(ResolutionStage.resolving_transitive_closure)
    run.raise_if_cancelled()

    resolved = await resolver.resolve_transitive_groups(
        state["direct_group_ids"],
        mode=run.mode,
        cancel_event=run.cancel_event,
    )
    run.tracker.record_groups(resolved)
    return {"resolved": resolved}


async def query_assignments_node(
    state: ResolutionState,
    *,
    query_client: RoleAssignmentQueryClient,
    directory: DirectoryClient,
    retry: RetryPolicy,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> ResolutionState:
    run = state["run"]
    run.tracker.advance(ResolutionStage.querying_assignments)
    run.raise_if_cancelled()

    identity = state["identity"]
    resolved = state.get("resolved") or ResolvedGroupSet(
        direct_group_ids=(),
        transitive_group_ids=frozenset(),
        group_info={},
        mode=run.mode,
    )
    principal_ids = [*identity.principal_ids, *sorted(resolved.all_group_ids)]
    records = await query_client.fetch_role_assignments(
        principal_ids, cancel_event=run.cancel_event
    )
    policies = await query_client.fetch_key_vault_access_policies(
        principal_ids, cancel_event=run.cancel_event
    )
    run.raise_if_cancelled()
    permissions = await _api_permissions(identity, directory=directory, retry=retry, sleep=sleep)
    return {
        "resolved": resolved,
        "role_assignments": records,
        "key_vault_access_policies": policies,
        "api_permissions": permissions,
    }


async def _api_permissions(
    identity: Identity,
    *,
    directory: DirectoryClient,
    retry: RetryPolicy,
    sleep: Callable[[float], Awaitable[None]],
) -> list[ApiPermission]:
    if not identity.type.is_service_principal:
        return []
    try:
        return await call_with_retry(
            lambda: directory.get_api_permissions(identity),
            policy=retry,
            sleep=sleep,
            operation=f"app role lookup {identity.object_id}",
        )
    except UpstreamError as e:
        # Reading app role grants needs its own directory permission; a refusal
        # leaves the rest of the report intact.
        log.warning("api_permissions_unavailable", status_code=e.status_code, error=str(e))
        return []


async def assemble_node(
    state: ResolutionState, *, assembler: ResultAssembler
) -> ResolutionState:
    run = state["run"]
    run.tracker.advance(ResolutionStage.assembling)

    report = assembler.assemble(
        identity=state["identity"],
        resolved=state["resolved"],
        role_assignments=state.get("role_assignments", []),
        key_vault_access_policies=state.get("key_vault_access_policies", []),
        api_permissions=state.get("api_permissions", []),
    )
    log.info(
        "report_assembled",
        direct_assignments=len(report.direct_role_assignments),
        direct_groups=len(report.direct_groups),
        indirect_groups=len(report.indirect_groups),
        key_vault_policies=len(report.key_vault_access_policies),
        api_permissions=len(report.api_permissions),
    )
    return {"report": report}


async def finish_node(state: ResolutionState) -> ResolutionState:
    state["run"].tracker.advance(ResolutionStage.complete)
    return {}
