"""
effective_access.resolution.role_assignments

Batched, paginated authorization queries (role assignments and Key Vault access
policies) against the authorization service.

Responsibilities:
- Validate principal ids before they are interpolated into a query.
- Build a single disjunctive query for all principals of a resolution.
- Follow continuation tokens until the result set is complete.
- Coordinate with the process-wide throttle window and retry transient failures.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Awaitable, Callable, Iterable
from typing import Protocol, TypeVar

from tenacity import RetryCallState, RetryError

from effective_access.domain.errors import InvalidPrincipalId, RateLimitedError, ResolutionAborted
from effective_access.domain.models import KeyVaultAccessPolicy, RoleAssignmentRecord
from effective_access.observability.logging import get_logger
from effective_access.resolution.ports import AuthorizationQueryService
from effective_access.resolution.retry import RetryPolicy, exhausted, failure_of
from effective_access.resolution.throttle import ThrottleCoordinator, get_throttle_coordinator
from effective_access.settings import Settings

log = get_logger(__name__)

R = TypeVar("R", covariant=True)


class _Page(Protocol[R]):
    @property
    def records(self) -> tuple[R, ...]: ...

    @property
    def skip_token(self) -> str | None: ...


_ROLE_ASSIGNMENTS_QUERY = """authorizationresources
| where type =~ 'microsoft.authorization/roleassignments'
| extend principalType = tostring(properties['principalType'])
| extend principalId = tostring(properties['principalId'])
| extend roleDefinitionId = tolower(tostring(properties['roleDefinitionId']))
| extend scope = tostring(properties['scope'])
| where {principal_filter}
| join kind=inner (
    authorizationresources
    | where type =~ 'microsoft.authorization/roledefinitions'
    | extend id = tolower(id), roleName = tostring(properties['roleName'])
) on $left.roleDefinitionId == $right.id
| project id, principalId, principalType, roleDefinitionId, roleName, scope"""

_KEY_VAULT_POLICIES_QUERY = """resources
| where type =~ 'microsoft.keyvault/vaults'
| extend tenantId = tostring(properties['tenantId'])
| mv-expand accessPolicy = properties['accessPolicies']
| extend objectId = tolower(tostring(accessPolicy['objectId']))
| where {principal_filter}
| extend applicationId = tostring(accessPolicy['applicationId'])
| extend permissions = accessPolicy['permissions']
| project id, name, tenantId, objectId, applicationId, permissions"""


def validate_principal_id(principal_id: str) -> str:
    """
    Return the canonical (lowercase, hyphenated) form of a GUID principal id.
    Anything else raises InvalidPrincipalId; only canonical GUIDs reach a query.
    """

    try:
        return str(uuid.UUID(principal_id.strip()))
    except (AttributeError, ValueError) as e:
        raise InvalidPrincipalId(str(principal_id)) from e


def _principal_filter(column: str, principal_ids: Iterable[str]) -> str:
    ids = list(principal_ids)
    if not ids:
        raise ValueError("at least one principal id is required")
    return " or ".join(f"{column} == '{pid}'" for pid in ids)


def build_role_assignment_query(principal_ids: Iterable[str]) -> str:
    return _ROLE_ASSIGNMENTS_QUERY.format(
        principal_filter=_principal_filter("principalId", principal_ids)
    )


def build_key_vault_policy_query(principal_ids: Iterable[str]) -> str:
    return _KEY_VAULT_POLICIES_QUERY.format(
        principal_filter=_principal_filter("objectId", principal_ids)
    )


class RoleAssignmentQueryClient:
    def __init__(
        self,
        *,
        service: AuthorizationQueryService,
        throttle: ThrottleCoordinator | None = None,
        retry: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._service = service
        self._throttle = throttle or get_throttle_coordinator()
        self._retry = retry or RetryPolicy()
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls,
        *,
        service: AuthorizationQueryService,
        settings: Settings,
        throttle: ThrottleCoordinator | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> RoleAssignmentQueryClient:
        return cls(
            service=service,
            throttle=throttle,
            retry=RetryPolicy.from_settings(settings),
            sleep=sleep,
        )

    async def fetch_role_assignments(
        self,
        principal_ids: Iterable[str],
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> list[RoleAssignmentRecord]:
        """
        Fetch every role assignment bound to any of `principal_ids`.

        Malformed ids are dropped. No request is sent when nothing valid remains.
        Record order across pages follows arrival order and carries no meaning.
        """

        valid = self._validated(principal_ids)
        if not valid:
            return []

        query = build_role_assignment_query(valid)
        records, pages = await self._fetch_all(
            lambda token: self._service.query_role_assignments(query, skip_token=token),
            operation="role assignment query",
            cancel_event=cancel_event,
        )
        log.info(
            "role_assignments_fetched",
            principals=len(valid),
            pages=pages,
            records=len(records),
        )
        return records

    async def fetch_key_vault_access_policies(
        self,
        principal_ids: Iterable[str],
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> list[KeyVaultAccessPolicy]:
        """
        Fetch the Key Vault access policy entries granted to any of `principal_ids`.
        One entry per (vault, principal) pair; vaults using RBAC only yield nothing.
        """

        valid = self._validated(principal_ids)
        if not valid:
            return []

        query = build_key_vault_policy_query(valid)
        records, pages = await self._fetch_all(
            lambda token: self._service.query_key_vault_access_policies(query, skip_token=token),
            operation="key vault access policy query",
            cancel_event=cancel_event,
        )
        # Only entries granted to the requested principals reach the report.
        wanted = set(valid)
        policies = [p for p in records if p.object_id.lower() in wanted]
        log.info(
            "key_vault_policies_fetched",
            principals=len(valid),
            pages=pages,
            policies=len(policies),
            vaults=len({p.key_vault_id for p in policies}),
        )
        return policies

    def _validated(self, principal_ids: Iterable[str]) -> list[str]:
        valid: list[str] = []
        for raw in principal_ids:
            try:
                valid.append(validate_principal_id(raw))
            except InvalidPrincipalId as e:
                log.warning("principal_id_dropped", principal_id=e.principal_id)
        # de-dupe while keeping order
        return list(dict.fromkeys(valid))

    async def _fetch_all(
        self,
        fetch_page: Callable[[str | None], Awaitable[_Page[R]]],
        *,
        operation: str,
        cancel_event: asyncio.Event | None,
    ) -> tuple[list[R], int]:
        records: list[R] = []
        skip_token: str | None = None
        pages = 0
        while True:
            if cancel_event is not None and cancel_event.is_set():
                raise ResolutionAborted(f"{operation} cancelled after {pages} pages")
            page = await self._query_page(fetch_page, skip_token, operation=operation)
            pages += 1
            records.extend(page.records)
            skip_token = page.skip_token
            if not skip_token:
                return records, pages

    async def _query_page(
        self,
        fetch_page: Callable[[str | None], Awaitable[_Page[R]]],
        skip_token: str | None,
        *,
        operation: str,
    ) -> _Page[R]:
        async def attempt() -> _Page[R]:
            # Every attempt, including the first, honours an active block.
            await self._throttle.wait_until_clear()
            return await fetch_page(skip_token)

        retrying = self._retry.retrying(
            sleep=self._pause,
            before_sleep=self._before_retry,
            wait=self._backoff,
        )
        try:
            page = await retrying(attempt)
        except RetryError as e:
            raise exhausted(e, operation) from e.last_attempt.exception()
        self._throttle.clear()
        return page

    def _backoff(self, state: RetryCallState) -> float:
        if isinstance(failure_of(state), RateLimitedError):
            # The shared window does the waiting; see `_before_retry`.
            return 0.0
        return self._retry.backoff(state)

    def _before_retry(self, state: RetryCallState) -> None:
        exc = failure_of(state)
        if isinstance(exc, RateLimitedError):
            delay = self._retry.backoff(state)
            # Block every caller in the process, then retry this same page once
            # the window has passed.
            self._throttle.extend(delay)
            log.warning(
                "authorization_query_throttled",
                attempt=state.attempt_number,
                max_attempts=self._retry.max_attempts,
                delay_seconds=delay,
                server_hint=exc.retry_after is not None,
            )
            return
        log.warning(
            "authorization_query_retry",
            attempt=state.attempt_number,
            max_attempts=self._retry.max_attempts,
            delay_seconds=state.next_action.sleep if state.next_action else None,
            error=str(exc),
        )

    async def _pause(self, delay: float) -> None:
        if delay > 0:
            await self._sleep(delay)


# --- Module Notes -----------------------------------------------------------
# Ids are validated as GUIDs before interpolation: the query language has no bind
# parameters, so validation is what keeps the filter injection-free.
