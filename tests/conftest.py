"""
tests.conftest

In-memory collaborators and deterministic clocks shared by the test suite.

Responsibilities:
- Fake directory (group graph, scripted failures, call accounting).
- Fake authorization query service (paging, scripted errors, request timestamps).
- Clocks whose time only moves when a test (or an awaited sleep) moves it.
"""

from __future__ import annotations

import asyncio
from collections import Counter
from collections.abc import Callable

import pytest

from effective_access.domain.models import (
    ApiPermission,
    GroupNode,
    Identity,
    KeyVaultAccessPolicy,
    KeyVaultPolicyPage,
    RoleAssignmentPage,
    RoleAssignmentRecord,
)
from effective_access.settings import Settings


def gid(n: int) -> str:
    # Deterministic GUIDs so ids survive principal-id validation.
    return f"00000000-0000-0000-0000-{n:012d}"


def assignment(principal_id: str, role: str = "Reader", scope: str = "/subscriptions/s1") -> RoleAssignmentRecord:
    return RoleAssignmentRecord(
        id=f"{scope}/providers/Microsoft.Authorization/roleAssignments/{principal_id}-{role}",
        principal_id=principal_id,
        principal_type="Group",
        role_definition_id=f"/providers/Microsoft.Authorization/roleDefinitions/{role.lower()}",
        role_name=role,
        scope=scope,
    )


def vault_policy(object_id: str, vault: str = "kv-app", *secrets: str) -> KeyVaultAccessPolicy:
    return KeyVaultAccessPolicy(
        key_vault_id=f"/subscriptions/s1/resourceGroups/rg/providers/Microsoft.KeyVault/vaults/{vault}",
        key_vault_name=vault,
        tenant_id=gid(900),
        object_id=object_id,
        secret_permissions=secrets or ("get", "list"),
    )


class FakeDirectory:
    def __init__(
        self,
        parents: dict[str, list[str]] | None = None,
        *,
        memberships: dict[str, list[str]] | None = None,
        names: dict[str, str] | None = None,
    ) -> None:
        self.parents = parents or {}
        self.memberships = memberships or {}
        self.names = names or {}
        # group id -> exceptions raised (in order) before the lookup succeeds
        self.failures: dict[str, list[Exception]] = {}
        self.permanent_failures: dict[str, Exception] = {}
        self.membership_failures: list[Exception] = []
        # object id -> app role grants; `api_permission_failures` raise first
        self.api_permissions: dict[str, list[ApiPermission]] = {}
        self.api_permission_failures: list[Exception] = []
        self.api_permission_calls = 0
        self.after_call: Callable[[str], None] | None = None

        self.calls: Counter[str] = Counter()
        self.membership_calls = 0
        self.in_flight = 0
        self.max_in_flight = 0

    async def get_direct_group_memberships(self, identity: Identity) -> list[str]:
        self.membership_calls += 1
        await asyncio.sleep(0)
        if self.membership_failures:
            raise self.membership_failures.pop(0)
        return list(self.memberships.get(identity.object_id, []))

    async def get_api_permissions(self, identity: Identity) -> list[ApiPermission]:
        self.api_permission_calls += 1
        await asyncio.sleep(0)
        if self.api_permission_failures:
            raise self.api_permission_failures.pop(0)
        return list(self.api_permissions.get(identity.object_id, []))

    async def get_group_info(self, group_id: str) -> GroupNode:
        self.calls[group_id] += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            if self.after_call is not None:
                self.after_call(group_id)
            if group_id in self.permanent_failures:
                raise self.permanent_failures[group_id]
            queued = self.failures.get(group_id)
            if queued:
                raise queued.pop(0)
            return GroupNode(
                id=group_id,
                display_name=self.names.get(group_id, f"group {group_id}"),
                description=f"description of {group_id}",
                parent_group_ids=tuple(self.parents.get(group_id, ())),
            )
        finally:
            self.in_flight -= 1


class FakeAuthorizationService:
    """
    Returns the records whose principal id appears in the query, `page_size` at a
    time, using the next offset as the continuation token. Key Vault policies are
    served the same way with their own query log and scripted errors.
    """

    def __init__(
        self,
        records: list[RoleAssignmentRecord] | None = None,
        *,
        policies: list[KeyVaultAccessPolicy] | None = None,
        page_size: int = 100,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.records = list(records or [])
        self.policies = list(policies or [])
        self.page_size = page_size
        self.clock = clock
        self.errors: list[Exception] = []
        self.queries: list[tuple[str, str | None]] = []
        self.request_times: list[float] = []
        self.policy_errors: list[Exception] = []
        self.policy_queries: list[tuple[str, str | None]] = []

    async def query_role_assignments(
        self, query: str, *, skip_token: str | None = None
    ) -> RoleAssignmentPage:
        self.queries.append((query, skip_token))
        if self.clock is not None:
            self.request_times.append(self.clock())
        await asyncio.sleep(0)
        if self.errors:
            raise self.errors.pop(0)

        matching = [r for r in self.records if f"'{r.principal_id.lower()}'" in query]
        start = int(skip_token or 0)
        end = start + self.page_size
        return RoleAssignmentPage(
            records=tuple(matching[start:end]),
            skip_token=str(end) if end < len(matching) else None,
        )

    async def query_key_vault_access_policies(
        self, query: str, *, skip_token: str | None = None
    ) -> KeyVaultPolicyPage:
        self.policy_queries.append((query, skip_token))
        await asyncio.sleep(0)
        if self.policy_errors:
            raise self.policy_errors.pop(0)

        matching = [p for p in self.policies if f"'{p.object_id.lower()}'" in query]
        start = int(skip_token or 0)
        end = start + self.page_size
        return KeyVaultPolicyPage(
            records=tuple(matching[start:end]),
            skip_token=str(end) if end < len(matching) else None,
        )


class FakeClock:
    """
    Manual clock: sleepers wake only when `advance` moves time past their deadline.
    """

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []
        self._cond = asyncio.Condition()

    def __call__(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        target = self.now + delay
        async with self._cond:
            await self._cond.wait_for(lambda: self.now >= target)

    async def advance(self, seconds: float) -> None:
        self.now += seconds
        async with self._cond:
            self._cond.notify_all()
        await settle()


class AutoClock:
    """
    Clock whose sleep returns at once after moving time forward by the delay.
    """

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.now += delay
        await asyncio.sleep(0)


async def settle(rounds: int = 20) -> None:
    # Let every ready task run until it blocks on something the test controls.
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def auto_clock() -> AutoClock:
    return AutoClock()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        env="test",
        max_degree_of_parallelism=4,
        max_retry_attempts=3,
        retry_base_delay_seconds=1.0,
        max_backoff_seconds=60.0,
    )


# --- Module Notes -----------------------------------------------------------
# Fakes yield to the event loop on every call so parallel resolution actually
# interleaves; without the yield each fetch would complete before the next starts.
