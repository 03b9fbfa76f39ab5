"""
effective_access.clients.resource_graph

Azure Resource Graph implementation of the AuthorizationQueryService protocol.

Responsibilities:
- POST Kusto queries with `objectArray` result format and `$top`/`$skipToken` paging.
- Parse role assignment and Key Vault access policy rows and the continuation token.
- Signal throttling distinctly (RateLimitedError with the Retry-After hint).
"""

from __future__ import annotations

from typing import Any

import httpx

from effective_access.clients.http import send
from effective_access.domain.models import (
    KeyVaultAccessPolicy,
    KeyVaultPolicyPage,
    RoleAssignmentPage,
    RoleAssignmentRecord,
)

_SERVICE = "Azure Resource Graph"


def _rows(body: dict[str, Any]) -> list[dict[str, Any]]:
    rows = body.get("data")
    if not isinstance(rows, list):
        return []
    return [row for row in rows if isinstance(row, dict)]


def parse_role_assignment_rows(body: dict[str, Any]) -> tuple[RoleAssignmentRecord, ...]:
    return tuple(
        RoleAssignmentRecord(
            id=str(row.get("id") or ""),
            principal_id=str(row.get("principalId") or ""),
            principal_type=str(row.get("principalType") or ""),
            role_definition_id=str(row.get("roleDefinitionId") or ""),
            role_name=str(row.get("roleName") or ""),
            scope=str(row.get("scope") or ""),
        )
        for row in _rows(body)
    )


def _permission_list(permissions: Any, kind: str) -> tuple[str, ...]:
    if not isinstance(permissions, dict):
        return ()
    values = permissions.get(kind)
    if not isinstance(values, list):
        return ()
    return tuple(str(v) for v in values if v)


def parse_key_vault_policy_rows(body: dict[str, Any]) -> tuple[KeyVaultAccessPolicy, ...]:
    policies: list[KeyVaultAccessPolicy] = []
    for row in _rows(body):
        if not row.get("objectId"):
            continue
        permissions = row.get("permissions")
        policies.append(
            KeyVaultAccessPolicy(
                key_vault_id=str(row.get("id") or ""),
                key_vault_name=str(row.get("name") or ""),
                tenant_id=str(row.get("tenantId") or ""),
                object_id=str(row["objectId"]),
                application_id=str(row.get("applicationId") or ""),
                key_permissions=_permission_list(permissions, "keys"),
                secret_permissions=_permission_list(permissions, "secrets"),
                certificate_permissions=_permission_list(permissions, "certificates"),
                storage_permissions=_permission_list(permissions, "storage"),
            )
        )
    return tuple(policies)


class ResourceGraphClient:
    def __init__(
        self,
        *,
        http: httpx.AsyncClient,
        url: str,
        api_version: str = "2021-03-01",
        page_size: int = 1000,
    ) -> None:
        self._http = http
        self._url = url
        self._api_version = api_version
        self._page_size = page_size

    async def query_role_assignments(
        self, query: str, *, skip_token: str | None = None
    ) -> RoleAssignmentPage:
        body = await self._query(query, skip_token)
        return RoleAssignmentPage(
            records=parse_role_assignment_rows(body),
            skip_token=body.get("$skipToken") or None,
        )

    async def query_key_vault_access_policies(
        self, query: str, *, skip_token: str | None = None
    ) -> KeyVaultPolicyPage:
        body = await self._query(query, skip_token)
        return KeyVaultPolicyPage(
            records=parse_key_vault_policy_rows(body),
            skip_token=body.get("$skipToken") or None,
        )

    async def _query(self, query: str, skip_token: str | None) -> dict[str, Any]:
        options: dict[str, Any] = {"resultFormat": "objectArray", "$top": self._page_size}
        if skip_token:
            options["$skipToken"] = skip_token

        return await send(
            self._http,
            "POST",
            self._url,
            service=_SERVICE,
            params={"api-version": self._api_version},
            json={"query": query, "options": options},
        )


# --- Module Notes -----------------------------------------------------------
# Resource Graph also reports quota state in `x-ms-user-quota-remaining`; the
# Retry-After header on 429 is the only signal this client acts on.
