"""
effective_access.clients.graph_directory

Microsoft Graph implementation of the DirectoryClient protocol.

Responsibilities:
- Look up direct security-group memberships per identity type.
- Fetch group metadata together with its direct parent groups.
- Resolve a service principal's app role assignments into named API permissions.
- Follow `@odata.nextLink` paging on Graph collections.
"""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from typing import Any, assert_never

import httpx

from effective_access.clients.http import send
from effective_access.domain.errors import AccessQueryError, UpstreamError
from effective_access.domain.models import ApiPermission, GroupNode, Identity, IdentityType
from effective_access.observability.logging import get_logger

log = get_logger(__name__)

_SERVICE = "Microsoft Graph"
_GROUP_ODATA_TYPE = "#microsoft.graph.group"
MAX_GRAPH_PAGE_SIZE = 999


def _security_group_ids(items: list[dict[str, Any]]) -> list[str]:
    ids: list[str] = []
    for item in items:
        if item.get("@odata.type") != _GROUP_ODATA_TYPE:
            continue
        if item.get("securityEnabled") is not True or not item.get("id"):
            continue
        ids.append(str(item["id"]))
    return list(dict.fromkeys(ids))


async def _run_together(*coros: Coroutine[Any, Any, Any]) -> list[Any]:
    """
    Run `coros` in one task group and return their results in order.

    A failure cancels the siblings; the first AccessQueryError is re-raised bare so
    callers keep matching on the error taxonomy instead of an ExceptionGroup.
    """

    try:
        async with asyncio.TaskGroup() as tg:
            tasks = [tg.create_task(coro) for coro in coros]
    except ExceptionGroup as eg:
        for exc in eg.exceptions:
            if isinstance(exc, AccessQueryError):
                raise exc
        raise
    return [task.result() for task in tasks]


class GraphDirectoryClient:
    """
    `http` must be configured with the Graph base URL and a bearer token.
    """

    def __init__(self, *, http: httpx.AsyncClient) -> None:
        self._http = http

    async def get_direct_group_memberships(self, identity: Identity) -> list[str]:
        object_id = identity.object_id
        kind = identity.type
        if kind is IdentityType.user:
            return await self._member_of(f"/users/{object_id}/memberOf")
        elif (
            kind is IdentityType.service_principal
            or kind is IdentityType.user_assigned_managed_identity
            or kind is IdentityType.system_assigned_managed_identity
        ):
            # Managed identities are service principals in the directory.
            return await self._member_of(f"/servicePrincipals/{object_id}/memberOf")
        elif kind is IdentityType.group:
            # A group's own assignments count, so it stands in as its own membership.
            group = await self._group(object_id)
            return [object_id] if group.get("securityEnabled") is True else []
        else:
            assert_never(kind)

    async def get_group_info(self, group_id: str) -> GroupNode:
        group, parent_ids = await _run_together(
            self._group(group_id),
            self._member_of(f"/groups/{group_id}/memberOf"),
        )
        return GroupNode(
            id=str(group.get("id") or group_id),
            display_name=group.get("displayName") or "",
            description=group.get("description") or "",
            parent_group_ids=tuple(parent_ids),
        )

    async def get_api_permissions(self, identity: Identity) -> list[ApiPermission]:
        if not identity.type.is_service_principal:
            log.debug("api_permissions_skipped", identity_type=identity.type.value)
            return []

        grants = [
            item
            for item in await self._collect(
                f"/servicePrincipals/{identity.object_id}/appRoleAssignments"
            )
            if item.get("resourceId") and item.get("appRoleId")
        ]
        resource_ids = list(dict.fromkeys(str(g["resourceId"]) for g in grants))
        resources = dict(
            zip(
                resource_ids,
                await _run_together(*(self._resource(rid) for rid in resource_ids)),
                strict=True,
            )
        )

        permissions: list[ApiPermission] = []
        for grant in grants:
            resource_id = str(grant["resourceId"])
            app_role_id = str(grant["appRoleId"])
            resource = resources[resource_id]
            role_values = {
                str(role.get("id")): role.get("value") or ""
                for role in resource.get("appRoles") or []
            }
            permissions.append(
                ApiPermission(
                    id=str(grant.get("id") or ""),
                    resource_id=resource_id,
                    resource_display_name=(
                        resource.get("displayName") or grant.get("resourceDisplayName") or ""
                    ),
                    app_role_id=app_role_id,
                    permission_value=role_values.get(app_role_id, ""),
                )
            )
        return permissions

    async def _group(self, group_id: str) -> dict[str, Any]:
        return await send(
            self._http,
            "GET",
            f"/groups/{group_id}",
            service=_SERVICE,
            params={"$select": "id,displayName,description,securityEnabled"},
        )

    async def _resource(self, resource_id: str) -> dict[str, Any]:
        try:
            return await send(
                self._http,
                "GET",
                f"/servicePrincipals/{resource_id}",
                service=_SERVICE,
                params={"$select": "id,displayName,appRoles"},
            )
        except UpstreamError as e:
            # Resource app in another tenant or hidden from the caller: keep the
            # grant, without the role name.
            log.debug("api_resource_unavailable", resource_id=resource_id, status_code=e.status_code)
            return {}

    async def _member_of(self, path: str) -> list[str]:
        return _security_group_ids(await self._collect(path))

    async def _collect(self, path: str) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        url: str | None = path
        params: dict[str, Any] | None = {"$top": MAX_GRAPH_PAGE_SIZE}
        while url:
            body = await send(self._http, "GET", url, service=_SERVICE, params=params)
            items.extend(body.get("value", []))
            url = body.get("@odata.nextLink")
            # nextLink already carries the paging query string.
            params = None
        return items


# --- Module Notes -----------------------------------------------------------
# Only security-enabled groups can hold Azure role assignments; Microsoft 365
# groups, directory roles and administrative units are filtered out of memberOf.
