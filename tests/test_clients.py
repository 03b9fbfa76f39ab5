"""
tests.test_clients

Graph and Resource Graph clients against `httpx.MockTransport`.
"""

from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime

import httpx
import pytest

from effective_access.clients.graph_directory import GraphDirectoryClient
from effective_access.clients.http import bearer_headers, parse_retry_after
from effective_access.clients.resource_graph import ResourceGraphClient
from effective_access.domain.errors import RateLimitedError, TransientQueryError, UpstreamError
from effective_access.domain.models import Identity, IdentityType

GRAPH = "https://graph.test/v1.0"
RESOURCE_GRAPH = "https://arm.test/providers/Microsoft.ResourceGraph/resources"


def _group(group_id: str, *, security: bool = True) -> dict:
    return {"@odata.type": "#microsoft.graph.group", "id": group_id, "securityEnabled": security}


def _graph_client(handler) -> tuple[GraphDirectoryClient, httpx.AsyncClient]:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=GRAPH)
    return GraphDirectoryClient(http=http), http


@pytest.mark.asyncio
async def test_user_memberships_follow_next_link_and_keep_security_groups() -> None:
    seen: list[httpx.URL] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url)
        assert request.url.path == "/v1.0/users/u1/memberOf"
        if request.url.params.get("$skiptoken") == "p2":
            return httpx.Response(200, json={"value": [_group("g3"), _group("g1")]})
        return httpx.Response(
            200,
            json={
                "value": [
                    _group("g1"),
                    _group("m365", security=False),
                    {"@odata.type": "#microsoft.graph.directoryRole", "id": "role1"},
                    _group("g2"),
                ],
                "@odata.nextLink": f"{GRAPH}/users/u1/memberOf?$skiptoken=p2",
            },
        )

    client, http = _graph_client(handler)
    async with http:
        groups = await client.get_direct_group_memberships(
            Identity(object_id="u1", type=IdentityType.user)
        )

    assert groups == ["g1", "g2", "g3"]
    assert len(seen) == 2
    assert seen[0].params.get("$top") == "999"


@pytest.mark.parametrize(
    "kind",
    [
        IdentityType.service_principal,
        IdentityType.user_assigned_managed_identity,
        IdentityType.system_assigned_managed_identity,
    ],
)
@pytest.mark.asyncio
async def test_service_principals_use_service_principal_membership(kind: IdentityType) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1.0/servicePrincipals/sp1/memberOf"
        return httpx.Response(200, json={"value": [_group("g1")]})

    client, http = _graph_client(handler)
    async with http:
        groups = await client.get_direct_group_memberships(Identity(object_id="sp1", type=kind))

    assert groups == ["g1"]


@pytest.mark.parametrize(("security", "expected"), [(True, ["g9"]), (False, [])])
@pytest.mark.asyncio
async def test_group_identity_counts_itself_when_security_enabled(
    security: bool, expected: list[str]
) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1.0/groups/g9"
        return httpx.Response(200, json=_group("g9", security=security))

    client, http = _graph_client(handler)
    async with http:
        groups = await client.get_direct_group_memberships(
            Identity(object_id="g9", type=IdentityType.group)
        )

    assert groups == expected


@pytest.mark.asyncio
async def test_group_info_combines_metadata_and_parents() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/v1.0/groups/g1":
            return httpx.Response(
                200,
                json={"id": "g1", "displayName": "Ops", "description": None, "securityEnabled": True},
            )
        assert request.url.path == "/v1.0/groups/g1/memberOf"
        return httpx.Response(200, json={"value": [_group("p1"), _group("p2", security=False)]})

    client, http = _graph_client(handler)
    async with http:
        node = await client.get_group_info("g1")

    assert node.id == "g1"
    assert node.display_name == "Ops"
    assert node.description == ""
    assert node.parent_group_ids == ("p1",)


@pytest.mark.parametrize(
    ("status", "headers", "error", "retry_after"),
    [
        (429, {"Retry-After": "7"}, RateLimitedError, 7.0),
        (503, {}, RateLimitedError, None),
        (500, {}, TransientQueryError, None),
    ],
)
@pytest.mark.asyncio
async def test_retryable_statuses(status: int, headers: dict, error: type, retry_after) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, headers=headers, json={})

    client, http = _graph_client(handler)
    async with http:
        with pytest.raises(error) as exc_info:
            await client.get_group_info("g1")

    assert exc_info.value.retry_after == retry_after
    if error is TransientQueryError:
        assert not isinstance(exc_info.value, RateLimitedError)


@pytest.mark.asyncio
async def test_client_errors_are_upstream_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"error": {"code": "Request_ResourceNotFound"}})

    client, http = _graph_client(handler)
    async with http:
        with pytest.raises(UpstreamError) as exc_info:
            await client.get_direct_group_memberships(
                Identity(object_id="missing", type=IdentityType.user)
            )

    assert exc_info.value.status_code == 404


@pytest.mark.asyncio
async def test_transport_errors_are_transient() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client, http = _graph_client(handler)
    async with http:
        with pytest.raises(TransientQueryError):
            await client.get_group_info("g1")


@pytest.mark.asyncio
async def test_resource_graph_posts_query_and_parses_page() -> None:
    bodies: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "POST"
        assert request.url.params.get("api-version") == "2021-03-01"
        bodies.append(json.loads(request.content))
        return httpx.Response(
            200,
            json={
                "totalRecords": 3,
                "data": [
                    {
                        "id": "/subscriptions/s1/providers/Microsoft.Authorization/roleAssignments/a1",
                        "principalId": "p1",
                        "principalType": "Group",
                        "roleDefinitionId": "/providers/Microsoft.Authorization/roleDefinitions/r1",
                        "roleName": "Reader",
                        "scope": "/subscriptions/s1",
                    }
                ],
                "$skipToken": "next-page",
            },
        )

    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    client = ResourceGraphClient(http=http, url=RESOURCE_GRAPH, page_size=500)
    async with http:
        page = await client.query_role_assignments("authorizationresources", skip_token="tok")

    assert bodies == [
        {
            "query": "authorizationresources",
            "options": {"resultFormat": "objectArray", "$top": 500, "$skipToken": "tok"},
        }
    ]
    assert page.skip_token == "next-page"
    (record,) = page.records
    assert record.principal_id == "p1"
    assert record.role_name == "Reader"
    assert record.scope == "/subscriptions/s1"


@pytest.mark.asyncio
async def test_resource_graph_last_page_has_no_token() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert "$skipToken" not in json.loads(request.content)["options"]
        return httpx.Response(200, json={"data": []})

    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    client = ResourceGraphClient(http=http, url=RESOURCE_GRAPH)
    async with http:
        page = await client.query_role_assignments("authorizationresources")

    assert page.records == ()
    assert page.skip_token is None


@pytest.mark.asyncio
async def test_resource_graph_throttling_is_rate_limited_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, headers={"Retry-After": "3"})

    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    client = ResourceGraphClient(http=http, url=RESOURCE_GRAPH)
    async with http:
        with pytest.raises(RateLimitedError) as exc_info:
            await client.query_role_assignments("authorizationresources")

    assert exc_info.value.retry_after == 3.0


def test_parse_retry_after_accepts_http_dates() -> None:
    now = datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)

    assert parse_retry_after("Mon, 01 Jan 2024 12:00:30 GMT", now=now) == 30.0
    assert parse_retry_after("Mon, 01 Jan 2024 11:00:00 GMT", now=now) == 0.0
    assert parse_retry_after("soon", now=now) is None
    assert parse_retry_after(None) is None
    assert parse_retry_after("-1") is None


def test_bearer_headers_omit_empty_token() -> None:
    assert bearer_headers("") == {}
    assert bearer_headers("abc") == {"Authorization": "Bearer abc"}


@pytest.mark.asyncio
async def test_non_json_body_is_transient() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>maintenance</html>")

    client, http = _graph_client(handler)
    async with http:
        with pytest.raises(TransientQueryError) as exc_info:
            await client.get_direct_group_memberships(Identity(object_id="u1", type=IdentityType.user))

    assert "non-JSON" in str(exc_info.value)


@pytest.mark.asyncio
async def test_non_object_json_body_is_upstream_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=["unexpected"])

    client, http = _graph_client(handler)
    async with http:
        with pytest.raises(UpstreamError):
            await client.get_direct_group_memberships(Identity(object_id="u1", type=IdentityType.user))


@pytest.mark.parametrize(
    "failure",
    [
        lambda request: httpx.DecodingError("bad gzip stream", request=request),
        lambda request: httpx.TooManyRedirects("redirect loop", request=request),
        lambda request: httpx.ReadTimeout("read timed out", request=request),
    ],
)
@pytest.mark.asyncio
async def test_every_request_error_is_transient(failure) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise failure(request)

    client, http = _graph_client(handler)
    async with http:
        with pytest.raises(TransientQueryError):
            await client.get_direct_group_memberships(Identity(object_id="u1", type=IdentityType.user))


@pytest.mark.asyncio
async def test_group_info_failure_cancels_sibling_request() -> None:
    cancelled = asyncio.Event()

    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/v1.0/groups/g1":
            return httpx.Response(403, json={"error": {"code": "Authorization_RequestDenied"}})
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            cancelled.set()
            raise
        return httpx.Response(200, json={"value": []})

    client, http = _graph_client(handler)
    async with http:
        with pytest.raises(UpstreamError) as exc_info:
            await client.get_group_info("g1")

    assert exc_info.value.status_code == 403
    assert cancelled.is_set()


@pytest.mark.asyncio
async def test_api_permissions_resolve_app_role_names() -> None:
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        seen.append(path)
        if path == "/v1.0/servicePrincipals/sp1/appRoleAssignments":
            assert request.url.params.get("$top") == "999"
            return httpx.Response(
                200,
                json={
                    "value": [
                        {"id": "a1", "resourceId": "r1", "appRoleId": "role-read", "resourceDisplayName": "Graph"},
                        {"id": "a2", "resourceId": "r1", "appRoleId": "role-unknown"},
                        {"id": "a3", "resourceId": "r2", "appRoleId": "role-x", "resourceDisplayName": "Partner API"},
                        {"id": "a4", "resourceId": "r1"},
                    ]
                },
            )
        if path == "/v1.0/servicePrincipals/r1":
            return httpx.Response(
                200,
                json={
                    "id": "r1",
                    "displayName": "Microsoft Graph",
                    "appRoles": [{"id": "role-read", "value": "User.Read.All"}],
                },
            )
        assert path == "/v1.0/servicePrincipals/r2"
        return httpx.Response(404, json={})

    client, http = _graph_client(handler)
    async with http:
        permissions = await client.get_api_permissions(
            Identity(object_id="sp1", type=IdentityType.user_assigned_managed_identity)
        )

    assert [(p.id, p.resource_display_name, p.permission_value) for p in permissions] == [
        ("a1", "Microsoft Graph", "User.Read.All"),
        ("a2", "Microsoft Graph", ""),
        ("a3", "Partner API", ""),
    ]
    assert all(p.permission_type == "Application" for p in permissions)
    # each resource looked up once
    assert seen.count("/v1.0/servicePrincipals/r1") == 1


@pytest.mark.asyncio
async def test_users_have_no_api_permissions() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError(f"unexpected request {request.url}")

    client, http = _graph_client(handler)
    async with http:
        permissions = await client.get_api_permissions(Identity(object_id="u1", type=IdentityType.user))

    assert permissions == []


@pytest.mark.asyncio
async def test_resource_graph_parses_key_vault_policy_rows() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert json.loads(request.content)["query"] == "resources"
        return httpx.Response(
            200,
            json={
                "data": [
                    {
                        "id": "/subscriptions/s1/resourceGroups/rg/providers/Microsoft.KeyVault/vaults/kv1",
                        "name": "kv1",
                        "tenantId": "t1",
                        "objectId": "p1",
                        "applicationId": "",
                        "permissions": {"keys": ["get"], "secrets": ["get", "list"], "certificates": None},
                    },
                    {"id": "kv-without-principal", "name": "kv2", "objectId": ""},
                    "not-a-row",
                ]
            },
        )

    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    client = ResourceGraphClient(http=http, url=RESOURCE_GRAPH)
    async with http:
        page = await client.query_key_vault_access_policies("resources")

    (policy,) = page.records
    assert policy.key_vault_name == "kv1"
    assert policy.object_id == "p1"
    assert policy.key_permissions == ("get",)
    assert policy.secret_permissions == ("get", "list")
    assert policy.certificate_permissions == ()
    assert policy.storage_permissions == ()
    assert page.skip_token is None
