"""
effective_access.resolution.ports

Collaborator interfaces consumed by the resolver and the query client.

Responsibilities:
- Describe the directory service (group memberships, group metadata, app role grants).
- Describe the authorization query service (paginated role assignment and
  Key Vault access policy rows).
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from effective_access.domain.models import (
    ApiPermission,
    GroupNode,
    Identity,
    KeyVaultPolicyPage,
    RoleAssignmentPage,
)


@runtime_checkable
class DirectoryClient(Protocol):
    async def get_direct_group_memberships(self, identity: Identity) -> list[str]:
        """Return ids of security groups the identity is a direct member of."""
        ...

    async def get_group_info(self, group_id: str) -> GroupNode:
        """Return display metadata and direct parent group ids for a group."""
        ...

    async def get_api_permissions(self, identity: Identity) -> list[ApiPermission]:
        """
        Return the application permissions granted to a service principal.
        Identities that cannot hold app roles yield an empty list.
        """
        ...


@runtime_checkable
class AuthorizationQueryService(Protocol):
    async def query_role_assignments(
        self, query: str, *, skip_token: str | None = None
    ) -> RoleAssignmentPage:
        """
        Run one page of a role assignment query.
        Must raise RateLimitedError (not a generic error) when throttled.
        """
        ...

    async def query_key_vault_access_policies(
        self, query: str, *, skip_token: str | None = None
    ) -> KeyVaultPolicyPage:
        """Run one page of a Key Vault access policy query. Same error contract."""
        ...


# --- Module Notes -----------------------------------------------------------
# Implementations over Microsoft Graph / Azure Resource Graph live in `clients`;
# tests provide in-memory fakes.
