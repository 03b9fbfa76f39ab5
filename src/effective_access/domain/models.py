"""
effective_access.domain.models

Value types shared by the resolver, the query client and the assembler.

Responsibilities:
- Describe identities, groups and role assignments as immutable values.
- Describe the resolver output (`ResolvedGroupSet`) and the rendered report.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field


class IdentityType(enum.StrEnum):
    user = "User"
    group = "Group"
    service_principal = "ServicePrincipal"
    user_assigned_managed_identity = "UserAssignedManagedIdentity"
    system_assigned_managed_identity = "SystemAssignedManagedIdentity"

    @property
    def is_service_principal(self) -> bool:
        # Managed identities are service principals in the directory.
        return self in (
            IdentityType.service_principal,
            IdentityType.user_assigned_managed_identity,
            IdentityType.system_assigned_managed_identity,
        )


class ResolutionMode(enum.StrEnum):
    sequential = "sequential"
    parallel = "parallel"


class ResolutionStage(enum.StrEnum):
    idle = "idle"
    resolving_direct_groups = "resolving_direct_groups"
    resolving_transitive_closure = "resolving_transitive_closure"
    querying_assignments = "querying_assignments"
    assembling = "assembling"
    complete = "complete"
    failed = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ResolutionStage.complete, ResolutionStage.failed)


@dataclass(frozen=True, slots=True)
class Identity:
    """
    A directory principal whose effective access is being resolved.
    For service principals `object_id` is the enterprise application object id.
    """

    object_id: str
    type: IdentityType
    display_name: str = ""
    email: str | None = None
    application_id: str | None = None

    @property
    def principal_ids(self) -> tuple[str, ...]:
        # Role assignments may be bound to either the object id or the app id.
        ids = [self.object_id]
        if self.application_id and self.application_id != self.object_id:
            ids.append(self.application_id)
        return tuple(ids)


@dataclass(frozen=True, slots=True)
class GroupNode:
    id: str
    display_name: str = ""
    description: str = ""
    # Direct parents only ("member-of" edges).
    parent_group_ids: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class RoleAssignmentRecord:
    id: str
    principal_id: str
    principal_type: str
    role_definition_id: str
    role_name: str
    scope: str


@dataclass(frozen=True, slots=True)
class RoleAssignmentPage:
    records: tuple[RoleAssignmentRecord, ...] = ()
    skip_token: str | None = None


@dataclass(frozen=True, slots=True)
class KeyVaultAccessPolicy:
    """
    One access policy entry of a Key Vault (legacy, non-RBAC permission model),
    granted to `object_id`.
    """

    key_vault_id: str
    key_vault_name: str
    tenant_id: str
    object_id: str
    application_id: str = ""
    key_permissions: tuple[str, ...] = ()
    secret_permissions: tuple[str, ...] = ()
    certificate_permissions: tuple[str, ...] = ()
    storage_permissions: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class KeyVaultPolicyPage:
    records: tuple[KeyVaultAccessPolicy, ...] = ()
    skip_token: str | None = None


@dataclass(frozen=True, slots=True)
class ApiPermission:
    # Application permission (app role assignment) held by a service principal.
    id: str
    resource_id: str
    resource_display_name: str
    app_role_id: str
    permission_value: str = ""
    permission_type: str = "Application"


@dataclass(frozen=True, slots=True)
class ResolvedGroupSet:
    """
    Output of the hierarchy resolver.

    Every id in `direct_group_ids` and `transitive_group_ids` has an entry in
    `group_info`. Direct ids are never repeated in `transitive_group_ids`.
    """

    direct_group_ids: tuple[str, ...]
    transitive_group_ids: frozenset[str]
    group_info: dict[str, GroupNode]
    failed_group_ids: frozenset[str] = frozenset()
    mode: ResolutionMode = ResolutionMode.sequential
    elapsed_seconds: float = 0.0

    @property
    def all_group_ids(self) -> frozenset[str]:
        return frozenset(self.direct_group_ids) | self.transitive_group_ids


@dataclass(slots=True)
class SecurityGroupView:
    id: str
    display_name: str
    description: str
    role_assignments: tuple[RoleAssignmentRecord, ...] = ()
    parent_groups: list[SecurityGroupView] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class AccessReport:
    identity: Identity
    direct_role_assignments: tuple[RoleAssignmentRecord, ...]
    direct_groups: tuple[SecurityGroupView, ...]
    indirect_groups: tuple[SecurityGroupView, ...]
    key_vault_access_policies: tuple[KeyVaultAccessPolicy, ...] = ()
    api_permissions: tuple[ApiPermission, ...] = ()
    failed_group_ids: frozenset[str] = frozenset()
    mode: ResolutionMode = ResolutionMode.sequential
    elapsed_seconds: float = 0.0


# --- Module Notes -----------------------------------------------------------
# SecurityGroupView is the only mutable type: the assembler fills `parent_groups`
# while walking the hierarchy, then hands the finished tree to callers.
