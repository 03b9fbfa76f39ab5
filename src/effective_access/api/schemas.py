"""
effective_access.api.schemas

Response models for the access report endpoint.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from effective_access.domain.models import (
    AccessReport,
    ApiPermission,
    Identity,
    KeyVaultAccessPolicy,
    RoleAssignmentRecord,
    SecurityGroupView,
)


class RoleAssignmentOut(BaseModel):
    id: str
    principal_id: str
    principal_type: str
    role_definition_id: str
    role_name: str
    scope: str

    @classmethod
    def from_record(cls, record: RoleAssignmentRecord) -> RoleAssignmentOut:
        return cls(
            id=record.id,
            principal_id=record.principal_id,
            principal_type=record.principal_type,
            role_definition_id=record.role_definition_id,
            role_name=record.role_name,
            scope=record.scope,
        )


class SecurityGroupOut(BaseModel):
    id: str
    display_name: str
    description: str
    role_assignments: list[RoleAssignmentOut] = Field(default_factory=list)
    parent_groups: list[SecurityGroupOut] = Field(default_factory=list)

    @classmethod
    def from_view(cls, view: SecurityGroupView) -> SecurityGroupOut:
        return cls(
            id=view.id,
            display_name=view.display_name,
            description=view.description,
            role_assignments=[RoleAssignmentOut.from_record(r) for r in view.role_assignments],
            parent_groups=[cls.from_view(p) for p in view.parent_groups],
        )


class KeyVaultAccessPolicyOut(BaseModel):
    key_vault_id: str
    key_vault_name: str
    tenant_id: str
    object_id: str
    application_id: str = ""
    key_permissions: list[str] = Field(default_factory=list)
    secret_permissions: list[str] = Field(default_factory=list)
    certificate_permissions: list[str] = Field(default_factory=list)
    storage_permissions: list[str] = Field(default_factory=list)

    @classmethod
    def from_policy(cls, policy: KeyVaultAccessPolicy) -> KeyVaultAccessPolicyOut:
        return cls(
            key_vault_id=policy.key_vault_id,
            key_vault_name=policy.key_vault_name,
            tenant_id=policy.tenant_id,
            object_id=policy.object_id,
            application_id=policy.application_id,
            key_permissions=list(policy.key_permissions),
            secret_permissions=list(policy.secret_permissions),
            certificate_permissions=list(policy.certificate_permissions),
            storage_permissions=list(policy.storage_permissions),
        )


class ApiPermissionOut(BaseModel):
    id: str
    resource_id: str
    resource_display_name: str
    app_role_id: str
    permission_type: str
    permission_value: str

    @classmethod
    def from_permission(cls, permission: ApiPermission) -> ApiPermissionOut:
        return cls(
            id=permission.id,
            resource_id=permission.resource_id,
            resource_display_name=permission.resource_display_name,
            app_role_id=permission.app_role_id,
            permission_type=permission.permission_type,
            permission_value=permission.permission_value,
        )


class IdentityOut(BaseModel):
    object_id: str
    type: str
    display_name: str
    email: str | None = None
    application_id: str | None = None

    @classmethod
    def from_identity(cls, identity: Identity) -> IdentityOut:
        return cls(
            object_id=identity.object_id,
            type=identity.type.value,
            display_name=identity.display_name,
            email=identity.email,
            application_id=identity.application_id,
        )


class AccessReportOut(BaseModel):
    identity: IdentityOut
    direct_role_assignments: list[RoleAssignmentOut]
    direct_groups: list[SecurityGroupOut]
    indirect_groups: list[SecurityGroupOut]
    key_vault_access_policies: list[KeyVaultAccessPolicyOut]
    api_permissions: list[ApiPermissionOut]
    failed_group_ids: list[str]
    mode: str
    elapsed_seconds: float

    @classmethod
    def from_report(cls, report: AccessReport) -> AccessReportOut:
        return cls(
            identity=IdentityOut.from_identity(report.identity),
            direct_role_assignments=[
                RoleAssignmentOut.from_record(r) for r in report.direct_role_assignments
            ],
            direct_groups=[SecurityGroupOut.from_view(v) for v in report.direct_groups],
            indirect_groups=[SecurityGroupOut.from_view(v) for v in report.indirect_groups],
            key_vault_access_policies=[
                KeyVaultAccessPolicyOut.from_policy(p) for p in report.key_vault_access_policies
            ],
            api_permissions=[ApiPermissionOut.from_permission(p) for p in report.api_permissions],
            failed_group_ids=sorted(report.failed_group_ids),
            mode=report.mode.value,
            elapsed_seconds=report.elapsed_seconds,
        )


# --- Module Notes -----------------------------------------------------------
# from_view recurses over the assembled tree; its depth is bounded by
# `max_tree_depth`, which keeps it well under the interpreter recursion limit.
