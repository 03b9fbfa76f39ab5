"""
effective_access.pipeline.state

Typed state schema passed between the resolution graph nodes.

Responsibilities:
- Define the contract between nodes (inputs/outputs).
"""

from __future__ import annotations

from typing import TypedDict

from effective_access.domain.models import (
    AccessReport,
    ApiPermission,
    Identity,
    KeyVaultAccessPolicy,
    ResolvedGroupSet,
    RoleAssignmentRecord,
)
from effective_access.pipeline.tracker import RunContext


class ResolutionState(TypedDict, total=False):
    # Inputs
    identity: Identity
    run: RunContext

    # Stage outputs
    direct_group_ids: list[str]
    resolved: ResolvedGroupSet
    role_assignments: list[RoleAssignmentRecord]
    key_vault_access_policies: list[KeyVaultAccessPolicy]
    api_permissions: list[ApiPermission]
    report: AccessReport


# --- Module Notes -----------------------------------------------------------
# total=False: `resolved` is absent when the closure stage is skipped, and the
# query node fills in an empty set for that case.
