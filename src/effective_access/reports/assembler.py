"""
effective_access.reports.assembler

Reattach role assignments to the resolved group hierarchy.

Responsibilities:
- Build SecurityGroupView trees from a flat group map.
- Keep diamond-shaped memberships as separate branches while cutting true cycles.
- Bound output size by branch depth and by total rendered nodes.
- Produce the final AccessReport for an identity.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Mapping

from effective_access.domain.models import (
    AccessReport,
    ApiPermission,
    GroupNode,
    Identity,
    KeyVaultAccessPolicy,
    ResolvedGroupSet,
    RoleAssignmentRecord,
    SecurityGroupView,
)
from effective_access.observability.logging import get_logger

log = get_logger(__name__)


def index_by_principal(
    role_assignments: Iterable[RoleAssignmentRecord],
) -> dict[str, tuple[RoleAssignmentRecord, ...]]:
    grouped: dict[str, list[RoleAssignmentRecord]] = defaultdict(list)
    for record in role_assignments:
        grouped[record.principal_id.lower()].append(record)
    return {k: tuple(v) for k, v in grouped.items()}


class ResultAssembler:
    def __init__(self, *, max_depth: int | None = 32, max_nodes: int | None = 5000) -> None:
        self._max_depth = max_depth
        self._max_nodes = max_nodes

    def build_view(
        self,
        group_ids: Iterable[str],
        group_info: Mapping[str, GroupNode],
        role_assignments: Iterable[RoleAssignmentRecord],
        *,
        max_depth: int | None = None,
        max_nodes: int | None = None,
    ) -> list[SecurityGroupView]:
        """
        Build one tree per group id, nesting each group's parents beneath it.

        The walk uses an explicit stack. Every frame carries the ids on its own
        root-to-node path: a parent already on that path is a cycle and is cut,
        while a parent reached again through a different branch is rendered again.

        Two bounds apply: `max_depth` per branch and `max_nodes` across every tree
        of the call. Roots are always rendered; once the node budget is spent no
        further parents are attached.
        """

        depth_limit = self._max_depth if max_depth is None else max_depth
        node_limit = self._max_nodes if max_nodes is None else max_nodes
        by_principal = index_by_principal(role_assignments)

        roots: list[SecurityGroupView] = []
        rendered = 0
        budget_spent = False
        for group_id in dict.fromkeys(group_ids):
            root = self._view_for(group_id, group_info, by_principal)
            if root is None:
                continue
            roots.append(root)
            rendered += 1

            stack: list[tuple[SecurityGroupView, frozenset[str], int]] = [
                (root, frozenset((group_id,)), 0)
            ]
            while stack and not budget_spent:
                view, path, depth = stack.pop()
                parent_ids = group_info[view.id].parent_group_ids
                if not parent_ids:
                    continue
                if depth_limit is not None and depth >= depth_limit:
                    if depth_limit > 0:
                        log.info(
                            "group_tree_truncated", reason="depth", group_id=view.id, depth=depth
                        )
                    continue
                for parent_id in parent_ids:
                    if parent_id in path:
                        log.debug("group_cycle_cut", group_id=view.id, parent_id=parent_id)
                        continue
                    if node_limit is not None and rendered >= node_limit:
                        budget_spent = True
                        break
                    parent = self._view_for(parent_id, group_info, by_principal)
                    if parent is None:
                        continue
                    view.parent_groups.append(parent)
                    rendered += 1
                    stack.append((parent, path | {parent_id}, depth + 1))

        if budget_spent:
            log.warning("group_tree_truncated", reason="node_limit", max_nodes=node_limit)
        return roots

    def assemble(
        self,
        *,
        identity: Identity,
        resolved: ResolvedGroupSet,
        role_assignments: Iterable[RoleAssignmentRecord],
        key_vault_access_policies: Iterable[KeyVaultAccessPolicy] = (),
        api_permissions: Iterable[ApiPermission] = (),
    ) -> AccessReport:
        records = list(role_assignments)
        by_principal = index_by_principal(records)

        direct_assignments: list[RoleAssignmentRecord] = []
        for principal_id in identity.principal_ids:
            direct_assignments.extend(by_principal.get(principal_id.lower(), ()))

        direct_groups = self.build_view(resolved.direct_group_ids, resolved.group_info, records)
        indirect_groups = self.build_view(
            sorted(
                resolved.transitive_group_ids,
                key=lambda gid: (resolved.group_info[gid].display_name.lower(), gid),
            ),
            resolved.group_info,
            records,
            max_depth=0,
        )

        return AccessReport(
            identity=identity,
            direct_role_assignments=tuple(direct_assignments),
            direct_groups=tuple(direct_groups),
            indirect_groups=tuple(indirect_groups),
            key_vault_access_policies=tuple(
                sorted(
                    key_vault_access_policies,
                    key=lambda p: (p.key_vault_name.lower(), p.key_vault_id, p.object_id),
                )
            ),
            api_permissions=tuple(
                sorted(
                    api_permissions,
                    key=lambda p: (p.resource_display_name.lower(), p.permission_value, p.id),
                )
            ),
            failed_group_ids=resolved.failed_group_ids,
            mode=resolved.mode,
            elapsed_seconds=resolved.elapsed_seconds,
        )

    @staticmethod
    def _view_for(
        group_id: str,
        group_info: Mapping[str, GroupNode],
        by_principal: Mapping[str, tuple[RoleAssignmentRecord, ...]],
    ) -> SecurityGroupView | None:
        node = group_info.get(group_id)
        if node is None:
            log.warning("group_info_missing", group_id=group_id)
            return None
        return SecurityGroupView(
            id=group_id,
            display_name=node.display_name,
            description=node.description,
            role_assignments=by_principal.get(group_id.lower(), ()),
        )


# --- Module Notes -----------------------------------------------------------
# Output size grows with the number of distinct paths, not groups: a layered
# directory of width w and depth d renders w**d nodes. `max_nodes` caps the total,
# `max_depth` caps each branch.
