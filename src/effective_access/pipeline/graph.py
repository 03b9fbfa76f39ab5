from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from langgraph.graph import END, StateGraph

from effective_access.pipeline.nodes import (
    assemble_node,
    direct_groups_node,
    finish_node,
    query_assignments_node,
    route_after_direct_groups,
    transitive_closure_node,
)
from effective_access.pipeline.state import ResolutionState
from effective_access.reports.assembler import ResultAssembler
from effective_access.resolution.hierarchy import GroupHierarchyResolver
from effective_access.resolution.ports import DirectoryClient
from effective_access.resolution.retry import RetryPolicy
from effective_access.resolution.role_assignments import RoleAssignmentQueryClient


def build_graph(
    *,
    directory: DirectoryClient,
    resolver: GroupHierarchyResolver,
    query_client: RoleAssignmentQueryClient,
    assembler: ResultAssembler,
    retry: RetryPolicy,
    sleep: Callable[[float], Awaitable[None]],
):
    """
    Returns a compiled LangGraph runnable.
    """

    graph = StateGraph(ResolutionState)

    graph.add_node(
        "direct_groups",
        _bind(direct_groups_node, directory=directory, retry=retry, sleep=sleep),
    )
    graph.add_node("transitive_closure", _bind(transitive_closure_node, resolver=resolver))
    graph.add_node(
        "query_assignments",
        _bind(
            query_assignments_node,
            query_client=query_client,
            directory=directory,
            retry=retry,
            sleep=sleep,
        ),
    )
    graph.add_node("assemble", _bind(assemble_node, assembler=assembler))
    graph.add_node("finish", finish_node)

    graph.set_entry_point("direct_groups")

    graph.add_conditional_edges(
        "direct_groups",
        route_after_direct_groups,
        {"transitive_closure": "transitive_closure", "query_assignments": "query_assignments"},
    )
    graph.add_edge("transitive_closure", "query_assignments")
    graph.add_edge("query_assignments", "assemble")
    graph.add_edge("assemble", "finish")
    graph.add_edge("finish", END)

    return graph.compile()


def _bind(
    fn: Callable[..., Awaitable[ResolutionState]],
    **deps: Any,
) -> Callable[[ResolutionState], Awaitable[ResolutionState]]:
    async def _wrapped(state: ResolutionState) -> ResolutionState:
        return await fn(state, **deps)

    return _wrapped
