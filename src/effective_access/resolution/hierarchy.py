"""
effective_access.resolution.hierarchy

Transitive closure of group "member-of" edges.

Responsibilities:
- Expand direct group memberships breadth-first into every ancestor group.
- Guarantee termination on cyclic graphs and at-most-once fetches per group.
- Offer sequential and bounded-parallel execution with identical results.
- Apply one configured policy to groups whose lookup keeps failing.
"""

from __future__ import annotations

import asyncio
import enum
import time
from collections import deque
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field

from effective_access.domain.errors import (
    AccessResolutionFailed,
    ResolutionAborted,
    RetriesExhausted,
    UpstreamError,
)
from effective_access.domain.models import (
    GroupNode,
    ResolutionMode,
    ResolutionStage,
    ResolvedGroupSet,
)
from effective_access.observability.logging import get_logger
from effective_access.resolution.ports import DirectoryClient
from effective_access.resolution.retry import RetryPolicy, call_with_retry
from effective_access.settings import Settings

log = get_logger(__name__)


class FailurePolicy(enum.StrEnum):
    # Stop the whole resolution when a group lookup cannot be completed.
    fail = "fail"
    # Record the group as a leaf (no parents) and keep resolving the rest.
    leaf = "leaf"


@dataclass(slots=True)
class _ResolutionRun:
    """
    State owned by a single resolution. Discarded when the call returns or fails,
    so an aborted run never leaks partial entries into the next one.
    """

    direct_group_ids: tuple[str, ...]
    cancel_event: asyncio.Event | None = None
    visited: set[str] = field(default_factory=set)
    group_info: dict[str, GroupNode] = field(default_factory=dict)
    failed: set[str] = field(default_factory=set)

    def claim(self, group_id: str) -> bool:
        # No await between the membership test and the insert, so the claim is
        # atomic with respect to every other worker on the event loop.
        if group_id in self.visited:
            return False
        self.visited.add(group_id)
        return True

    def raise_if_cancelled(self) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise ResolutionAborted(
                f"group resolution cancelled after {len(self.group_info)} groups"
            )


class GroupHierarchyResolver:
    def __init__(
        self,
        *,
        directory: DirectoryClient,
        retry: RetryPolicy | None = None,
        max_workers: int = 4,
        failure_policy: FailurePolicy = FailurePolicy.leaf,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        self._directory = directory
        self._retry = retry or RetryPolicy()
        self._max_workers = max_workers
        self._failure_policy = failure_policy
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls,
        *,
        directory: DirectoryClient,
        settings: Settings,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> GroupHierarchyResolver:
        return cls(
            directory=directory,
            retry=RetryPolicy.from_settings(settings),
            max_workers=settings.max_degree_of_parallelism,
            failure_policy=FailurePolicy(settings.group_failure_policy),
            sleep=sleep,
        )

    @property
    def failure_policy(self) -> FailurePolicy:
        return self._failure_policy

    async def resolve_transitive_groups(
        self,
        direct_group_ids: Iterable[str],
        *,
        mode: ResolutionMode = ResolutionMode.sequential,
        cancel_event: asyncio.Event | None = None,
    ) -> ResolvedGroupSet:
        """
        Resolve every group reachable from `direct_group_ids` over member-of edges.

        Each group id is fetched at most once. The returned transitive set excludes
        the direct ids, even when a cycle leads back to one of them.
        """

        # de-dupe while keeping order
        direct = tuple(dict.fromkeys(g for g in direct_group_ids if g))
        run = _ResolutionRun(direct_group_ids=direct, cancel_event=cancel_event)
        started = time.perf_counter()

        if direct:
            if mode is ResolutionMode.parallel:
                await self._drain_parallel(run)
            else:
                await self._drain_sequential(run)

        elapsed = time.perf_counter() - started
        transitive = frozenset(run.visited.difference(direct))
        log.info(
            "groups_resolved",
            mode=mode.value,
            direct_groups=len(direct),
            transitive_groups=len(transitive),
            failed_groups=len(run.failed),
            elapsed_ms=round(elapsed * 1000, 1),
        )
        return ResolvedGroupSet(
            direct_group_ids=direct,
            transitive_group_ids=transitive,
            group_info=dict(run.group_info),
            failed_group_ids=frozenset(run.failed),
            mode=mode,
            elapsed_seconds=elapsed,
        )

    async def _drain_sequential(self, run: _ResolutionRun) -> None:
        pending: deque[str] = deque(run.direct_group_ids)
        while pending:
            pending.extend(await self._expand(run, pending.popleft()))

    async def _drain_parallel(self, run: _ResolutionRun) -> None:
        queue: asyncio.Queue[str] = asyncio.Queue()
        for group_id in run.direct_group_ids:
            queue.put_nowait(group_id)

        workers = [
            asyncio.create_task(self._worker(run, queue), name=f"group-resolver-{i}")
            for i in range(self._max_workers)
        ]
        # join() completes once every enqueued id has been marked done, including
        # ids that are still being fetched; that count is what keeps the pool alive.
        drained = asyncio.create_task(queue.join(), name="group-resolver-drain")
        try:
            done, _ = await asyncio.wait({drained, *workers}, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                if task is not drained:
                    # Workers only finish by raising; surface the first failure.
                    task.result()
        finally:
            for task in (drained, *workers):
                task.cancel()
            await asyncio.gather(drained, *workers, return_exceptions=True)

    async def _worker(self, run: _ResolutionRun, queue: asyncio.Queue[str]) -> None:
        while True:
            group_id = await queue.get()
            # A failure here leaves the item unfinished so join() can never report a
            # clean drain for a broken run.
            parents = await self._expand(run, group_id)
            for parent_id in parents:
                queue.put_nowait(parent_id)
            queue.task_done()

    async def _expand(self, run: _ResolutionRun, group_id: str) -> list[str]:
        """
        Claim, fetch and record one group. Returns parent ids not yet visited.
        """

        run.raise_if_cancelled()
        if not run.claim(group_id):
            return []

        try:
            node = await self._fetch_with_retry(group_id)
        except (RetriesExhausted, UpstreamError) as exc:
            if self._failure_policy is FailurePolicy.fail:
                log.error("group_resolution_failed", group_id=group_id, error=str(exc))
                raise AccessResolutionFailed(
                    stage=ResolutionStage.resolving_transitive_closure.value,
                    resolved_groups=len(run.group_info) - len(run.failed),
                    failed_groups=len(run.failed) + 1,
                ) from exc
            log.warning("group_recorded_as_leaf", group_id=group_id, error=str(exc))
            run.failed.add(group_id)
            node = GroupNode(id=group_id)

        run.group_info[group_id] = node
        return [p for p in node.parent_group_ids if p and p not in run.visited]

    async def _fetch_with_retry(self, group_id: str) -> GroupNode:
        return await call_with_retry(
            lambda: self._directory.get_group_info(group_id),
            policy=self._retry,
            sleep=self._sleep,
            operation=f"group lookup {group_id}",
        )


# --- Module Notes -----------------------------------------------------------
# Parents are filtered against `visited` before enqueueing only to keep queues small;
# `claim` remains the single authority on whether a group gets fetched.
