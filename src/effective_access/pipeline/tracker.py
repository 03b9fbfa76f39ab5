"""
effective_access.pipeline.tracker

Stage bookkeeping for one end-to-end resolution.

Responsibilities:
- Hold the current ResolutionStage and the ordered history of stages entered.
- Reject transitions out of a terminal stage.
- Carry the group counts reported when a run fails.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field

from effective_access.domain.errors import ResolutionAborted
from effective_access.domain.models import ResolutionMode, ResolutionStage, ResolvedGroupSet
from effective_access.observability.logging import get_logger

log = get_logger(__name__)


@dataclass(slots=True)
class RunTracker:
    stage: ResolutionStage = ResolutionStage.idle
    history: list[ResolutionStage] = field(default_factory=lambda: [ResolutionStage.idle])
    resolved_groups: int = 0
    failed_groups: int = 0

    def advance(self, stage: ResolutionStage) -> None:
        if self.stage.is_terminal:
            raise RuntimeError(f"run already {self.stage.value}; cannot enter {stage.value}")
        self.stage = stage
        self.history.append(stage)
        log.info("stage_entered", stage=stage.value)

    def fail(self) -> None:
        # Idempotent: a failure raised from a nested stage may be reported twice.
        if self.stage.is_terminal:
            return
        self.advance(ResolutionStage.failed)

    def record_groups(self, resolved: ResolvedGroupSet) -> None:
        self.failed_groups = len(resolved.failed_group_ids)
        self.resolved_groups = len(resolved.group_info) - self.failed_groups


@dataclass(slots=True)
class RunContext:
    """
    Per-run controls handed to every node through the graph state.
    """

    mode: ResolutionMode = ResolutionMode.sequential
    cancel_event: asyncio.Event | None = None
    run_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    tracker: RunTracker = field(default_factory=RunTracker)

    def raise_if_cancelled(self) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise ResolutionAborted(f"resolution cancelled during {self.tracker.stage.value}")
