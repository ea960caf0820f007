"""
Stage orchestrator for obsconverge.

Runs the stage list once per reconcile tick:
1. Copy the persisted status; stages mutate only the copy
2. Invoke each stage's reconcile in declared order
3. Stop at the first IN_PROGRESS or FAILED outcome; later stages are not attempted
4. Fold the outcomes into the copy (aggregate outcome, per-stage cache,
   message) and keep `migrated` sticky
5. Hand the copy back in a TickResult; the caller persists it as one write

Every stage runs again on every tick, including stages that succeeded last
time, so drift introduced by other actors is repaired.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from obsconverge.deadline import Deadline
from obsconverge.errors import ErrorClass
from obsconverge.schemas import ObservabilitySpec, ObservabilityStatus, StageOutcome
from obsconverge.stages import Stage, StageResult

logger = logging.getLogger(__name__)


@dataclass
class TickResult:
    """Result of one orchestrator pass over the stage list."""

    outcome: StageOutcome
    status: ObservabilityStatus
    results: list[StageResult] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def halted_at(self) -> Optional[StageResult]:
        """The stage that stopped the tick, if any."""
        if self.results and self.results[-1].outcome.halts:
            return self.results[-1]
        return None

    @property
    def error(self) -> Optional[BaseException]:
        halted = self.halted_at
        return halted.error if halted else None

    @property
    def error_class(self) -> Optional[ErrorClass]:
        halted = self.halted_at
        return halted.error_class if halted else None

    @property
    def invoked(self) -> list[str]:
        return [r.stage_name for r in self.results]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "outcome": self.outcome.value,
            "duration_seconds": self.duration_seconds,
            "error_class": self.error_class.value if self.error_class else None,
            "stages": [r.to_dict() for r in self.results],
            "status": self.status.to_dict(),
        }


class StageOrchestrator:
    """
    Sequences a fixed list of stages.

    The stage order is captured at construction and cannot change for the
    lifetime of the instance.
    """

    def __init__(self, stages: Sequence[Stage]):
        """
        Initialize orchestrator.

        Args:
            stages: Stages in execution order

        Raises:
            ValueError: If the list is empty or stage names repeat
        """
        if not stages:
            raise ValueError("StageOrchestrator requires at least one stage")
        names = [stage.name for stage in stages]
        if len(names) != len(set(names)):
            duplicates = sorted({n for n in names if names.count(n) > 1})
            raise ValueError(f"Duplicate stage names: {duplicates}")
        self._stages = tuple(stages)

    @property
    def stages(self) -> tuple[Stage, ...]:
        return self._stages

    def reconcile(
        self,
        spec: ObservabilitySpec,
        status: ObservabilityStatus,
        deadline: Optional[Deadline] = None,
    ) -> TickResult:
        """
        Run one reconcile tick.

        Args:
            spec: Desired specification (read-only)
            status: Last persisted status (not modified)
            deadline: Deadline passed to every store call

        Returns:
            TickResult carrying the updated status to persist
        """
        return self._tick(
            "reconcile",
            status,
            lambda stage, working: stage.run_reconcile(spec, working, deadline),
        )

    def cleanup(
        self,
        spec: ObservabilitySpec,
        status: ObservabilityStatus,
        deadline: Optional[Deadline] = None,
    ) -> TickResult:
        """Run every stage's cleanup in declared order with the same short-circuit."""
        return self._tick(
            "cleanup",
            status,
            lambda stage, working: stage.run_cleanup(spec, deadline),
        )

    def _tick(self, phase: str, status: ObservabilityStatus, invoke) -> TickResult:
        start_time = time.monotonic()
        working = status.copy()
        working.stages = {}
        results: list[StageResult] = []
        outcome = StageOutcome.SUCCESS

        for stage in self._stages:
            result = invoke(stage, working)
            results.append(result)
            working.stage = stage.name
            working.stages[stage.name] = result.outcome

            if result.outcome.halts:
                outcome = result.outcome
                logger.info(
                    f"{phase} halted at stage {stage.name}: {outcome.value}",
                    extra={
                        "event": f"{phase}_halted",
                        "stage": stage.name,
                        "metadata": {"outcome": outcome.value, "error": result.error_message},
                    },
                )
                break

        # migrated is sticky: no tick may clear it
        working.migrated = working.migrated or status.migrated
        working.stage_status = outcome
        working.last_message = ""
        if outcome is StageOutcome.FAILED:
            working.last_message = results[-1].error_message or ""
        working.touch()

        tick = TickResult(
            outcome=outcome,
            status=working,
            results=results,
            duration_seconds=time.monotonic() - start_time,
        )
        logger.info(
            f"{phase} tick finished: {outcome.value}",
            extra={
                "event": f"{phase}_tick_completed",
                "metadata": {"outcome": outcome.value, "stages": tick.invoked},
            },
        )
        return tick
