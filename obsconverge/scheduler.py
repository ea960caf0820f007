"""
Scheduler side of the control loop.

The orchestrator runs one tick and returns; everything about *when* the next
tick happens lives here:
- RequeuePolicy turns a tick's outcome into a delay
- Reconciler loads the status, runs a tick under a deadline and persists the
  result exactly once
- run_forever drives the Reconciler and is the only code path that sleeps
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from obsconverge.config import OperatorConfig
from obsconverge.deadline import Deadline
from obsconverge.errors import ErrorClass, ObsConvergeError
from obsconverge.orchestrator import StageOrchestrator, TickResult
from obsconverge.schemas import ObservabilitySpec, StageOutcome
from obsconverge.stages import (
    MigrationGate,
    OperatorInstallationStage,
    ResourceSyncStage,
    Stage,
    TokenStage,
    configuration_targets,
)
from obsconverge.status_store import StatusStore
from obsconverge.store import ObjectStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequeuePolicy:
    """
    Delay before the next tick, derived from the last tick's outcome.

    Attributes:
        resync_seconds: Period between ticks once everything converged (0 disables)
        requeue_in_progress_seconds: Delay while a stage is waiting on the cluster
        backoff_base_seconds: First delay after a retryable failure
        backoff_multiplier: Growth factor per consecutive failure
        backoff_max_seconds: Cap for retryable failure delays
        fatal_backoff_seconds: Delay after a fatal failure
    """
    resync_seconds: float = 300.0
    requeue_in_progress_seconds: float = 10.0
    backoff_base_seconds: float = 5.0
    backoff_multiplier: float = 2.0
    backoff_max_seconds: float = 300.0
    fatal_backoff_seconds: float = 900.0

    @classmethod
    def from_config(cls, config: OperatorConfig) -> "RequeuePolicy":
        settings = config.reconcile
        return cls(
            resync_seconds=float(settings["resync_seconds"]),
            requeue_in_progress_seconds=float(settings["requeue_in_progress_seconds"]),
            backoff_base_seconds=float(settings["backoff_base_seconds"]),
            backoff_multiplier=float(settings["backoff_multiplier"]),
            backoff_max_seconds=float(settings["backoff_max_seconds"]),
            fatal_backoff_seconds=float(settings["fatal_backoff_seconds"]),
        )

    def next_delay(self, tick: TickResult, consecutive_failures: int = 1) -> Optional[float]:
        """
        Seconds until the next tick, or None to wait for the next external trigger.

        Args:
            tick: Result of the tick that just finished
            consecutive_failures: Failed ticks in a row, including this one
        """
        if tick.outcome is StageOutcome.SUCCESS:
            return self.resync_seconds or None
        if tick.outcome is StageOutcome.IN_PROGRESS:
            return self.requeue_in_progress_seconds
        if tick.error_class is ErrorClass.FATAL:
            return max(self.fatal_backoff_seconds, self.backoff_max_seconds)
        return self.backoff(consecutive_failures)

    def backoff(self, consecutive_failures: int) -> float:
        exponent = max(consecutive_failures, 1) - 1
        delay = self.backoff_base_seconds * (self.backoff_multiplier ** exponent)
        return min(delay, self.backoff_max_seconds)


@dataclass
class ScheduledTick:
    """A finished tick and when the next one should run."""
    tick: TickResult
    requeue_after: Optional[float]

    @property
    def failed(self) -> bool:
        return self.tick.outcome is StageOutcome.FAILED


def build_stages(store: ObjectStore, config: OperatorConfig) -> list[Stage]:
    """The operator's stage list in execution order."""
    retries = config.get_conflict_retries()
    return [
        OperatorInstallationStage(store, max_attempts=retries),
        MigrationGate(store, max_attempts=retries),
        ResourceSyncStage("configuration", configuration_targets(), store, max_attempts=retries),
        TokenStage(store, max_attempts=retries),
    ]


class Reconciler:
    """
    Runs orchestrator ticks against persisted status.

    Each tick loads the status, runs under a fresh deadline and saves the
    resulting status once, whatever the outcome.
    """

    def __init__(
        self,
        orchestrator: StageOrchestrator,
        status_store: StatusStore,
        policy: Optional[RequeuePolicy] = None,
        tick_timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.orchestrator = orchestrator
        self.status_store = status_store
        self.policy = policy or RequeuePolicy()
        self.tick_timeout = tick_timeout
        self._clock = clock
        self.consecutive_failures = 0

    @classmethod
    def from_config(cls, store: ObjectStore, status_store: StatusStore, config: OperatorConfig) -> "Reconciler":
        return cls(
            StageOrchestrator(build_stages(store, config)),
            status_store,
            policy=RequeuePolicy.from_config(config),
            tick_timeout=config.get_tick_timeout(),
        )

    def run_once(self, spec: ObservabilitySpec) -> ScheduledTick:
        """Run one reconcile tick and persist its status."""
        return self._run("reconcile", spec, self.orchestrator.reconcile)

    def cleanup(self, spec: ObservabilitySpec) -> ScheduledTick:
        """Run one cleanup pass and persist its status."""
        return self._run("cleanup", spec, self.orchestrator.cleanup)

    def _run(self, phase: str, spec: ObservabilitySpec, run) -> ScheduledTick:
        status = self.status_store.load()
        deadline = Deadline.after(self.tick_timeout, self._clock)

        tick = run(spec, status, deadline)
        self.status_store.save(tick.status)

        if tick.outcome is StageOutcome.FAILED:
            self.consecutive_failures += 1
        else:
            self.consecutive_failures = 0

        requeue_after = self.policy.next_delay(tick, self.consecutive_failures)
        logger.info(
            f"{phase} tick for {spec.namespace}/{spec.name}: {tick.outcome.value}",
            extra={
                "event": "tick_scheduled",
                "metadata": {
                    "phase": phase,
                    "outcome": tick.outcome.value,
                    "error_class": tick.error_class.value if tick.error_class else None,
                    "requeue_after": requeue_after,
                    "consecutive_failures": self.consecutive_failures,
                },
            },
        )
        return ScheduledTick(tick=tick, requeue_after=requeue_after)


def run_forever(
    reconciler: Reconciler,
    spec: ObservabilitySpec,
    sleep: Optional[Callable[[float], None]] = None,
    max_ticks: Optional[int] = None,
    idle_seconds: float = 300.0,
) -> int:
    """
    Drive the reconciler until interrupted.

    Args:
        reconciler: Reconciler to drive
        spec: Desired specification
        sleep: Sleep function (default time.sleep)
        max_ticks: Stop after this many ticks (None runs forever)
        idle_seconds: Delay used when the policy asks for no requeue

    Returns:
        Number of ticks run
    """
    sleep = sleep or time.sleep
    ticks = 0
    while max_ticks is None or ticks < max_ticks:
        try:
            scheduled = reconciler.run_once(spec)
            delay = scheduled.requeue_after
        except (ObsConvergeError, OSError) as e:
            # status could not be loaded or saved; the tick did not count
            logger.error(
                f"Reconcile tick aborted: {e}",
                extra={"event": "tick_aborted", "metadata": {"exception": str(e)}},
            )
            reconciler.consecutive_failures += 1
            delay = reconciler.policy.backoff(reconciler.consecutive_failures)
        ticks += 1

        if max_ticks is not None and ticks >= max_ticks:
            break
        sleep(delay if delay is not None else idle_seconds)
    return ticks
