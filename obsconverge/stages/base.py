"""
Base classes for reconcile stages.

All stages inherit from Stage and are driven through run_reconcile() /
run_cleanup(), which return a StageResult.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from obsconverge.applier import DEFAULT_MAX_ATTEMPTS, ApplyResult, Mutation, apply, delete_if_present
from obsconverge.deadline import Deadline
from obsconverge.errors import ErrorClass, classify_error
from obsconverge.schemas import ObjectIdentity, ObservabilitySpec, ObservabilityStatus, StageOutcome
from obsconverge.store import ObjectStore


def _utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


@dataclass
class StageResult:
    """Result of one stage invocation."""

    stage_name: str
    outcome: StageOutcome
    duration_seconds: float = 0.0
    error: Optional[BaseException] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None

    @property
    def error_message(self) -> Optional[str]:
        return str(self.error) if self.error is not None else None

    @property
    def error_class(self) -> Optional[ErrorClass]:
        return classify_error(self.error)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "stage_name": self.stage_name,
            "outcome": self.outcome.value,
            "duration_seconds": self.duration_seconds,
            "error_message": self.error_message,
            "error_class": self.error_class.value if self.error_class else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
        }


class Stage(ABC):
    """
    Abstract base class for reconcile stages.

    Each stage must implement:
    - reconcile(): Drive toward desired state; safe to call repeatedly, and
      re-derives remaining work from live state every time
    - cleanup(): Best-effort teardown of what the stage created, tolerant of
      objects that are already gone

    Both return a StageOutcome and signal errors by raising.
    """

    name = "stage"

    def __init__(
        self,
        store: ObjectStore,
        logger: Optional[logging.Logger] = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ):
        """
        Initialize stage.

        Args:
            store: Object store client
            logger: Logger instance
            max_attempts: Conflict retries for each apply
        """
        self.store = store
        self.logger = logger or logging.getLogger(f"obsconverge.stages.{self.name}")
        self.max_attempts = max_attempts

    @abstractmethod
    def reconcile(
        self,
        spec: ObservabilitySpec,
        status: ObservabilityStatus,
        *,
        deadline: Optional[Deadline] = None,
    ) -> StageOutcome:
        """
        Reconcile this stage toward the desired spec.

        Returns:
            StageOutcome for this tick

        Raises:
            Exception: Classified via obsconverge.errors.classify_error
        """
        pass

    @abstractmethod
    def cleanup(self, spec: ObservabilitySpec, *, deadline: Optional[Deadline] = None) -> StageOutcome:
        """
        Tear down everything this stage created.

        Returns:
            StageOutcome for this tick
        """
        pass

    def run_reconcile(
        self,
        spec: ObservabilitySpec,
        status: ObservabilityStatus,
        deadline: Optional[Deadline] = None,
    ) -> StageResult:
        """Run reconcile() and capture its outcome or error."""
        return self._run("reconcile", lambda: self.reconcile(spec, status, deadline=deadline))

    def run_cleanup(self, spec: ObservabilitySpec, deadline: Optional[Deadline] = None) -> StageResult:
        """Run cleanup() and capture its outcome or error."""
        return self._run("cleanup", lambda: self.cleanup(spec, deadline=deadline))

    def _run(self, phase: str, call) -> StageResult:
        started_at = _utcnow()
        start_time = time.monotonic()

        self.logger.debug(
            f"Starting {phase}: {self.name}",
            extra={"stage": self.name, "event": f"{phase}_started"},
        )

        try:
            outcome = call()
        except Exception as e:
            error_class = classify_error(e)
            self.logger.error(
                f"Stage {self.name} {phase} failed: {e}",
                extra={
                    "stage": self.name,
                    "event": f"{phase}_failed",
                    "metadata": {"exception": str(e), "error_class": error_class.value},
                },
                exc_info=error_class is ErrorClass.FATAL,
            )
            return StageResult(
                stage_name=self.name,
                outcome=StageOutcome.FAILED,
                duration_seconds=time.monotonic() - start_time,
                error=e,
                started_at=started_at,
                ended_at=_utcnow(),
            )

        result = StageResult(
            stage_name=self.name,
            outcome=outcome,
            duration_seconds=time.monotonic() - start_time,
            started_at=started_at,
            ended_at=_utcnow(),
        )
        self.logger.info(
            f"Stage {self.name} {phase}: {outcome.value}",
            extra={
                "stage": self.name,
                "event": f"{phase}_completed",
                "metadata": {"outcome": outcome.value, "duration_seconds": result.duration_seconds},
            },
        )
        return result

    # -------------------------------------------------------------------------
    # Helpers shared by concrete stages
    # -------------------------------------------------------------------------

    def _apply(
        self,
        identity: ObjectIdentity,
        mutate: Mutation,
        deadline: Optional[Deadline],
    ) -> ApplyResult:
        return apply(self.store, identity, mutate, deadline=deadline, max_attempts=self.max_attempts)

    def _delete(self, identity: ObjectIdentity, deadline: Optional[Deadline]) -> bool:
        return delete_if_present(self.store, identity, deadline=deadline)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name})"
