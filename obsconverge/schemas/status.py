"""
Status schemas - stage outcomes and the persisted reconcile status.

ObservabilityStatus is the durable record that survives restarts. It is owned
by the orchestrator, threaded explicitly through every stage call, and written
back by the caller as a single update per tick.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


def _utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class StageOutcome(str, Enum):
    """Outcome of one stage invocation. Terminal for a tick."""
    SUCCESS = "success"
    IN_PROGRESS = "in_progress"
    FAILED = "failed"

    @property
    def halts(self) -> bool:
        """In-progress and failed outcomes stop the pipeline for this tick."""
        return self is not StageOutcome.SUCCESS


@dataclass
class ObservabilityStatus:
    """
    Persisted status of one observability stack.

    Attributes:
        stage: Name of the last stage invoked in the latest tick
        stage_status: Aggregate outcome of the latest tick
        last_message: Error message of the latest tick, empty on success
        migrated: Sticky flag; set once the legacy-name migration completed
        stages: Per-stage outcome cache from the latest tick
        ready: Per-subsystem readiness markers
        updated_at: When the status was last written
    """
    stage: str = ""
    stage_status: Optional[StageOutcome] = None
    last_message: str = ""
    migrated: bool = False
    stages: dict[str, StageOutcome] = field(default_factory=dict)
    ready: dict[str, bool] = field(default_factory=dict)
    updated_at: Optional[datetime] = None

    def mark_migrated(self) -> None:
        """Record the completed one-time migration."""
        self.migrated = True

    def touch(self) -> None:
        self.updated_at = _utcnow()

    def copy(self) -> "ObservabilityStatus":
        return ObservabilityStatus.from_dict(self.to_dict())

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        return {
            "stage": self.stage,
            "stage_status": self.stage_status.value if self.stage_status else None,
            "last_message": self.last_message,
            "migrated": self.migrated,
            "stages": {name: outcome.value for name, outcome in self.stages.items()},
            "ready": dict(self.ready),
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ObservabilityStatus":
        """Deserialize from dictionary."""
        stage_status = data.get("stage_status")
        updated_at = data.get("updated_at")
        return cls(
            stage=data.get("stage", ""),
            stage_status=StageOutcome(stage_status) if stage_status else None,
            last_message=data.get("last_message", ""),
            migrated=bool(data.get("migrated", False)),
            stages={
                name: StageOutcome(value)
                for name, value in (data.get("stages") or {}).items()
            },
            ready=dict(data.get("ready") or {}),
            updated_at=datetime.fromisoformat(updated_at) if updated_at else None,
        )
