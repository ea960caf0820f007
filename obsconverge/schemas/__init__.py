"""
obsconverge.schemas - Data structures shared by the reconcile loop.

ObservabilitySpec -> (stages) -> ObservabilityStatus

- ObservabilitySpec: desired state, immutable within a tick
- ObservabilityStatus: durable status, persisted once per tick
- StageOutcome: success / in_progress / failed
- ObjectIdentity, ManagedObject: addressing and live objects in the store
"""

from .objects import (
    ManagedObject,
    ObjectIdentity,
)
from .spec import (
    COMPONENTS,
    ObservabilitySpec,
)
from .status import (
    ObservabilityStatus,
    StageOutcome,
)

__all__ = [
    # Objects
    "ManagedObject",
    "ObjectIdentity",
    # Desired state
    "COMPONENTS",
    "ObservabilitySpec",
    # Status
    "ObservabilityStatus",
    "StageOutcome",
]
