"""
Readiness poller: one observation per call, never waits.

A condition looks at the store once and answers True/False. check() turns that
answer into a StageOutcome: SUCCESS when the condition already holds,
IN_PROGRESS otherwise. Waiting happens by the scheduler invoking the stage
again on a later tick.
"""

import logging
from typing import Callable, Optional

from obsconverge.deadline import Deadline
from obsconverge.schemas import StageOutcome
from obsconverge.store import ObjectStore

logger = logging.getLogger(__name__)

Condition = Callable[[Optional[Deadline]], bool]


def check(condition: Condition, *, deadline: Optional[Deadline] = None, description: str = "") -> StageOutcome:
    """
    Observe external state exactly once.

    Args:
        condition: Callable performing one observation
        deadline: Tick deadline handed to the condition
        description: Human-readable name for logging

    Returns:
        StageOutcome.SUCCESS if the condition holds, else StageOutcome.IN_PROGRESS
    """
    if condition(deadline):
        return StageOutcome.SUCCESS

    logger.info(
        f"Waiting for {description or 'condition'}",
        extra={"event": "readiness_pending", "metadata": {"condition": description}},
    )
    return StageOutcome.IN_PROGRESS


def deployment_ready(store: ObjectStore, namespace: str, name: str) -> Condition:
    """Condition: the named Deployment reports at least one ready replica."""
    return replicas_ready(store, "Deployment", namespace, name)


def replicas_ready(
    store: ObjectStore,
    kind: str,
    namespace: str,
    name: str,
    ready_field: str = "readyReplicas",
) -> Condition:
    """
    Condition: the named workload reports at least one ready instance.

    Args:
        store: Object store client
        kind: Workload kind (Deployment, StatefulSet, DaemonSet)
        namespace: Workload namespace
        name: Workload name
        ready_field: Status field holding the ready count (numberReady for DaemonSets)
    """

    def condition(deadline: Optional[Deadline]) -> bool:
        for workload in store.list(kind, namespace, deadline=deadline):
            if workload.identity.name == name:
                ready = workload.status.get(ready_field) or 0
                if ready > 0:
                    return True
        return False

    return condition


def instances_removed(
    store: ObjectStore,
    kind: str,
    namespace: Optional[str],
    selector: dict[str, str],
) -> Condition:
    """Condition: no live object of `kind` matches `selector`."""

    def condition(deadline: Optional[Deadline]) -> bool:
        return not store.list(kind, namespace, selector, deadline=deadline)

    return condition


def any_exists(store: ObjectStore, kind: str, namespace: Optional[str]) -> Condition:
    """Condition: at least one object of `kind` exists in `namespace`."""

    def condition(deadline: Optional[Deadline]) -> bool:
        return bool(store.list(kind, namespace, deadline=deadline))

    return condition
