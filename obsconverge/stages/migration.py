"""
Migration gate: one-time teardown of legacy-named resources.

Earlier releases created the stack's objects under "kafka-*" names. The gate
removes them exactly once, subsystem by subsystem, in dependency order:

    workload -> wait-for-removal barrier -> exposure and config objects
    -> service account -> cluster role -> cluster role binding

The barrier is a non-blocking readiness check. While instances of the legacy
workload are still running, the gate returns IN_PROGRESS and the scheduler
calls it again later; permissions are never removed from instances that are
still shutting down.

Resumability: every delete tolerates an absent object and the barrier
re-reads live state, so a tick that fails or is interrupted anywhere simply
starts over from the first subsystem. `status.migrated` is set only after
every subsystem finished in the same tick, and once set the gate makes no
store calls at all.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from obsconverge import model
from obsconverge.applier import DEFAULT_MAX_ATTEMPTS
from obsconverge.deadline import Deadline
from obsconverge.readiness import check, instances_removed
from obsconverge.schemas import ObjectIdentity, ObservabilitySpec, ObservabilityStatus, StageOutcome
from obsconverge.store import ObjectStore

from .base import Stage


@dataclass(frozen=True)
class InstanceSelector:
    """
    Live instances of a workload: objects of `kind` matching `labels`.

    Attributes:
        kind: Instance kind, usually Pod
        labels: Equality selector for the instances
        shared: The labels also match the current-scheme workload's instances;
            the barrier only waits in the tick that deleted the legacy workload
    """
    kind: str
    labels: dict[str, str] = field(default_factory=dict)
    shared: bool = False


@dataclass(frozen=True)
class LegacySubsystem:
    """
    Legacy-named objects of one subsystem.

    Attributes:
        component: Subsystem name
        applies: Whether the spec has moved this subsystem off its legacy name
        workload: Primary workload identity, deleted first (None if the subsystem has none)
        instances: Selector for the workload's running instances, checked by the barrier
        dependents: Remaining objects, in deletion order
    """
    component: str
    applies: Callable[[ObservabilitySpec], bool]
    workload: Optional[Callable[[ObservabilitySpec], ObjectIdentity]] = None
    instances: Optional[InstanceSelector] = None
    dependents: Callable[[ObservabilitySpec], list[ObjectIdentity]] = lambda spec: []


def _exposure_and_permissions(spec: ObservabilitySpec, name: str) -> list[ObjectIdentity]:
    return [
        model.route(spec, name),
        model.service(spec, name),
        model.service_account(spec, name),
        model.cluster_role(name),
        model.cluster_role_binding(name),
    ]


def _alertmanager_dependents(spec: ObservabilitySpec) -> list[ObjectIdentity]:
    name = model.ALERTMANAGER_LEGACY_NAME
    dependents = [model.route(spec, name), model.service(spec, name)]
    # The generated config secret exists only when obsconverge rendered it
    if model.renders_alertmanager_config(spec):
        dependents.append(model.alertmanager_secret(spec, name))
    dependents += [
        model.service_account(spec, name),
        model.cluster_role(name),
        model.cluster_role_binding(name),
    ]
    return dependents


def _promtail_dependents(spec: ObservabilitySpec) -> list[ObjectIdentity]:
    name = model.PROMTAIL_LEGACY_NAME
    return [
        model.service_account(spec, name),
        model.cluster_role(name),
        model.cluster_role_binding(name),
    ]


LEGACY_SUBSYSTEMS = (
    LegacySubsystem(
        component="prometheus",
        applies=lambda spec: not spec.prometheus_default_name,
        workload=lambda spec: model.workload(spec, "Prometheus", model.PROMETHEUS_LEGACY_NAME),
        instances=InstanceSelector(
            "Pod", model.prometheus_instances_selector(model.PROMETHEUS_LEGACY_NAME)
        ),
        dependents=lambda spec: _exposure_and_permissions(spec, model.PROMETHEUS_LEGACY_NAME),
    ),
    LegacySubsystem(
        component="alertmanager",
        applies=lambda spec: not spec.alertmanager_default_name,
        workload=lambda spec: model.workload(spec, "Alertmanager", model.ALERTMANAGER_LEGACY_NAME),
        instances=InstanceSelector(
            "Pod", model.alertmanager_instances_selector(model.ALERTMANAGER_LEGACY_NAME)
        ),
        dependents=_alertmanager_dependents,
    ),
    LegacySubsystem(
        component="grafana",
        applies=lambda spec: not spec.grafana_default_name,
        workload=lambda spec: model.workload(spec, "Grafana", model.GRAFANA_LEGACY_NAME),
        instances=InstanceSelector(
            "Pod", model.grafana_instances_selector(), shared=True
        ),
    ),
    LegacySubsystem(
        component="promtail",
        applies=lambda spec: spec.log_shipping_enabled,
        dependents=_promtail_dependents,
    ),
)


class MigrationGate(Stage):
    """Moves the stack off its legacy names, exactly once."""

    name = "migration"

    def __init__(
        self,
        store: ObjectStore,
        logger: Optional[logging.Logger] = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        subsystems: tuple[LegacySubsystem, ...] = LEGACY_SUBSYSTEMS,
    ):
        super().__init__(store, logger=logger, max_attempts=max_attempts)
        self.subsystems = tuple(subsystems)

    def reconcile(
        self,
        spec: ObservabilitySpec,
        status: ObservabilityStatus,
        *,
        deadline: Optional[Deadline] = None,
    ) -> StageOutcome:
        if status.migrated:
            return StageOutcome.SUCCESS

        for subsystem in self.subsystems:
            if not subsystem.applies(spec):
                continue
            outcome = self._migrate(subsystem, spec, deadline)
            if outcome is not StageOutcome.SUCCESS:
                return outcome

        status.mark_migrated()
        self.logger.info(
            "Legacy resource migration complete",
            extra={"stage": self.name, "event": "migration_completed"},
        )
        return StageOutcome.SUCCESS

    def cleanup(self, spec: ObservabilitySpec, *, deadline: Optional[Deadline] = None) -> StageOutcome:
        return StageOutcome.SUCCESS

    def _migrate(
        self,
        subsystem: LegacySubsystem,
        spec: ObservabilitySpec,
        deadline: Optional[Deadline],
    ) -> StageOutcome:
        if subsystem.workload is not None:
            deleted = self._delete(subsystem.workload(spec), deadline)

            instances = subsystem.instances
            if instances is not None and (deleted or not instances.shared):
                barrier = check(
                    instances_removed(
                        self.store,
                        instances.kind,
                        spec.namespace,
                        instances.labels,
                    ),
                    deadline=deadline,
                    description=f"legacy {subsystem.component} instances to terminate",
                )
                if barrier is not StageOutcome.SUCCESS:
                    return barrier

        for identity in subsystem.dependents(spec):
            self._delete(identity, deadline)
        return StageOutcome.SUCCESS
