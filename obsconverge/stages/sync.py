"""
Per-resource sync stage.

Applies the desired form of a fixed list of managed objects through the
applier. Each SyncTarget names one object and the mutation that describes it;
targets whose component is disabled by the spec are removed instead.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from obsconverge import model, resources
from obsconverge.applier import DEFAULT_MAX_ATTEMPTS, ApplyResult, Mutation
from obsconverge.deadline import Deadline
from obsconverge.readiness import Condition, check, replicas_ready
from obsconverge.schemas import ObjectIdentity, ObservabilitySpec, ObservabilityStatus, StageOutcome
from obsconverge.store import ObjectStore

from .base import Stage


def _always(spec: ObservabilitySpec) -> bool:
    return True


@dataclass(frozen=True)
class SyncTarget:
    """
    One managed object kept in sync by a ResourceSyncStage.

    Attributes:
        component: Subsystem name, used for readiness markers
        identity: Builds the object's identity from the spec
        mutation: Builds the mutation describing the desired object
        enabled: Whether the spec wants this object at all
        ready: Builds the condition recorded in status.ready[component]; targets
            without one leave the marker alone
        prune: Delete the object while disabled; False leaves it to whoever
            manages it instead
    """
    component: str
    identity: Callable[[ObservabilitySpec], ObjectIdentity]
    mutation: Callable[[ObservabilitySpec], Mutation]
    enabled: Callable[[ObservabilitySpec], bool] = _always
    ready: Optional[Callable[[ObjectStore, ObservabilitySpec], Condition]] = None
    prune: bool = True


class ResourceSyncStage(Stage):
    """Applies each target's desired specification in declared order."""

    def __init__(
        self,
        name: str,
        targets: list[SyncTarget],
        store: ObjectStore,
        logger: Optional[logging.Logger] = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ):
        self.name = name
        super().__init__(store, logger=logger, max_attempts=max_attempts)
        self.targets = tuple(targets)

    def reconcile(
        self,
        spec: ObservabilitySpec,
        status: ObservabilityStatus,
        *,
        deadline: Optional[Deadline] = None,
    ) -> StageOutcome:
        for target in self.targets:
            identity = target.identity(spec)
            if not target.enabled(spec):
                if target.prune:
                    self._delete(identity, deadline)
                if target.ready is not None:
                    status.ready.pop(target.component, None)
                continue

            result = self._apply(identity, target.mutation(spec), deadline)
            if result is not ApplyResult.UNCHANGED:
                self.logger.info(
                    f"{identity} {result.value}",
                    extra={"stage": self.name, "event": "resource_synced", "metadata": {"result": result.value}},
                )
            if target.ready is not None:
                # observed, not awaited: the stage succeeds once everything is applied
                observed = check(
                    target.ready(self.store, spec),
                    deadline=deadline,
                    description=f"{target.component} to become ready",
                )
                status.ready[target.component] = observed is StageOutcome.SUCCESS
        return StageOutcome.SUCCESS

    def cleanup(self, spec: ObservabilitySpec, *, deadline: Optional[Deadline] = None) -> StageOutcome:
        # reverse order: later targets may depend on earlier ones
        for target in reversed(self.targets):
            if target.prune or target.enabled(spec):
                self._delete(target.identity(spec), deadline)
        return StageOutcome.SUCCESS


def _supporting_targets(
    component: str,
    name: Callable[[ObservabilitySpec], str],
    rules: list[dict],
    enabled: Callable[[ObservabilitySpec], bool] = _always,
) -> list[SyncTarget]:
    """Service account, cluster role and binding, all named after the workload."""
    return [
        SyncTarget(
            component=component,
            identity=lambda spec: model.service_account(spec, name(spec)),
            mutation=lambda spec: resources.service_account(spec, component),
            enabled=enabled,
        ),
        SyncTarget(
            component=component,
            identity=lambda spec: model.cluster_role(name(spec)),
            mutation=lambda spec: resources.cluster_role(spec, component, rules),
            enabled=enabled,
        ),
        SyncTarget(
            component=component,
            identity=lambda spec: model.cluster_role_binding(name(spec)),
            mutation=lambda spec: resources.cluster_role_binding(spec, component, name(spec)),
            enabled=enabled,
        ),
    ]


def _exposure_targets(
    component: str,
    name: Callable[[ObservabilitySpec], str],
    port: int,
    selector: Callable[[str], dict[str, str]],
) -> list[SyncTarget]:
    return [
        SyncTarget(
            component=component,
            identity=lambda spec: model.service(spec, name(spec)),
            mutation=lambda spec: resources.service(spec, component, port, selector(name(spec))),
        ),
        SyncTarget(
            component=component,
            identity=lambda spec: model.route(spec, name(spec)),
            mutation=lambda spec: resources.route(spec, component, name(spec)),
        ),
    ]


def configuration_targets() -> list[SyncTarget]:
    """The objects of the observability stack under current-scheme names."""
    return [
        *_supporting_targets(
            "prometheus", model.prometheus_name, resources.PROMETHEUS_RULES + resources.PROXY_RULES
        ),
        *_exposure_targets("prometheus", model.prometheus_name, 9090, model.prometheus_instances_selector),
        SyncTarget(
            component="prometheus",
            identity=lambda spec: model.workload(spec, "Prometheus", model.prometheus_name(spec)),
            mutation=resources.prometheus,
            ready=lambda store, spec: replicas_ready(
                store, "StatefulSet", spec.namespace, model.prometheus_statefulset(model.prometheus_name(spec))
            ),
        ),
        *_supporting_targets("alertmanager", model.alertmanager_name, resources.PROXY_RULES),
        SyncTarget(
            component="alertmanager",
            identity=lambda spec: model.alertmanager_secret(spec, model.alertmanager_name(spec)),
            mutation=resources.alertmanager_config,
            enabled=model.renders_alertmanager_config,
            prune=False,
        ),
        *_exposure_targets("alertmanager", model.alertmanager_name, 9093, model.alertmanager_instances_selector),
        SyncTarget(
            component="alertmanager",
            identity=lambda spec: model.workload(spec, "Alertmanager", model.alertmanager_name(spec)),
            mutation=resources.alertmanager,
            ready=lambda store, spec: replicas_ready(
                store, "StatefulSet", spec.namespace, model.alertmanager_statefulset(model.alertmanager_name(spec))
            ),
        ),
        SyncTarget(
            component="grafana",
            identity=lambda spec: model.workload(spec, "Grafana", model.grafana_name(spec)),
            mutation=resources.grafana,
            ready=lambda store, spec: replicas_ready(
                store, "Deployment", spec.namespace, model.GRAFANA_DEPLOYMENT_NAME
            ),
        ),
        *_supporting_targets(
            "promtail",
            model.promtail_name,
            resources.PROMTAIL_RULES,
            enabled=lambda spec: spec.log_shipping_enabled,
        ),
        SyncTarget(
            component="promtail",
            identity=lambda spec: model.workload(spec, "DaemonSet", model.promtail_name(spec)),
            mutation=resources.promtail,
            enabled=lambda spec: spec.log_shipping_enabled,
            ready=lambda store, spec: replicas_ready(
                store, "DaemonSet", spec.namespace, model.promtail_name(spec), ready_field="numberReady"
            ),
        ),
    ]


class TokenStage(Stage):
    """
    Owns the observatorium credentials secret.

    Tokens are written by an external issuer; this stage only removes the
    secret when the stack is torn down.
    """

    name = "token"

    def reconcile(
        self,
        spec: ObservabilitySpec,
        status: ObservabilityStatus,
        *,
        deadline: Optional[Deadline] = None,
    ) -> StageOutcome:
        return StageOutcome.SUCCESS

    def cleanup(self, spec: ObservabilitySpec, *, deadline: Optional[Deadline] = None) -> StageOutcome:
        self._delete(model.token_secret(spec), deadline)
        return StageOutcome.SUCCESS
