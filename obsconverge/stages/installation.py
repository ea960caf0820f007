"""
Prometheus operator installation stage.

Ensures the operator is installed through the catalog (catalog source,
subscription, operator group; plus the operator namespace in descoped mode)
and waits, one observation per tick, for the operator deployment to report a
ready replica.

Before the catalog source exists for the first time, any installation left
behind by an earlier release is removed so the new subscription does not
collide with it.
"""

from typing import Optional

from obsconverge import model
from obsconverge.deadline import Deadline
from obsconverge.errors import NotFoundError
from obsconverge.readiness import any_exists, check, deployment_ready
from obsconverge.schemas import ManagedObject, ObservabilitySpec, ObservabilityStatus, StageOutcome

from .base import Stage


class OperatorInstallationStage(Stage):
    """Installs the Prometheus operator and waits until it is ready."""

    name = "prometheus-installation"

    def reconcile(
        self,
        spec: ObservabilitySpec,
        status: ObservabilityStatus,
        *,
        deadline: Optional[Deadline] = None,
    ) -> StageOutcome:
        if spec.descoped:
            self._apply(model.operator_namespace(spec), lambda obj: None, deadline)

        self._reconcile_catalog_source(spec, deadline)
        self._reconcile_subscription(spec, deadline)
        self._reconcile_operator_group(spec, deadline)

        outcome = check(
            deployment_ready(self.store, spec.operator_namespace, model.OPERATOR_DEPLOYMENT_NAME),
            deadline=deadline,
            description=f"deployment {model.OPERATOR_DEPLOYMENT_NAME} in {spec.operator_namespace}",
        )
        status.ready["prometheus-operator"] = outcome is StageOutcome.SUCCESS
        return outcome

    def cleanup(self, spec: ObservabilitySpec, *, deadline: Optional[Deadline] = None) -> StageOutcome:
        self._delete(model.subscription(spec), deadline)
        self._delete(model.operator_group(spec), deadline)
        self._delete(model.catalog_source(spec), deadline)
        if spec.descoped:
            self._delete(model.operator_namespace(spec), deadline)
        return StageOutcome.SUCCESS

    def _reconcile_catalog_source(self, spec: ObservabilitySpec, deadline: Optional[Deadline]) -> None:
        source = model.catalog_source(spec)

        # No catalog source yet: clear out a stale installation first
        try:
            self.store.get(source, deadline=deadline)
        except NotFoundError:
            self.remove_stale_installation(spec, deadline)

        def mutate(obj: ManagedObject) -> None:
            obj.spec.update({
                "sourceType": "grpc",
                "image": model.CATALOG_SOURCE_IMAGE,
            })

        self._apply(source, mutate, deadline)

    def _reconcile_subscription(self, spec: ObservabilitySpec, deadline: Optional[Deadline]) -> None:
        def mutate(obj: ManagedObject) -> None:
            obj.spec.update({
                "source": model.CATALOG_SOURCE_NAME,
                "sourceNamespace": spec.operator_namespace,
                "name": model.OPERATOR_PACKAGE,
                "channel": model.OPERATOR_CHANNEL,
                "installPlanApproval": "Automatic",
                "config": {"resources": spec.resources_for("prometheus")},
            })
            obj.spec.pop("startingCSV", None)

        self._apply(model.subscription(spec), mutate, deadline)

    def _reconcile_operator_group(self, spec: ObservabilitySpec, deadline: Optional[Deadline]) -> None:
        # Any operator group already covering the namespace is reused
        if any_exists(self.store, "OperatorGroup", spec.operator_namespace)(deadline):
            return

        def mutate(obj: ManagedObject) -> None:
            obj.spec["targetNamespaces"] = [spec.operator_namespace]

        self._apply(model.operator_group(spec), mutate, deadline)

    def remove_stale_installation(self, spec: ObservabilitySpec, deadline: Optional[Deadline]) -> None:
        """Delete the subscription and CSV of the previously shipped operator version."""
        self.logger.info(
            f"Removing stale operator installation {model.STALE_OPERATOR_CSV}",
            extra={"stage": self.name, "event": "stale_installation_removal"},
        )
        self._delete(model.subscription(spec), deadline)
        self._delete(model.stale_operator_csv(spec), deadline)
