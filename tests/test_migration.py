"""Tests for the migration gate.

Tests cover:
- Zero store calls once migrated
- Per-subsystem deletion order, barrier included
- Barrier waits while legacy instances run
- All-or-nothing: a failure part-way leaves `migrated` unset and the next
  tick resumes
- Not-found tolerance on every delete
- Subsystem applicability from the spec
"""

import pytest

from obsconverge import model
from obsconverge.errors import TransientError
from obsconverge.schemas import ObjectIdentity, ObservabilitySpec, StageOutcome
from obsconverge.stages import MigrationGate


NS = "observability"


def legacy(kind, name, namespace=NS):
    return ObjectIdentity(kind, name, namespace)


def legacy_prometheus_objects():
    name = model.PROMETHEUS_LEGACY_NAME
    return [
        legacy("Prometheus", name),
        legacy("Route", name),
        legacy("Service", name),
        legacy("ServiceAccount", name),
        ObjectIdentity("ClusterRole", name),
        ObjectIdentity("ClusterRoleBinding", name),
    ]


def seed_all(store, identities):
    for identity in identities:
        store.seed(identity)


def deleted(store):
    return [target for op, target in store.calls if op == "delete"]


def operations(store):
    return [op for op, _ in store.calls]


@pytest.fixture
def gate(store):
    return MigrationGate(store)


class TestReentrancy:
    def test_no_store_calls_once_migrated(self, gate, store, spec, status):
        status.mark_migrated()

        result = gate.run_reconcile(spec, status)

        assert result.outcome is StageOutcome.SUCCESS
        assert store.calls == []

    def test_second_tick_after_completion_is_silent(self, gate, store, spec, status):
        gate.run_reconcile(spec, status)
        assert status.migrated
        store.calls.clear()

        gate.run_reconcile(spec, status)

        assert store.calls == []


class TestOrdering:
    def test_prometheus_subsystem_order(self, gate, store, spec, status):
        """Workload, then barrier, then exposure, then permissions."""
        seed_all(store, legacy_prometheus_objects())
        gate.subsystems = gate.subsystems[:1]

        result = gate.run_reconcile(spec, status)

        assert result.outcome is StageOutcome.SUCCESS
        name = model.PROMETHEUS_LEGACY_NAME
        assert store.calls == [
            ("delete", legacy("Prometheus", name)),
            ("list", ("Pod", NS, {"prometheus": name})),
            ("delete", legacy("Route", name)),
            ("delete", legacy("Service", name)),
            ("delete", legacy("ServiceAccount", name)),
            ("delete", ObjectIdentity("ClusterRole", name)),
            ("delete", ObjectIdentity("ClusterRoleBinding", name)),
        ]
        assert store.identities() == set()

    def test_subsystems_run_in_declared_order(self, gate, store, spec, status):
        gate.run_reconcile(spec, status)

        kinds = [identity.kind for identity in deleted(store)]
        assert kinds.index("Prometheus") < kinds.index("Alertmanager") < kinds.index("Grafana")
        assert deleted(store)[-1] == ObjectIdentity("ClusterRoleBinding", model.PROMTAIL_LEGACY_NAME)

    def test_alertmanager_config_secret_removed_after_barrier(self, gate, store, spec, status):
        gate.subsystems = gate.subsystems[1:2]

        gate.run_reconcile(spec, status)

        name = model.ALERTMANAGER_LEGACY_NAME
        assert deleted(store) == [
            legacy("Alertmanager", name),
            legacy("Route", name),
            legacy("Service", name),
            legacy("Secret", f"alertmanager-{name}"),
            legacy("ServiceAccount", name),
            ObjectIdentity("ClusterRole", name),
            ObjectIdentity("ClusterRoleBinding", name),
        ]
        assert operations(store).index("list") == 1


class TestBarrier:
    def test_waits_while_instances_run(self, gate, store, spec, status):
        seed_all(store, legacy_prometheus_objects())
        pod = legacy("Pod", "prometheus-kafka-prometheus-0")
        store.seed(pod, {"labels": {"prometheus": model.PROMETHEUS_LEGACY_NAME}})

        result = gate.run_reconcile(spec, status)

        assert result.outcome is StageOutcome.IN_PROGRESS
        assert not status.migrated
        # permissions stay until the instances are gone
        assert ObjectIdentity("ClusterRole", model.PROMETHEUS_LEGACY_NAME) in store.identities()
        assert legacy("Prometheus", model.PROMETHEUS_LEGACY_NAME) not in store.identities()
        # later subsystems were not touched
        assert not any(identity.kind == "Alertmanager" for identity in deleted(store))

    def test_completes_once_instances_are_gone(self, gate, store, spec, status):
        seed_all(store, legacy_prometheus_objects())
        pod = legacy("Pod", "prometheus-kafka-prometheus-0")
        store.seed(pod, {"labels": {"prometheus": model.PROMETHEUS_LEGACY_NAME}})
        assert gate.run_reconcile(spec, status).outcome is StageOutcome.IN_PROGRESS

        store.remove(pod)
        result = gate.run_reconcile(spec, status)

        assert result.outcome is StageOutcome.SUCCESS
        assert status.migrated
        assert store.identities() == set()

    def test_grafana_barrier_selects_operator_pod_label(self, gate, store, spec, status):
        store.seed(legacy("Grafana", model.GRAFANA_LEGACY_NAME))
        store.seed(legacy("Pod", "grafana-deployment-5d9f"), {"labels": {"app": "grafana"}})

        result = gate.run_reconcile(spec, status)

        assert result.outcome is StageOutcome.IN_PROGRESS
        assert ("list", ("Pod", NS, {"app": "grafana"})) in store.calls
        assert not status.migrated

    def test_current_grafana_pods_do_not_hold_the_barrier(self, gate, store, spec, status):
        """With the legacy Grafana already gone, app=grafana pods belong to the current one."""
        store.seed(legacy("Pod", "grafana-deployment-7c2a"), {"labels": {"app": "grafana"}})

        result = gate.run_reconcile(spec, status)

        assert result.outcome is StageOutcome.SUCCESS
        assert status.migrated


class TestAllOrNothing:
    def test_failure_leaves_migrated_unset(self, gate, store, spec, status):
        grafana = legacy("Grafana", model.GRAFANA_LEGACY_NAME)

        def fail_on_grafana(target):
            if target == grafana:
                raise TransientError("api server unavailable")

        store.faults["delete"] = fail_on_grafana

        result = gate.run_reconcile(spec, status)

        assert result.outcome is StageOutcome.FAILED
        assert isinstance(result.error, TransientError)
        assert not status.migrated

    def test_next_tick_resumes_and_completes(self, gate, store, spec, status):
        seed_all(store, legacy_prometheus_objects())
        grafana = legacy("Grafana", model.GRAFANA_LEGACY_NAME)
        store.seed(grafana)

        def fail_on_grafana(target):
            if target == grafana:
                raise TransientError("api server unavailable")

        store.faults["delete"] = fail_on_grafana
        assert gate.run_reconcile(spec, status).outcome is StageOutcome.FAILED

        del store.faults["delete"]
        result = gate.run_reconcile(spec, status)

        assert result.outcome is StageOutcome.SUCCESS
        assert status.migrated
        assert store.identities() == set()


class TestNotFoundTolerance:
    def test_empty_cluster_migrates(self, gate, store, spec, status):
        """Every legacy object already absent still counts as migrated."""
        result = gate.run_reconcile(spec, status)

        assert result.outcome is StageOutcome.SUCCESS
        assert status.migrated
        assert "delete" in operations(store)


class TestApplicability:
    def test_pinned_names_skip_subsystems(self, store, status):
        spec = ObservabilitySpec(
            name="stack",
            namespace=NS,
            prometheus_default_name="kafka-prometheus",
            alertmanager_default_name="kafka-alertmanager",
            grafana_default_name="kafka-grafana",
        )
        MigrationGate(store).run_reconcile(spec, status)

        kinds = {identity.kind for identity in deleted(store)}
        assert not kinds & {"Prometheus", "Alertmanager", "Grafana"}
        assert status.migrated

    def test_config_secret_kept_when_user_provided(self, store, status):
        spec = ObservabilitySpec(name="stack", namespace=NS, alertmanager_config_secret="my-config")
        MigrationGate(store).run_reconcile(spec, status)

        assert not any(identity.kind == "Secret" for identity in deleted(store))

    def test_config_secret_kept_without_external_sync(self, store, status):
        spec = ObservabilitySpec(name="stack", namespace=NS, external_sync_disabled=True)
        MigrationGate(store).run_reconcile(spec, status)

        assert not any(identity.kind == "Secret" for identity in deleted(store))

    def test_promtail_skipped_without_log_shipping(self, store, status):
        spec = ObservabilitySpec(
            name="stack",
            namespace=NS,
            external_sync_disabled=True,
            observatorium_disabled=True,
        )
        MigrationGate(store).run_reconcile(spec, status)

        names = {identity.name for identity in deleted(store)}
        assert model.PROMTAIL_LEGACY_NAME not in names


class TestCleanup:
    def test_cleanup_is_a_no_op(self, gate, store, spec):
        assert gate.run_cleanup(spec).outcome is StageOutcome.SUCCESS
        assert store.calls == []
