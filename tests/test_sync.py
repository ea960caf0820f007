"""Tests for the resource sync stage, the token stage and resource builders."""

import base64

import pytest

from obsconverge import model, resources
from obsconverge.errors import ConflictError
from obsconverge.schemas import ObjectIdentity, ObservabilitySpec, StageOutcome
from obsconverge.stages import ResourceSyncStage, SyncTarget, TokenStage, configuration_targets


NS = "observability"

PROMETHEUS = ObjectIdentity("Prometheus", model.PROMETHEUS_NAME, NS)
ALERTMANAGER = ObjectIdentity("Alertmanager", model.ALERTMANAGER_NAME, NS)
GRAFANA = ObjectIdentity("Grafana", model.GRAFANA_NAME, NS)
PROMTAIL = ObjectIdentity("DaemonSet", model.PROMTAIL_NAME, NS)
ALERTMANAGER_CONFIG = ObjectIdentity("Secret", f"alertmanager-{model.ALERTMANAGER_NAME}", NS)


@pytest.fixture
def stage(store):
    return ResourceSyncStage("configuration", configuration_targets(), store)


def writes(store):
    return [(op, target) for op, target in store.calls if op in ("create", "update", "delete")]


class TestResourceSyncStage:
    def test_creates_every_workload(self, stage, store, spec, status):
        result = stage.run_reconcile(spec, status)

        assert result.outcome is StageOutcome.SUCCESS
        assert {PROMETHEUS, ALERTMANAGER, GRAFANA, PROMTAIL} <= store.identities()

    def test_supporting_objects_share_the_workload_name(self, stage, store, spec, status):
        stage.run_reconcile(spec, status)

        name = model.PROMETHEUS_NAME
        assert {
            ObjectIdentity("ServiceAccount", name, NS),
            ObjectIdentity("ClusterRole", name),
            ObjectIdentity("ClusterRoleBinding", name),
            ObjectIdentity("Service", name, NS),
            ObjectIdentity("Route", name, NS),
        } <= store.identities()
        binding = store.peek(ObjectIdentity("ClusterRoleBinding", name)).body
        assert binding["roleRef"]["name"] == name
        assert binding["subjects"] == [{"kind": "ServiceAccount", "name": name, "namespace": NS}]
        assert store.peek(ObjectIdentity("Service", name, NS)).spec["selector"] == {"prometheus": name}

    def test_ready_markers_follow_observed_workloads(self, stage, store, spec, status):
        """Applied is not ready: markers stay False until the operators report instances."""
        stage.run_reconcile(spec, status)
        assert status.ready == {"prometheus": False, "alertmanager": False, "grafana": False, "promtail": False}

        store.seed(
            ObjectIdentity("StatefulSet", f"prometheus-{model.PROMETHEUS_NAME}", NS),
            {"status": {"readyReplicas": 1}},
        )
        store.seed(ObjectIdentity("DaemonSet", model.PROMTAIL_NAME, NS), {"status": {"numberReady": 3}})
        result = stage.run_reconcile(spec, status)

        assert result.outcome is StageOutcome.SUCCESS
        assert status.ready == {"prometheus": True, "alertmanager": False, "grafana": False, "promtail": True}

    def test_second_tick_writes_nothing(self, stage, store, spec, status):
        stage.run_reconcile(spec, status)
        store.calls.clear()

        stage.run_reconcile(spec, status)

        assert writes(store) == []

    def test_restores_deleted_workload(self, stage, store, spec, status):
        """Drift self-healing: an object removed by another actor comes back."""
        stage.run_reconcile(spec, status)
        store.remove(GRAFANA)

        stage.run_reconcile(spec, status)

        assert GRAFANA in store.identities()

    def test_reverts_modified_field(self, stage, store, spec, status):
        stage.run_reconcile(spec, status)
        live = store.peek(PROMETHEUS)
        live.spec["replicas"] = 7
        store.seed(PROMETHEUS, live.body)

        stage.run_reconcile(spec, status)

        assert store.peek(PROMETHEUS).spec["replicas"] == 1

    def test_pinned_names_are_used(self, store, status):
        spec = ObservabilitySpec(name="stack", namespace=NS, grafana_default_name="kafka-grafana")
        ResourceSyncStage("configuration", configuration_targets(), store).run_reconcile(spec, status)

        assert ObjectIdentity("Grafana", "kafka-grafana", NS) in store.identities()
        assert GRAFANA not in store.identities()

    def test_disabled_component_is_removed(self, stage, store, spec, status):
        stage.run_reconcile(spec, status)
        no_shipping = ObservabilitySpec(
            name="stack",
            namespace=NS,
            external_sync_disabled=True,
            observatorium_disabled=True,
        )

        stage.run_reconcile(no_shipping, status)

        assert PROMTAIL not in store.identities()
        assert ObjectIdentity("ServiceAccount", model.PROMTAIL_NAME, NS) not in store.identities()
        assert ObjectIdentity("ClusterRole", model.PROMTAIL_NAME) not in store.identities()
        assert "promtail" not in status.ready

    def test_exhausted_conflicts_fail_the_stage(self, stage, store, spec, status):
        def always_conflict(target):
            raise ConflictError("busy", reason=ConflictError.ALREADY_EXISTS)

        store.faults["create"] = always_conflict

        result = stage.run_reconcile(spec, status)

        assert result.outcome is StageOutcome.FAILED
        assert isinstance(result.error, ConflictError)

    def test_cleanup_reverse_order(self, stage, store, spec, status):
        stage.run_reconcile(spec, status)
        store.calls.clear()

        stage.run_cleanup(spec)

        deleted = [target for _, target in writes(store)]
        assert deleted.index(PROMTAIL) < deleted.index(GRAFANA) < deleted.index(ALERTMANAGER) < deleted.index(PROMETHEUS)
        name = model.PROMETHEUS_NAME
        prometheus_order = [
            PROMETHEUS,
            ObjectIdentity("Route", name, NS),
            ObjectIdentity("Service", name, NS),
            ObjectIdentity("ClusterRoleBinding", name),
            ObjectIdentity("ClusterRole", name),
            ObjectIdentity("ServiceAccount", name, NS),
        ]
        assert [target for target in deleted if target in prometheus_order] == prometheus_order
        assert store.identities() == set()

    def test_custom_targets(self, store, spec, status):
        secret = ObjectIdentity("Secret", "extra", NS)

        def mutate(obj):
            obj.body["data"] = {"key": "value"}

        plain = SyncTarget(component="extra", identity=lambda s: secret, mutation=lambda s: mutate)
        ResourceSyncStage("extras", [plain], store).run_reconcile(spec, status)

        assert store.peek(secret).body == {"data": {"key": "value"}}
        assert "extra" not in status.ready

        observed = SyncTarget(
            component="extra",
            identity=lambda s: secret,
            mutation=lambda s: mutate,
            ready=lambda store, s: lambda deadline: True,
        )
        ResourceSyncStage("extras", [observed], store).run_reconcile(spec, status)
        assert status.ready["extra"] is True

    def test_alertmanager_config_rendered(self, stage, store, spec, status):
        stage.run_reconcile(spec, status)

        secret = store.peek(ALERTMANAGER_CONFIG).body
        assert secret["type"] == "Opaque"
        decoded = base64.b64decode(secret["data"]["alertmanager.yaml"]).decode()
        assert decoded == resources.DEFAULT_ALERTMANAGER_CONFIG

    def test_user_managed_alertmanager_config_is_left_alone(self, store, status):
        spec = ObservabilitySpec(name="stack", namespace=NS, external_sync_disabled=True)
        store.seed(ALERTMANAGER_CONFIG, {"data": {"alertmanager.yaml": "dXNlcg=="}})
        stage = ResourceSyncStage("configuration", configuration_targets(), store)

        stage.run_reconcile(spec, status)
        stage.run_cleanup(spec)

        assert store.peek(ALERTMANAGER_CONFIG).body == {"data": {"alertmanager.yaml": "dXNlcg=="}}


class TestTokenStage:
    def test_reconcile_is_passive(self, store, spec, status):
        assert TokenStage(store).run_reconcile(spec, status).outcome is StageOutcome.SUCCESS
        assert store.calls == []

    def test_cleanup_removes_credentials(self, store, spec):
        secret = ObjectIdentity("Secret", model.TOKEN_SECRET_NAME, NS)
        store.seed(secret)

        TokenStage(store).run_cleanup(spec)

        assert secret not in store.identities()


class TestResourceBuilders:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("7.5.17", "7.5.17"),
            ("v9.1", "9.1.0"),
            ("10", "10.0.0"),
            ("8.2.3-beta1", "8.2.3"),
            ("", ""),
            ("latest", ""),
            ("0.0.0", ""),
        ],
    )
    def test_parse_version(self, raw, expected):
        assert resources.parse_version(raw) == expected

    def test_grafana_base_image(self, store, status):
        spec = ObservabilitySpec(name="stack", namespace=NS, grafana_version="v9.1")
        ResourceSyncStage("configuration", configuration_targets(), store).run_reconcile(spec, status)

        assert store.peek(GRAFANA).spec["baseImage"] == "docker.io/grafana/grafana:9.1.0"

    def test_grafana_without_version_lets_operator_choose(self, stage, store, spec, status):
        stage.run_reconcile(spec, status)
        assert store.peek(GRAFANA).spec["baseImage"] == ""

    def test_scheduling_propagated_and_cleared(self, store, status):
        toleration = {"key": "infra", "operator": "Exists", "effect": "NoSchedule"}
        with_tolerations = ObservabilitySpec(name="stack", namespace=NS, tolerations=(toleration,))
        stage = ResourceSyncStage("configuration", configuration_targets(), store)

        stage.run_reconcile(with_tolerations, status)
        assert store.peek(PROMETHEUS).spec["tolerations"] == [toleration]
        assert store.peek(GRAFANA).spec["deployment"]["tolerations"] == [toleration]

        stage.run_reconcile(ObservabilitySpec(name="stack", namespace=NS), status)
        assert "tolerations" not in store.peek(PROMETHEUS).spec

    def test_alertmanager_config_secret(self, store, status):
        spec = ObservabilitySpec(name="stack", namespace=NS, alertmanager_config_secret="custom")
        stage = ResourceSyncStage("configuration", configuration_targets(), store)

        stage.run_reconcile(spec, status)
        assert store.peek(ALERTMANAGER).spec["configSecret"] == "custom"

        stage.run_reconcile(ObservabilitySpec(name="stack", namespace=NS), status)
        assert "configSecret" not in store.peek(ALERTMANAGER).spec

    def test_prometheus_points_at_alertmanager(self, stage, store, spec, status):
        stage.run_reconcile(spec, status)
        alertmanagers = store.peek(PROMETHEUS).spec["alerting"]["alertmanagers"]
        assert alertmanagers == [{"namespace": NS, "name": model.ALERTMANAGER_NAME, "port": "web"}]

    def test_managed_labels(self, stage, store, spec, status):
        stage.run_reconcile(spec, status)
        assert store.peek(GRAFANA).labels[model.MANAGED_BY_LABEL] == model.MANAGED_BY
