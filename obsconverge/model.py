"""
Naming model for the managed stack.

Maps an ObservabilitySpec to the identities of every object the stages touch:
current-scheme names, legacy names that the migration gate tears down, and
the label selectors used to observe running instances.
"""

from obsconverge.schemas import ObjectIdentity, ObservabilitySpec


# Names used before the current naming scheme
PROMETHEUS_LEGACY_NAME = "kafka-prometheus"
ALERTMANAGER_LEGACY_NAME = "kafka-alertmanager"
GRAFANA_LEGACY_NAME = "kafka-grafana"
PROMTAIL_LEGACY_NAME = "kafka-promtail"

# Current-scheme names when the spec does not pin one
PROMETHEUS_NAME = "observability-prometheus"
ALERTMANAGER_NAME = "observability-alertmanager"
GRAFANA_NAME = "observability-grafana"
PROMTAIL_NAME = "observability-promtail"

# Operator installation
CATALOG_SOURCE_NAME = "prometheus-catalogsource"
CATALOG_SOURCE_IMAGE = "quay.io/integreatly/custom-prometheus-index:1.0.0"
SUBSCRIPTION_NAME = "prometheus-subscription"
OPERATOR_GROUP_NAME = "observability-operatorgroup"
OPERATOR_DEPLOYMENT_NAME = "prometheus-operator"
OPERATOR_PACKAGE = "prometheus"
OPERATOR_CHANNEL = "preview"

# Installation left behind by an earlier release; removed by the drift guard
STALE_OPERATOR_CSV = "prometheusoperator.0.56.3"

TOKEN_SECRET_NAME = "observatorium-credentials"

# Workloads the operators generate from the CRs
GRAFANA_DEPLOYMENT_NAME = "grafana-deployment"

MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
MANAGED_BY = "obsconverge"
INSTANCE_LABEL = "app.kubernetes.io/instance"
GRAFANA_POD_LABEL = "app"
GRAFANA_POD_LABEL_VALUE = "grafana"


def managed_labels(spec: ObservabilitySpec, component: str) -> dict[str, str]:
    return {
        MANAGED_BY_LABEL: MANAGED_BY,
        "app.kubernetes.io/name": component,
        "app.kubernetes.io/part-of": spec.name,
    }


# -----------------------------------------------------------------------------
# Current names
# -----------------------------------------------------------------------------


def prometheus_name(spec: ObservabilitySpec) -> str:
    return spec.prometheus_default_name or PROMETHEUS_NAME


def alertmanager_name(spec: ObservabilitySpec) -> str:
    return spec.alertmanager_default_name or ALERTMANAGER_NAME


def grafana_name(spec: ObservabilitySpec) -> str:
    return spec.grafana_default_name or GRAFANA_NAME


def promtail_name(spec: ObservabilitySpec) -> str:
    return PROMTAIL_NAME


# -----------------------------------------------------------------------------
# Per-component object sets
# -----------------------------------------------------------------------------


def workload(spec: ObservabilitySpec, kind: str, name: str) -> ObjectIdentity:
    return ObjectIdentity(kind=kind, name=name, namespace=spec.namespace)


def route(spec: ObservabilitySpec, name: str) -> ObjectIdentity:
    return ObjectIdentity(kind="Route", name=name, namespace=spec.namespace)


def service(spec: ObservabilitySpec, name: str) -> ObjectIdentity:
    return ObjectIdentity(kind="Service", name=name, namespace=spec.namespace)


def service_account(spec: ObservabilitySpec, name: str) -> ObjectIdentity:
    return ObjectIdentity(kind="ServiceAccount", name=name, namespace=spec.namespace)


def cluster_role(name: str) -> ObjectIdentity:
    return ObjectIdentity(kind="ClusterRole", name=name)


def cluster_role_binding(name: str) -> ObjectIdentity:
    return ObjectIdentity(kind="ClusterRoleBinding", name=name)


def alertmanager_secret(spec: ObservabilitySpec, alertmanager: str) -> ObjectIdentity:
    """Generated config secret; the Alertmanager operator reads alertmanager-<name>."""
    return ObjectIdentity(kind="Secret", name=f"alertmanager-{alertmanager}", namespace=spec.namespace)


def renders_alertmanager_config(spec: ObservabilitySpec) -> bool:
    """True when obsconverge writes the Alertmanager config secret itself."""
    return not spec.has_alertmanager_config_secret() and not spec.external_sync_disabled


def prometheus_statefulset(name: str) -> str:
    return f"prometheus-{name}"


def alertmanager_statefulset(name: str) -> str:
    return f"alertmanager-{name}"


def prometheus_instances_selector(name: str) -> dict[str, str]:
    return {"prometheus": name}


def alertmanager_instances_selector(name: str) -> dict[str, str]:
    return {"alertmanager": name}


def grafana_instances_selector() -> dict[str, str]:
    """Grafana operator pods carry app=grafana whatever the CR is called."""
    return {GRAFANA_POD_LABEL: GRAFANA_POD_LABEL_VALUE}


# -----------------------------------------------------------------------------
# Operator installation
# -----------------------------------------------------------------------------


def operator_namespace(spec: ObservabilitySpec) -> ObjectIdentity:
    return ObjectIdentity(kind="Namespace", name=spec.operator_namespace)


def catalog_source(spec: ObservabilitySpec) -> ObjectIdentity:
    return ObjectIdentity(kind="CatalogSource", name=CATALOG_SOURCE_NAME, namespace=spec.operator_namespace)


def subscription(spec: ObservabilitySpec) -> ObjectIdentity:
    return ObjectIdentity(kind="Subscription", name=SUBSCRIPTION_NAME, namespace=spec.operator_namespace)


def operator_group(spec: ObservabilitySpec) -> ObjectIdentity:
    return ObjectIdentity(kind="OperatorGroup", name=OPERATOR_GROUP_NAME, namespace=spec.operator_namespace)


def stale_operator_csv(spec: ObservabilitySpec) -> ObjectIdentity:
    return ObjectIdentity(
        kind="ClusterServiceVersion", name=STALE_OPERATOR_CSV, namespace=spec.operator_namespace
    )


def token_secret(spec: ObservabilitySpec) -> ObjectIdentity:
    return ObjectIdentity(kind="Secret", name=TOKEN_SECRET_NAME, namespace=spec.namespace)
