"""
Desired forms of the managed workloads.

Each builder returns a mutation for applier.apply(): it overwrites the fields
obsconverge owns and leaves everything else on the live object untouched, so
edits by other controllers to unrelated fields survive and drift in owned
fields is reverted.
"""

import base64
import re
from typing import Any

from obsconverge import model
from obsconverge.applier import Mutation
from obsconverge.schemas import ManagedObject, ObservabilitySpec

GRAFANA_BASE_IMAGE = "docker.io/grafana/grafana:"
PROMTAIL_IMAGE = "docker.io/grafana/promtail:2.9.3"
PRIORITY_CLASS_NAME = "observability-priority-class"

# major[.minor[.patch]] with optional leading "v" and trailing pre-release/build
_VERSION_PATTERN = re.compile(r"^v?(\d+)(?:\.(\d+))?(?:\.(\d+))?(?:[-+].*)?$")


def parse_version(raw: str) -> str:
    """
    Normalize a loosely written version to major.minor.patch.

    Returns an empty string for empty or unparseable input, which lets the
    Grafana operator pick its default image.
    """
    match = _VERSION_PATTERN.match(raw.strip()) if raw else None
    if not match:
        return ""
    major, minor, patch = (int(part) if part else 0 for part in match.groups())
    if (major, minor, patch) == (0, 0, 0):
        return ""
    return f"{major}.{minor}.{patch}"


def _set_scheduling(target: dict[str, Any], spec: ObservabilitySpec) -> None:
    """Own tolerations/affinity: set them from the spec or clear them."""
    if spec.tolerations:
        target["tolerations"] = [dict(t) for t in spec.tolerations]
    else:
        target.pop("tolerations", None)
    if spec.affinity:
        target["affinity"] = spec.affinity
    else:
        target.pop("affinity", None)


def _set_labels(obj: ManagedObject, labels: dict[str, str]) -> None:
    obj.labels.update(labels)


def prometheus(spec: ObservabilitySpec) -> Mutation:
    name = model.prometheus_name(spec)

    def mutate(obj: ManagedObject) -> None:
        _set_labels(obj, model.managed_labels(spec, "prometheus"))
        obj.spec.update({
            "serviceAccountName": name,
            "replicas": 1,
            "priorityClassName": PRIORITY_CLASS_NAME,
            "ruleSelector": {"matchLabels": {"app": spec.name}},
            "podMonitorSelector": {"matchLabels": {"app": spec.name}},
            "serviceMonitorSelector": {"matchLabels": {"app": spec.name}},
            "alerting": {
                "alertmanagers": [{
                    "namespace": spec.namespace,
                    "name": model.alertmanager_name(spec),
                    "port": "web",
                }],
            },
            "resources": spec.resources_for("prometheus"),
        })
        _set_scheduling(obj.spec, spec)

    return mutate


def alertmanager(spec: ObservabilitySpec) -> Mutation:
    name = model.alertmanager_name(spec)

    def mutate(obj: ManagedObject) -> None:
        _set_labels(obj, model.managed_labels(spec, "alertmanager"))
        obj.spec.update({
            "serviceAccountName": name,
            "replicas": 1,
            "priorityClassName": PRIORITY_CLASS_NAME,
            "resources": spec.resources_for("alertmanager"),
        })
        _set_scheduling(obj.spec, spec)
        if spec.has_alertmanager_config_secret():
            obj.spec["configSecret"] = spec.alertmanager_config_secret
        else:
            obj.spec.pop("configSecret", None)

    return mutate


def grafana(spec: ObservabilitySpec) -> Mutation:
    """Dashboard service: Grafana CR behind an OAuth proxy."""
    version = parse_version(spec.grafana_version)
    base_image = GRAFANA_BASE_IMAGE + version if version else ""

    def mutate(obj: ManagedObject) -> None:
        _set_labels(obj, model.managed_labels(spec, "grafana"))
        deployment: dict[str, Any] = {
            "replicas": 1,
            "priorityClassName": PRIORITY_CLASS_NAME,
            "annotations": {"cluster-autoscaler.kubernetes.io/safe-to-evict": "true"},
        }
        _set_scheduling(deployment, spec)
        obj.spec.update({
            "config": {
                "log": {"mode": "console", "level": "warn"},
                "auth": {"disable_login_form": False, "disable_signout_menu": True},
                "auth.basic": {"enabled": True},
                "auth.anonymous": {"enabled": True},
            },
            "baseImage": base_image,
            "dashboardLabelSelector": [{"matchLabels": {"app": spec.name}}],
            "ingress": {"enabled": True, "targetPort": "grafana-proxy", "termination": "reencrypt"},
            "secrets": ["grafana-k8s-tls", "grafana-k8s-proxy"],
            "service": {
                "annotations": {
                    "service.alpha.openshift.io/serving-cert-secret-name": "grafana-k8s-tls",
                },
                "ports": [{
                    "name": "grafana-proxy",
                    "protocol": "TCP",
                    "port": 9091,
                    "targetPort": "grafana-proxy",
                }],
            },
            "client": {"preferService": True},
            "deployment": deployment,
            "resources": spec.resources_for("grafana"),
        })

    return mutate


def promtail(spec: ObservabilitySpec) -> Mutation:
    """Log shipper: Promtail DaemonSet."""
    name = model.promtail_name(spec)

    def mutate(obj: ManagedObject) -> None:
        labels = model.managed_labels(spec, "promtail")
        _set_labels(obj, labels)
        pod_spec: dict[str, Any] = {
            "serviceAccountName": name,
            "priorityClassName": PRIORITY_CLASS_NAME,
            "containers": [{
                "name": "promtail",
                "image": PROMTAIL_IMAGE,
                "args": ["-config.file=/etc/promtail/promtail.yaml"],
                "resources": spec.resources_for("promtail"),
            }],
        }
        _set_scheduling(pod_spec, spec)
        obj.spec.update({
            "selector": {"matchLabels": {model.INSTANCE_LABEL: name}},
            "template": {
                "metadata": {"labels": {**labels, model.INSTANCE_LABEL: name}},
                "spec": pod_spec,
            },
        })

    return mutate


# -----------------------------------------------------------------------------
# Supporting objects: identity, permissions, exposure, config
# -----------------------------------------------------------------------------

PROMETHEUS_RULES = [
    {
        "apiGroups": [""],
        "resources": ["nodes", "nodes/metrics", "services", "endpoints", "pods"],
        "verbs": ["get", "list", "watch"],
    },
    {"apiGroups": [""], "resources": ["configmaps"], "verbs": ["get"]},
    {"nonResourceURLs": ["/metrics"], "verbs": ["get"]},
]

# oauth-proxy in front of the UI validates tokens through these reviews
PROXY_RULES = [
    {"apiGroups": ["authentication.k8s.io"], "resources": ["tokenreviews"], "verbs": ["create"]},
    {"apiGroups": ["authorization.k8s.io"], "resources": ["subjectaccessreviews"], "verbs": ["create"]},
]

PROMTAIL_RULES = [
    {
        "apiGroups": [""],
        "resources": ["nodes", "nodes/proxy", "services", "endpoints", "pods"],
        "verbs": ["get", "list", "watch"],
    },
]

DEFAULT_ALERTMANAGER_CONFIG = """\
route:
  receiver: default
  group_by: [alertname]
receivers:
  - name: default
"""


def service_account(spec: ObservabilitySpec, component: str) -> Mutation:
    def mutate(obj: ManagedObject) -> None:
        _set_labels(obj, model.managed_labels(spec, component))

    return mutate


def cluster_role(spec: ObservabilitySpec, component: str, rules: list[dict[str, Any]]) -> Mutation:
    def mutate(obj: ManagedObject) -> None:
        _set_labels(obj, model.managed_labels(spec, component))
        obj.body["rules"] = [dict(rule) for rule in rules]

    return mutate


def cluster_role_binding(spec: ObservabilitySpec, component: str, name: str) -> Mutation:
    """Binds the component's cluster role to its service account, both called `name`."""

    def mutate(obj: ManagedObject) -> None:
        _set_labels(obj, model.managed_labels(spec, component))
        obj.body["roleRef"] = {
            "apiGroup": "rbac.authorization.k8s.io",
            "kind": "ClusterRole",
            "name": name,
        }
        obj.body["subjects"] = [{"kind": "ServiceAccount", "name": name, "namespace": spec.namespace}]

    return mutate


def service(spec: ObservabilitySpec, component: str, port: int, selector: dict[str, str]) -> Mutation:
    def mutate(obj: ManagedObject) -> None:
        _set_labels(obj, model.managed_labels(spec, component))
        obj.spec.update({
            "ports": [{"name": "web", "protocol": "TCP", "port": port, "targetPort": "web"}],
            "selector": dict(selector),
        })

    return mutate


def route(spec: ObservabilitySpec, component: str, service_name: str) -> Mutation:
    def mutate(obj: ManagedObject) -> None:
        _set_labels(obj, model.managed_labels(spec, component))
        obj.spec.update({
            "to": {"kind": "Service", "name": service_name, "weight": 100},
            "port": {"targetPort": "web"},
            "tls": {"termination": "edge", "insecureEdgeTerminationPolicy": "Redirect"},
            "wildcardPolicy": "None",
        })

    return mutate


def alertmanager_config(spec: ObservabilitySpec) -> Mutation:
    """Default alertmanager.yaml, read by the operator from alertmanager-<name>."""
    encoded = base64.b64encode(DEFAULT_ALERTMANAGER_CONFIG.encode()).decode()

    def mutate(obj: ManagedObject) -> None:
        _set_labels(obj, model.managed_labels(spec, "alertmanager"))
        obj.body["type"] = "Opaque"
        obj.body["data"] = {"alertmanager.yaml": encoded}

    return mutate
