"""
ObservabilitySpec schema - the user-declared desired state of the stack.

An ObservabilitySpec is immutable within a reconcile tick and read-only to
the core. It names the stack, selects which components still run under their
legacy names, and carries the scheduling hints propagated to workloads.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from obsconverge.errors import PermanentError


COMPONENTS = ("prometheus", "alertmanager", "grafana", "promtail")


@dataclass(frozen=True)
class ObservabilitySpec:
    """
    Desired specification for one observability stack.

    Attributes:
        name: Name of the stack instance
        namespace: Namespace the stack runs in
        prometheus_default_name: Pinned Prometheus name; empty means current naming
        alertmanager_default_name: Pinned Alertmanager name; empty means current naming
        grafana_default_name: Pinned Grafana name; empty means current naming
        external_sync_disabled: Stack runs without an external config repository
        observatorium_disabled: Stack does not forward to an observatorium
        alertmanager_config_secret: Name of a user-provided Alertmanager config secret
        prometheus_operator_namespace: Namespace for the Prometheus operator.
            When set, the stack runs in descoped mode and owns that namespace.
        grafana_version: Grafana image version; empty lets the operator choose
        tolerations: Pod tolerations propagated to managed workloads
        affinity: Pod affinity propagated to managed workloads
        resources: Per-component resource requirements
    """
    name: str
    namespace: str
    prometheus_default_name: str = ""
    alertmanager_default_name: str = ""
    grafana_default_name: str = ""
    external_sync_disabled: bool = False
    observatorium_disabled: bool = False
    alertmanager_config_secret: str = ""
    prometheus_operator_namespace: str = ""
    grafana_version: str = ""
    tolerations: tuple[dict[str, Any], ...] = field(default_factory=tuple)
    affinity: Optional[dict[str, Any]] = None
    resources: dict[str, dict[str, Any]] = field(default_factory=dict)

    def __post_init__(self):
        if not self.name:
            raise PermanentError("Observability spec requires a name")
        if not self.namespace:
            raise PermanentError(f"Observability spec '{self.name}' requires a namespace")
        unknown = set(self.resources) - set(COMPONENTS)
        if unknown:
            raise PermanentError(
                f"Observability spec '{self.name}': unknown components in resources: "
                f"{sorted(unknown)}"
            )

    @property
    def descoped(self) -> bool:
        return bool(self.prometheus_operator_namespace)

    @property
    def operator_namespace(self) -> str:
        """Namespace the Prometheus operator is installed into."""
        return self.prometheus_operator_namespace or self.namespace

    @property
    def log_shipping_enabled(self) -> bool:
        return not self.external_sync_disabled or not self.observatorium_disabled

    def has_alertmanager_config_secret(self) -> bool:
        return bool(self.alertmanager_config_secret)

    def resources_for(self, component: str) -> dict[str, Any]:
        return dict(self.resources.get(component, {}))

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for YAML output."""
        return {
            "name": self.name,
            "namespace": self.namespace,
            "prometheus_default_name": self.prometheus_default_name,
            "alertmanager_default_name": self.alertmanager_default_name,
            "grafana_default_name": self.grafana_default_name,
            "external_sync_disabled": self.external_sync_disabled,
            "observatorium_disabled": self.observatorium_disabled,
            "alertmanager_config_secret": self.alertmanager_config_secret,
            "prometheus_operator_namespace": self.prometheus_operator_namespace,
            "grafana_version": self.grafana_version,
            "tolerations": [dict(t) for t in self.tolerations],
            "affinity": self.affinity,
            "resources": {k: dict(v) for k, v in self.resources.items()},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ObservabilitySpec":
        """
        Deserialize from dictionary.

        Raises:
            PermanentError: If the data is not a mapping or has the wrong shape
        """
        if not isinstance(data, dict):
            raise PermanentError(
                f"Observability spec must be a mapping, got {type(data).__name__}"
            )

        tolerations = data.get("tolerations") or []
        if not isinstance(tolerations, list):
            raise PermanentError("Observability spec: 'tolerations' must be a list")

        resources = data.get("resources") or {}
        if not isinstance(resources, dict):
            raise PermanentError("Observability spec: 'resources' must be a mapping")

        try:
            return cls(
                name=data.get("name", ""),
                namespace=data.get("namespace", ""),
                prometheus_default_name=data.get("prometheus_default_name") or "",
                alertmanager_default_name=data.get("alertmanager_default_name") or "",
                grafana_default_name=data.get("grafana_default_name") or "",
                external_sync_disabled=bool(data.get("external_sync_disabled", False)),
                observatorium_disabled=bool(data.get("observatorium_disabled", False)),
                alertmanager_config_secret=data.get("alertmanager_config_secret") or "",
                prometheus_operator_namespace=data.get("prometheus_operator_namespace") or "",
                grafana_version=str(data.get("grafana_version") or ""),
                tolerations=tuple(dict(t) for t in tolerations),
                affinity=data.get("affinity"),
                resources={k: dict(v or {}) for k, v in resources.items()},
            )
        except (TypeError, ValueError) as e:
            raise PermanentError(f"Malformed observability spec: {e}") from e
