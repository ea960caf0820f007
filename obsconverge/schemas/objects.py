"""
Object schemas - identities and live objects in the object store.

ObjectIdentity addresses an object; ManagedObject is a store-resident object
plus the concurrency token it was read with.
"""

import copy
from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass(frozen=True)
class ObjectIdentity:
    """
    (kind, namespace, name) tuple identifying an object in the store.

    Attributes:
        kind: Object kind, e.g. "Prometheus" or "ClusterRole"
        name: Object name
        namespace: Namespace, or None for cluster-scoped kinds
    """
    kind: str
    name: str
    namespace: Optional[str] = None

    def __post_init__(self):
        if not self.kind:
            raise ValueError("ObjectIdentity requires a kind")
        if not self.name:
            raise ValueError("ObjectIdentity requires a name")

    @property
    def cluster_scoped(self) -> bool:
        return self.namespace is None

    def __str__(self) -> str:
        if self.namespace:
            return f"{self.kind}/{self.namespace}/{self.name}"
        return f"{self.kind}/{self.name}"


@dataclass
class ManagedObject:
    """
    A live object as read from the store.

    Attributes:
        identity: Where the object lives
        body: Everything except identity: labels, annotations, spec, data, status
        resource_version: Concurrency token; None until the store assigns one
    """
    identity: ObjectIdentity
    body: dict[str, Any] = field(default_factory=dict)
    resource_version: Optional[str] = None

    @property
    def labels(self) -> dict[str, str]:
        return self.body.setdefault("labels", {})

    @property
    def spec(self) -> dict[str, Any]:
        return self.body.setdefault("spec", {})

    @property
    def status(self) -> dict[str, Any]:
        return self.body.get("status") or {}

    def matches(self, selector: Optional[dict[str, str]]) -> bool:
        """Check whether this object's labels satisfy an equality selector."""
        if not selector:
            return True
        labels = self.body.get("labels") or {}
        return all(labels.get(key) == value for key, value in selector.items())

    def clone(self) -> "ManagedObject":
        """Deep copy so callers never share a body with the store."""
        return ManagedObject(
            identity=self.identity,
            body=copy.deepcopy(self.body),
            resource_version=self.resource_version,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        result = {
            "kind": self.identity.kind,
            "name": self.identity.name,
            "body": self.body,
        }
        if self.identity.namespace is not None:
            result["namespace"] = self.identity.namespace
        if self.resource_version is not None:
            result["resource_version"] = self.resource_version
        return result
