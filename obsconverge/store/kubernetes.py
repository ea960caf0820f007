"""
KubernetesObjectStore - ObjectStore backed by a live cluster.

Uses the kubernetes dynamic client so every kind the stack manages, including
custom resources (Prometheus, Grafana, Subscription, ...), goes through the
same get/create/replace/delete/list calls.

Error classification:
- 404 -> NotFoundError
- 409 on create -> ConflictError(already_exists); 409 on replace -> ConflictError(stale_token)
- 429, 5xx, connection and timeout errors -> TransientError
- Everything else -> PermanentError (fail fast, no string matching)
"""

import logging
from typing import Any, Optional

from kubernetes import client as k8s_client
from kubernetes import config as k8s_config
from kubernetes.client.exceptions import ApiException
from kubernetes.config.config_exception import ConfigException
from kubernetes.dynamic import DynamicClient
from kubernetes.dynamic.exceptions import ResourceNotFoundError
from urllib3.exceptions import HTTPError

from obsconverge.deadline import Deadline
from obsconverge.errors import ConflictError, NotFoundError, PermanentError, TransientError
from obsconverge.schemas import ManagedObject, ObjectIdentity

from .base import ObjectStore

logger = logging.getLogger(__name__)


# kind -> apiVersion for everything the reconcile loop touches
KIND_API_VERSIONS = {
    "Namespace": "v1",
    "Secret": "v1",
    "Service": "v1",
    "ServiceAccount": "v1",
    "Pod": "v1",
    "Deployment": "apps/v1",
    "StatefulSet": "apps/v1",
    "DaemonSet": "apps/v1",
    "ClusterRole": "rbac.authorization.k8s.io/v1",
    "ClusterRoleBinding": "rbac.authorization.k8s.io/v1",
    "Route": "route.openshift.io/v1",
    "Prometheus": "monitoring.coreos.com/v1",
    "Alertmanager": "monitoring.coreos.com/v1",
    "Grafana": "integreatly.org/v1alpha1",
    "CatalogSource": "operators.coreos.com/v1alpha1",
    "Subscription": "operators.coreos.com/v1alpha1",
    "ClusterServiceVersion": "operators.coreos.com/v1alpha1",
    "OperatorGroup": "operators.coreos.com/v1",
}

# metadata keys carried in ManagedObject.body at top level
_METADATA_BODY_KEYS = ("labels", "annotations")

# metadata owned by the identity and the concurrency token
_METADATA_IDENTITY_KEYS = ("name", "namespace", "resourceVersion")

# the rest of the live metadata (finalizers, ownerReferences, uid, ...) rides
# in ManagedObject.body under this key and is sent back unchanged on update
METADATA_PASSTHROUGH_KEY = "metadata"


def to_manifest(obj: ManagedObject) -> dict[str, Any]:
    """Convert a ManagedObject into a Kubernetes manifest."""
    identity = obj.identity
    metadata: dict[str, Any] = dict(obj.body.get(METADATA_PASSTHROUGH_KEY) or {})
    metadata["name"] = identity.name
    if identity.namespace is not None:
        metadata["namespace"] = identity.namespace
    for key in _METADATA_BODY_KEYS:
        if obj.body.get(key):
            metadata[key] = obj.body[key]
    if obj.resource_version is not None:
        metadata["resourceVersion"] = obj.resource_version

    manifest = {
        "apiVersion": api_version_for(identity.kind),
        "kind": identity.kind,
        "metadata": metadata,
    }
    for key, value in obj.body.items():
        if key not in _METADATA_BODY_KEYS and key != METADATA_PASSTHROUGH_KEY:
            manifest[key] = value
    return manifest


def from_manifest(manifest: dict[str, Any]) -> ManagedObject:
    """Convert a Kubernetes manifest into a ManagedObject."""
    metadata = manifest.get("metadata") or {}
    identity = ObjectIdentity(
        kind=manifest["kind"],
        name=metadata["name"],
        namespace=metadata.get("namespace"),
    )
    body: dict[str, Any] = {}
    for key in _METADATA_BODY_KEYS:
        if metadata.get(key):
            body[key] = dict(metadata[key])
    passthrough = {
        key: value
        for key, value in metadata.items()
        if key not in _METADATA_BODY_KEYS and key not in _METADATA_IDENTITY_KEYS
    }
    if passthrough:
        body[METADATA_PASSTHROUGH_KEY] = passthrough
    for key, value in manifest.items():
        if key not in ("apiVersion", "kind", "metadata"):
            body[key] = value
    return ManagedObject(
        identity=identity,
        body=body,
        resource_version=metadata.get("resourceVersion"),
    )


def api_version_for(kind: str) -> str:
    try:
        return KIND_API_VERSIONS[kind]
    except KeyError:
        raise PermanentError(f"Unsupported kind: {kind}")


def _classify_api_exception(e: ApiException, operation: str, target: object) -> Exception:
    status = e.status or 0
    message = f"{operation} {target} failed ({status}): {e.reason}"
    if status == 404:
        return NotFoundError(message, identity=target if isinstance(target, ObjectIdentity) else None)
    if status == 409:
        reason = ConflictError.ALREADY_EXISTS if operation == "create" else ConflictError.STALE_TOKEN
        return ConflictError(message, reason=reason)
    if status == 429 or status >= 500:
        return TransientError(message)
    return PermanentError(message)


class KubernetesObjectStore(ObjectStore):
    """
    Object store talking to the Kubernetes API server.

    Args:
        dynamic_client: A kubernetes DynamicClient
        default_timeout: Per-request timeout when the tick has no deadline
    """

    def __init__(self, dynamic_client: DynamicClient, default_timeout: float = 30.0):
        self._client = dynamic_client
        self._default_timeout = default_timeout

    @classmethod
    def from_kubeconfig(
        cls,
        kubeconfig: Optional[str] = None,
        context: Optional[str] = None,
        default_timeout: float = 30.0,
    ) -> "KubernetesObjectStore":
        """
        Build a store from kubeconfig, falling back to in-cluster config.

        Raises:
            PermanentError: If no usable cluster configuration is found
        """
        try:
            k8s_config.load_kube_config(config_file=kubeconfig, context=context)
        except (ConfigException, FileNotFoundError) as e:
            if kubeconfig or context:
                raise PermanentError(f"Could not load kubeconfig: {e}") from e
            try:
                k8s_config.load_incluster_config()
            except ConfigException as incluster_error:
                raise PermanentError(
                    f"No kubeconfig and not running in cluster: {incluster_error}"
                ) from incluster_error
        return cls(DynamicClient(k8s_client.ApiClient()), default_timeout=default_timeout)

    def _timeout(self, deadline: Optional[Deadline]) -> float:
        remaining = deadline.remaining() if deadline is not None else None
        if remaining is None:
            return self._default_timeout
        return min(remaining, self._default_timeout)

    def _resource(self, kind: str):
        try:
            return self._client.resources.get(api_version=api_version_for(kind), kind=kind)
        except ResourceNotFoundError as e:
            raise PermanentError(f"Kind {kind} is not served by the cluster: {e}") from e

    def _call(self, operation: str, target: object, func, **kwargs):
        try:
            return func(**kwargs)
        except ApiException as e:
            raise _classify_api_exception(e, operation, target) from e
        except (HTTPError, TimeoutError, ConnectionError) as e:
            raise TransientError(f"{operation} {target} failed: {e}") from e

    def _do_get(self, identity: ObjectIdentity, deadline: Optional[Deadline]) -> ManagedObject:
        resource = self._resource(identity.kind)
        result = self._call(
            "get", identity, resource.get,
            name=identity.name,
            namespace=identity.namespace,
            _request_timeout=self._timeout(deadline),
        )
        return from_manifest(result.to_dict())

    def _do_create(self, obj: ManagedObject, deadline: Optional[Deadline]) -> ManagedObject:
        resource = self._resource(obj.identity.kind)
        result = self._call(
            "create", obj.identity, resource.create,
            body=to_manifest(obj),
            namespace=obj.identity.namespace,
            _request_timeout=self._timeout(deadline),
        )
        return from_manifest(result.to_dict())

    def _do_update(
        self,
        obj: ManagedObject,
        resource_version: Optional[str],
        deadline: Optional[Deadline],
    ) -> ManagedObject:
        resource = self._resource(obj.identity.kind)
        guarded = obj.clone()
        guarded.resource_version = resource_version
        result = self._call(
            "update", obj.identity, resource.replace,
            body=to_manifest(guarded),
            namespace=obj.identity.namespace,
            _request_timeout=self._timeout(deadline),
        )
        return from_manifest(result.to_dict())

    def _do_delete(self, identity: ObjectIdentity, deadline: Optional[Deadline]) -> None:
        resource = self._resource(identity.kind)
        self._call(
            "delete", identity, resource.delete,
            name=identity.name,
            namespace=identity.namespace,
            _request_timeout=self._timeout(deadline),
        )

    def _do_list(
        self,
        kind: str,
        namespace: Optional[str],
        selector: Optional[dict[str, str]],
        deadline: Optional[Deadline],
    ) -> list[ManagedObject]:
        resource = self._resource(kind)
        label_selector = ",".join(f"{k}={v}" for k, v in sorted((selector or {}).items()))
        result = self._call(
            "list", kind, resource.get,
            namespace=namespace,
            label_selector=label_selector or None,
            _request_timeout=self._timeout(deadline),
        )
        items = result.to_dict().get("items") or []
        objects = []
        for item in items:
            # list items omit apiVersion/kind
            item.setdefault("kind", kind)
            objects.append(from_manifest(item))
        return objects
