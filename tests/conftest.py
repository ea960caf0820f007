import pytest

from obsconverge import model
from obsconverge.schemas import ObjectIdentity, ObservabilitySpec, ObservabilityStatus
from obsconverge.store import InMemoryObjectStore


@pytest.fixture
def store() -> InMemoryObjectStore:
    return InMemoryObjectStore()


@pytest.fixture
def spec() -> ObservabilitySpec:
    return ObservabilitySpec(name="stack", namespace="observability")


@pytest.fixture
def status() -> ObservabilityStatus:
    return ObservabilityStatus()


@pytest.fixture
def seed_operator():
    """Place the Prometheus operator deployment, as OLM would once installed."""

    def seed(store: InMemoryObjectStore, spec: ObservabilitySpec, ready_replicas: int = 1):
        identity = ObjectIdentity(
            kind="Deployment",
            name=model.OPERATOR_DEPLOYMENT_NAME,
            namespace=spec.operator_namespace,
        )
        return store.seed(identity, {"status": {"readyReplicas": ready_replicas}})

    return seed


@pytest.fixture
def ready_operator(store, spec, seed_operator):
    """Store with a ready Prometheus operator deployment."""
    seed_operator(store, spec)
    return store
