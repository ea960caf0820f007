"""
In-memory implementation of ObjectStore for testing and dry runs.

Behaves like the real store where the reconcile loop can tell the difference:
resource versions change on every write, stale tokens are rejected, and
absent objects raise NotFoundError. Every call is recorded in `calls`.
"""

import itertools
from typing import Callable, Optional

from obsconverge.deadline import Deadline
from obsconverge.errors import ConflictError, NotFoundError
from obsconverge.schemas import ManagedObject, ObjectIdentity

from .base import ObjectStore


class InMemoryObjectStore(ObjectStore):
    """
    In-memory object store.

    All data is lost when the instance is garbage collected.

    Attributes:
        calls: (operation, target) tuples in call order
        faults: operation -> callable(target) that may raise, for fault injection
    """

    def __init__(self):
        self._objects: dict[ObjectIdentity, ManagedObject] = {}
        self._versions = itertools.count(1)
        self.calls: list[tuple[str, object]] = []
        self.faults: dict[str, Callable[[object], None]] = {}

    def _record(self, operation: str, target: object) -> None:
        self.calls.append((operation, target))
        fault = self.faults.get(operation)
        if fault is not None:
            fault(target)

    def _next_version(self) -> str:
        return str(next(self._versions))

    def _do_get(self, identity: ObjectIdentity, deadline: Optional[Deadline]) -> ManagedObject:
        self._record("get", identity)
        stored = self._objects.get(identity)
        if stored is None:
            raise NotFoundError(f"{identity} not found", identity=identity)
        return stored.clone()

    def _do_create(self, obj: ManagedObject, deadline: Optional[Deadline]) -> ManagedObject:
        self._record("create", obj.identity)
        if obj.identity in self._objects:
            raise ConflictError(
                f"{obj.identity} already exists",
                reason=ConflictError.ALREADY_EXISTS,
                identity=obj.identity,
            )
        stored = obj.clone()
        stored.resource_version = self._next_version()
        self._objects[obj.identity] = stored
        return stored.clone()

    def _do_update(
        self,
        obj: ManagedObject,
        resource_version: Optional[str],
        deadline: Optional[Deadline],
    ) -> ManagedObject:
        self._record("update", obj.identity)
        current = self._objects.get(obj.identity)
        if current is None:
            raise NotFoundError(f"{obj.identity} not found", identity=obj.identity)
        if resource_version != current.resource_version:
            raise ConflictError(
                f"{obj.identity} was modified (have {resource_version}, "
                f"store has {current.resource_version})",
                reason=ConflictError.STALE_TOKEN,
                identity=obj.identity,
            )
        stored = obj.clone()
        stored.resource_version = self._next_version()
        self._objects[obj.identity] = stored
        return stored.clone()

    def _do_delete(self, identity: ObjectIdentity, deadline: Optional[Deadline]) -> None:
        self._record("delete", identity)
        if identity not in self._objects:
            raise NotFoundError(f"{identity} not found", identity=identity)
        del self._objects[identity]

    def _do_list(
        self,
        kind: str,
        namespace: Optional[str],
        selector: Optional[dict[str, str]],
        deadline: Optional[Deadline],
    ) -> list[ManagedObject]:
        self._record("list", (kind, namespace, dict(selector or {})))
        return [
            obj.clone()
            for identity, obj in sorted(self._objects.items(), key=lambda item: str(item[0]))
            if identity.kind == kind
            and (namespace is None or identity.namespace == namespace)
            and obj.matches(selector)
        ]

    # -------------------------------------------------------------------------
    # Test helpers (bypass call recording and faults)
    # -------------------------------------------------------------------------

    def seed(self, identity: ObjectIdentity, body: Optional[dict] = None) -> ManagedObject:
        """Place an object directly, as if another actor had created it."""
        stored = ManagedObject(identity=identity, body=body or {}).clone()
        stored.resource_version = self._next_version()
        self._objects[identity] = stored
        return stored.clone()

    def peek(self, identity: ObjectIdentity) -> Optional[ManagedObject]:
        stored = self._objects.get(identity)
        return stored.clone() if stored is not None else None

    def remove(self, identity: ObjectIdentity) -> None:
        self._objects.pop(identity, None)

    def identities(self) -> set[ObjectIdentity]:
        return set(self._objects)

    def clear(self) -> None:
        """Clear all stored data and recorded calls (for testing)."""
        self._objects.clear()
        self.calls.clear()
