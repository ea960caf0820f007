"""
ObjectStore - the boundary where obsconverge talks to the cluster.

The store is remote and eventually consistent. Every operation:
- Receives the tick's Deadline and refuses to start once it has expired
- Raises NotFoundError for absent objects (get/delete)
- Raises ConflictError on create of an existing object or update with a stale token
- Raises TransientError / PermanentError for transport and server failures

Implementations:
- InMemoryObjectStore: For testing and dry runs
- KubernetesObjectStore: Real cluster via the kubernetes dynamic client
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Optional

from obsconverge.deadline import Deadline
from obsconverge.schemas import ManagedObject, ObjectIdentity

logger = logging.getLogger(__name__)


class ObjectStore(ABC):
    """
    Abstract base class for object store clients.

    Public methods check the deadline and delegate to the _do_* hooks that
    implementations provide.
    """

    def get(self, identity: ObjectIdentity, *, deadline: Optional[Deadline] = None) -> ManagedObject:
        """
        Fetch the live object.

        Raises:
            NotFoundError: If the object does not exist
        """
        self._check(deadline, f"get {identity}")
        return self._do_get(identity, deadline)

    def create(self, obj: ManagedObject, *, deadline: Optional[Deadline] = None) -> ManagedObject:
        """
        Create an object that does not exist yet.

        Returns:
            The stored object carrying its new resource version

        Raises:
            ConflictError: reason=already_exists if the identity is taken
        """
        self._check(deadline, f"create {obj.identity}")
        logger.debug(f"create {obj.identity}", extra={"event": "store_create"})
        return self._do_create(obj, deadline)

    def update(
        self,
        obj: ManagedObject,
        resource_version: Optional[str],
        *,
        deadline: Optional[Deadline] = None,
    ) -> ManagedObject:
        """
        Replace an existing object, guarded by its concurrency token.

        Raises:
            ConflictError: reason=stale_token if the object changed since it was read
            NotFoundError: If the object was deleted since it was read
        """
        self._check(deadline, f"update {obj.identity}")
        logger.debug(f"update {obj.identity}", extra={"event": "store_update"})
        return self._do_update(obj, resource_version, deadline)

    def delete(self, identity: ObjectIdentity, *, deadline: Optional[Deadline] = None) -> None:
        """
        Delete an object.

        Raises:
            NotFoundError: If the object does not exist
        """
        self._check(deadline, f"delete {identity}")
        logger.debug(f"delete {identity}", extra={"event": "store_delete"})
        self._do_delete(identity, deadline)

    def list(
        self,
        kind: str,
        namespace: Optional[str] = None,
        selector: Optional[dict[str, str]] = None,
        *,
        deadline: Optional[Deadline] = None,
    ) -> list[ManagedObject]:
        """
        List objects of a kind, optionally filtered by namespace and labels.

        The result is a finite snapshot; callers may list again at any time.
        """
        self._check(deadline, f"list {kind}")
        return self._do_list(kind, namespace, selector, deadline)

    @staticmethod
    def _check(deadline: Optional[Deadline], operation: str) -> None:
        if deadline is not None:
            deadline.check(operation)

    @abstractmethod
    def _do_get(self, identity: ObjectIdentity, deadline: Optional[Deadline]) -> ManagedObject:
        pass

    @abstractmethod
    def _do_create(self, obj: ManagedObject, deadline: Optional[Deadline]) -> ManagedObject:
        pass

    @abstractmethod
    def _do_update(
        self,
        obj: ManagedObject,
        resource_version: Optional[str],
        deadline: Optional[Deadline],
    ) -> ManagedObject:
        pass

    @abstractmethod
    def _do_delete(self, identity: ObjectIdentity, deadline: Optional[Deadline]) -> None:
        pass

    @abstractmethod
    def _do_list(
        self,
        kind: str,
        namespace: Optional[str],
        selector: Optional[dict[str, str]],
        deadline: Optional[Deadline],
    ) -> list[ManagedObject]:
        pass
