"""
Desired-state applier: fetch, mutate, submit, retry on conflict.

apply() is the one create-or-update primitive every stage uses. The mutate
callback receives the live object (or an empty one carrying only its
identity) and edits it in place into its desired form. Nothing is cached
between attempts; a conflict restarts from a fresh fetch.
"""

import logging
from enum import Enum
from typing import Callable, Optional

from obsconverge.deadline import Deadline
from obsconverge.errors import ConflictError, NotFoundError
from obsconverge.schemas import ManagedObject, ObjectIdentity
from obsconverge.store import ObjectStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3

Mutation = Callable[[ManagedObject], None]


class ApplyResult(str, Enum):
    """What a successful apply did to the store."""
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


def apply(
    store: ObjectStore,
    identity: ObjectIdentity,
    mutate: Mutation,
    *,
    deadline: Optional[Deadline] = None,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> ApplyResult:
    """
    Create or update the object at `identity` so that `mutate` holds.

    Re-applying the same mutation is a no-op: when the mutated body equals the
    live body nothing is submitted. Conflicts (a concurrent create or a stale
    resource version) restart the round from a fresh fetch.

    Args:
        store: Object store client
        identity: Object to converge
        mutate: Edits the object in place into its desired form
        deadline: Tick deadline passed to every store call
        max_attempts: Fetch-mutate-submit rounds before giving up

    Returns:
        ApplyResult describing the committed change

    Raises:
        ConflictError: If every attempt hit a conflict
        TransientError / PermanentError: Propagated from the store
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")

    last_conflict: Optional[ConflictError] = None

    for attempt in range(1, max_attempts + 1):
        try:
            return _apply_once(store, identity, mutate, deadline)
        except ConflictError as e:
            last_conflict = e
            logger.warning(
                f"Conflict applying {identity} (attempt {attempt}/{max_attempts}): {e}",
                extra={
                    "event": "apply_conflict",
                    "metadata": {"identity": str(identity), "reason": e.reason, "attempt": attempt},
                },
            )

    raise ConflictError(
        f"Gave up applying {identity} after {max_attempts} conflicting attempts: {last_conflict}",
        reason=last_conflict.reason if last_conflict else ConflictError.STALE_TOKEN,
        identity=identity,
    )


def _apply_once(
    store: ObjectStore,
    identity: ObjectIdentity,
    mutate: Mutation,
    deadline: Optional[Deadline],
) -> ApplyResult:
    try:
        live = store.get(identity, deadline=deadline)
    except NotFoundError:
        live = None

    if live is None:
        obj = ManagedObject(identity=identity)
        mutate(obj)
        store.create(obj, deadline=deadline)
        logger.info(f"Created {identity}", extra={"event": "apply_created"})
        return ApplyResult.CREATED

    desired = live.clone()
    mutate(desired)
    if desired.body == live.body:
        return ApplyResult.UNCHANGED

    store.update(desired, live.resource_version, deadline=deadline)
    logger.info(f"Updated {identity}", extra={"event": "apply_updated"})
    return ApplyResult.UPDATED


def delete_if_present(
    store: ObjectStore,
    identity: ObjectIdentity,
    *,
    deadline: Optional[Deadline] = None,
) -> bool:
    """
    Delete an object, treating an already-absent object as success.

    Returns:
        True if an object was deleted, False if it was already gone
    """
    try:
        store.delete(identity, deadline=deadline)
    except NotFoundError:
        logger.debug(f"{identity} already absent", extra={"event": "delete_not_found"})
        return False
    logger.info(f"Deleted {identity}", extra={"event": "deleted"})
    return True
