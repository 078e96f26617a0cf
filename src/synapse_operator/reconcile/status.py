"""
Status Convergence Writer — persist observed state without write storms.

Manifesto:
    Status is written often and read by everything. A writer that patches on
    every call makes each reconciliation trigger another one; a writer that
    trusts the caller's copy overwrites concurrent updates. ``commit`` does
    neither: it re-reads the Entity, compares statuses by value, and patches
    the ``status`` subresource only when they differ.

Architecture:
    ::

        commit(entity)
          │
          ├─ store.get(kind, key) ──── NotFoundError ──► False (entity gone)
          │
          ├─ fresh.status == entity.status ──────────► False (no write)
          │
          └─ store.patch(kind, key, {"status": ...},
                         base_version=fresh.resourceVersion,
                         subresource="status") ──────► True

    The returned flag lets the calling step answer ``Outcome.requeue()``,
    so the next run starts from the status it just wrote.

Examples:
    >>> writer = StatusWriter(store)
    >>> synapse.status.state = EntityState.RUNNING
    >>> writer.commit(synapse)
    True
    >>> writer.commit(synapse)
    False

Tags:
    reconcile, status, structural-equality, merge-patch, optimistic-concurrency

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from synapse_operator.core.errors import KindNotInstalledError, NotFoundError
from synapse_operator.core.logging import get_logger
from synapse_operator.core.merge import replacement_patch
from synapse_operator.core.objects import resource_version_of
from synapse_operator.core.protocols import HasStatus, ObjectStore

logger = get_logger(__name__)


class EntityState(str, Enum):
    """Lifecycle state shown on every Entity."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    FAILED = "FAILED"


class StatusWriter:
    """Conditional writer for the ``status`` subresource of Entities."""

    def __init__(self, store: ObjectStore) -> None:
        self._store = store

    def commit(self, entity: HasStatus) -> bool:
        """Persist ``entity.status`` if it differs from the stored one.

        Returns:
            True if a patch was issued. False if the stored status already
            matched, or the Entity no longer exists.

        Raises:
            StoreError / ConflictError: the read or the patch failed.
        """
        kind = entity.kind
        key = entity.key

        try:
            fresh = self._store.get(kind, key)
        except KindNotInstalledError:
            raise
        except NotFoundError:
            logger.info("status.entity_gone", kind=kind, object=str(key))
            return False

        fresh_status = type(entity).from_manifest(fresh).status
        if fresh_status == entity.status:
            logger.debug("status.unchanged", kind=kind, object=str(key))
            return False

        current: dict[str, Any] = fresh.get("status") or {}
        desired: dict[str, Any] = entity.to_manifest().get("status") or {}
        updated = self._store.patch(
            kind,
            key,
            {"status": replacement_patch(current, desired)},
            base_version=resource_version_of(fresh),
            subresource="status",
        )
        entity.metadata.resource_version = resource_version_of(updated)
        logger.info("status.patched", kind=kind, object=str(key), state=desired.get("state"))
        return True

    def set_failed(self, entity: HasStatus, reason: str) -> bool:
        """Record a terminal failure ``reason`` on ``entity`` and commit it."""
        entity.status.state = EntityState.FAILED
        entity.status.reason = reason
        logger.warning("status.failed", kind=entity.kind, object=str(entity.key), reason=reason)
        return self.commit(entity)


__all__ = ["EntityState", "StatusWriter"]
