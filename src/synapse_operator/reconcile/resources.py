"""
Resource Reconciler — ensure one child object matches its desired shape.

Manifesto:
    Every generated child (ConfigMap, Service, PVC, Deployment, ...) goes
    through the same three-way decision: absent → create it, divergent →
    patch only what we own, equal → do nothing. Writes trigger watches, so
    a no-op must really be a no-op.

Architecture:
    ::

        ensure(desired)
          │
          ├─ store.get(kind, key)
          │     └─ NotFoundError ──────────────► store.create(desired)   CREATED
          │
          ├─ is_subset(managed(desired), existing) ─► nothing           UNCHANGED
          │
          └─ store.patch(kind, key, managed(desired),
                         base_version=existing.resourceVersion)          PATCHED

    ``managed(desired)`` is the desired manifest without server-populated
    metadata and without ``status``. Paths it does not mention are
    unmanaged and survive the patch untouched. Owner references are
    matched by ``uid``: the desired ones must be present, other owners are
    kept, and a patch carries the merged list. Any other list is owned
    whole (merge patch replaces lists).

Failure modes:
    ``StoreError``, ``ConflictError``, ``AlreadyExistsError`` (create race)
    and ``KindNotInstalledError`` propagate unchanged. The wrapping step
    treats them as retryable.

Examples:
    >>> reconciler = ResourceReconciler(store)
    >>> reconciler.ensure(service)
    <EnsureAction.CREATED: 'created'>
    >>> reconciler.ensure(service)
    <EnsureAction.UNCHANGED: 'unchanged'>

Tags:
    reconcile, resource, create-or-patch, idempotent, owner-reference

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from synapse_operator.core.errors import KindNotInstalledError, NotFoundError
from synapse_operator.core.logging import get_logger
from synapse_operator.core.merge import diff_paths, is_subset
from synapse_operator.core.objects import (
    Manifest,
    ObjectKey,
    has_owner_references,
    kind_of,
    merge_owner_references,
    owner_references_of,
    resource_version_of,
    strip_server_fields,
)
from synapse_operator.core.protocols import ObjectStore

logger = get_logger(__name__)


class EnsureAction(str, Enum):
    """What ``ensure`` had to do."""

    CREATED = "created"
    PATCHED = "patched"
    UNCHANGED = "unchanged"

    @property
    def wrote(self) -> bool:
        return self is not EnsureAction.UNCHANGED


def object_meta(name: str, namespace: str, labels: dict[str, str] | None = None) -> dict[str, Any]:
    """Metadata block for a generated child."""
    meta: dict[str, Any] = {"name": name, "namespace": namespace}
    if labels:
        meta["labels"] = dict(labels)
    return meta


def controlled_by(store: ObjectStore, child: Manifest, owner: Manifest) -> Manifest:
    """Attach ``owner`` as the controller of ``child`` and return ``child``."""
    store.set_owner(child, owner)
    return child


def managed_fields(desired: Manifest) -> Manifest:
    """The part of ``desired`` this engine owns."""
    managed = strip_server_fields(desired)
    managed.pop("status", None)
    return managed


class ResourceReconciler:
    """Create-or-patch primitive shared by every pipeline step."""

    def __init__(self, store: ObjectStore) -> None:
        self._store = store

    def _get_existing(self, kind: str, key: ObjectKey) -> Manifest | None:
        try:
            return self._store.get(kind, key)
        except KindNotInstalledError:
            raise
        except NotFoundError:
            return None

    def _create(self, kind: str, key: ObjectKey, desired: Manifest) -> EnsureAction:
        self._store.create(desired)
        logger.info("resource.created", kind=kind, object=str(key))
        return EnsureAction.CREATED

    def ensure(self, desired: Manifest) -> EnsureAction:
        """Make the store hold ``desired``.

        Args:
            desired: Full manifest of the child, owner reference included

        Returns:
            The action taken.
        """
        kind = kind_of(desired)
        key = ObjectKey.of(desired)

        existing = self._get_existing(kind, key)
        if existing is None:
            return self._create(kind, key, desired)

        managed = managed_fields(desired)
        refs = managed.get("metadata", {}).pop("ownerReferences", None) or []
        refs_present = has_owner_references(existing, refs)
        if refs_present and is_subset(managed, existing):
            logger.debug("resource.unchanged", kind=kind, object=str(key))
            return EnsureAction.UNCHANGED

        logger.debug("resource.drift", kind=kind, object=str(key), paths=diff_paths(managed, existing))
        if not refs_present:
            managed.setdefault("metadata", {})["ownerReferences"] = merge_owner_references(
                owner_references_of(existing), refs
            )
        self._store.patch(kind, key, managed, base_version=resource_version_of(existing))
        logger.info("resource.patched", kind=kind, object=str(key))
        return EnsureAction.PATCHED

    def ensure_exists(self, desired: Manifest) -> EnsureAction:
        """Create ``desired`` if absent; never patch an existing object.

        For configuration artifacts whose content is maintained afterwards by
        the Document Mutator: re-applying the seed would undo those edits on
        every run.
        """
        kind = kind_of(desired)
        key = ObjectKey.of(desired)

        if self._get_existing(kind, key) is None:
            return self._create(kind, key, desired)
        logger.debug("resource.exists", kind=kind, object=str(key))
        return EnsureAction.UNCHANGED


__all__ = [
    "EnsureAction",
    "ResourceReconciler",
    "object_meta",
    "controlled_by",
    "managed_fields",
]
