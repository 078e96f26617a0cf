"""
Canonical protocol definitions for the reconciliation engine.

Manifesto:
    Protocols define contracts without inheritance. Every component takes the
    object store as a constructor argument typed against :class:`ObjectStore`,
    never a module-level client, so a fake store is all a test needs.

    - **Decoupling:** Components depend on shape, not implementation
    - **Testability:** ``InMemoryObjectStore`` satisfies the protocol
    - **Kind-agnostic mutators:** ``HasSpec`` / ``HasStatus`` replace
      type switches on the owning Entity

Architecture:
    ::

        protocols.py
        ├── ObjectStore   — get / list / create / patch / delete / set_owner
        ├── HasMetadata   — identity of an Entity (kind, key, uid)
        ├── HasSpec       — user intent
        └── HasStatus     — engine-owned observed state

    Consumers:
        reconcile/resources.py, reconcile/status.py, reconcile/documents.py,
        reconcile/dependencies.py, controllers/*

Guardrails:
    ❌ DON'T: Import a concrete store inside reconcile/ or controllers/
    ✅ DO: Accept ``store: ObjectStore`` in ``__init__``

Tags:
    protocol, object-store, optimistic-concurrency, contracts

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from synapse_operator.core.objects import Manifest, ObjectKey


# ---------------------------------------------------------------------------
# Object store
# ---------------------------------------------------------------------------


@runtime_checkable
class ObjectStore(Protocol):
    """
    Key-value object store with optimistic concurrency.

    Objects are manifest dicts (``apiVersion``, ``kind``, ``metadata``, body).
    Every returned manifest is a private copy: mutating it never changes the
    stored object.

    Failure modes:
        - ``NotFoundError``: ``get``/``patch``/``delete`` on a missing identity
        - ``KindNotInstalledError``: any call naming a kind the store lacks
        - ``AlreadyExistsError``: ``create`` on an existing identity
        - ``ConflictError``: ``patch`` with a stale ``base_version``
        - ``StoreError``: the store could not answer at all
    """

    def get(self, kind: str, key: ObjectKey) -> Manifest:
        """Return the stored object for ``(kind, key)``."""
        ...

    def list(self, kind: str, namespace: str | None = None) -> list[Manifest]:
        """Return all objects of ``kind``, optionally restricted to one namespace."""
        ...

    def create(self, obj: Manifest) -> Manifest:
        """Create ``obj`` and return it with server-populated metadata."""
        ...

    def patch(
        self,
        kind: str,
        key: ObjectKey,
        patch: Manifest,
        *,
        base_version: str | None = None,
        subresource: str | None = None,
    ) -> Manifest:
        """Apply a JSON merge patch.

        ``subresource="status"`` applies only the patch's ``status`` member;
        otherwise ``status`` is ignored.
        """
        ...

    def delete(self, kind: str, key: ObjectKey) -> None:
        """Delete an object, cascading to objects it controls."""
        ...

    def set_owner(self, child: Manifest, owner: Manifest) -> None:
        """Record ``owner`` as the controller of ``child`` (mutates ``child``)."""
        ...


# ---------------------------------------------------------------------------
# Entity capabilities
# ---------------------------------------------------------------------------


@runtime_checkable
class HasMetadata(Protocol):
    """Identity of an Entity."""

    kind: str
    metadata: Any

    @property
    def key(self) -> ObjectKey: ...

    @classmethod
    def from_manifest(cls, obj: Manifest) -> Any: ...

    def to_manifest(self) -> Manifest: ...


@runtime_checkable
class HasSpec(HasMetadata, Protocol):
    """An Entity exposing its user-declared intent."""

    spec: Any


@runtime_checkable
class HasStatus(HasMetadata, Protocol):
    """An Entity exposing engine-owned observed state.

    ``status`` must compare by value: two statuses with equal fields are equal.
    """

    status: Any


__all__ = [
    "Manifest",
    "ObjectStore",
    "HasMetadata",
    "HasSpec",
    "HasStatus",
]
