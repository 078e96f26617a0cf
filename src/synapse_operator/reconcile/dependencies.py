"""
Dependency Trigger and Dependent Scanner — cross-Entity propagation.

Manifesto:
    A bridge depends on a homeserver, not the other way round, yet the
    homeserver's configuration must list its bridges. Two small pieces
    close the loop without either side holding a copy of the other:

    - **DependencyTrigger:** the dependent sets ``needsReconcile`` on the
      Entity it depends on. The status write is an object change, so the
      host runtime schedules that Entity's pipeline.
    - **DependentScanner:** the depended-upon Entity lists dependents and
      reflects them into its own status, as one ordinary pipeline step.

Architecture:
    ::

        MautrixSignal/Heisenbridge pipeline        Synapse pipeline
        ───────────────────────────────────        ─────────────────────────
        trigger.mark_needs_reconciliation(key)
              │ status.needsReconcile = True
              ▼
        (host runtime sees the status change) ───► scanner.scan(synapse)
                                                    status.bridges = {...}
                                                    ...
                                                    set_status_running
                                                    status.needsReconcile = False

Failure modes:
    ``mark_needs_reconciliation`` raises ``NotFoundError`` if the target is
    absent; callers treat that as a missing prerequisite. ``scan`` never
    reports "no dependents" when it could not list them: a listing failure
    is raised as a retryable ``StoreError``.

Tags:
    reconcile, dependency, cross-entity, needs-reconcile

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from synapse_operator.core.errors import StoreError
from synapse_operator.core.logging import get_logger
from synapse_operator.core.objects import ObjectKey
from synapse_operator.core.protocols import HasMetadata, ObjectStore
from synapse_operator.reconcile.status import StatusWriter

logger = get_logger(__name__)


class DependencyTrigger:
    """Marks an Entity of ``target_cls`` as needing reconciliation."""

    def __init__(self, store: ObjectStore, target_cls: Any, status_writer: StatusWriter | None = None) -> None:
        self._store = store
        self._target_cls = target_cls
        self._status = status_writer or StatusWriter(store)

    def mark_needs_reconciliation(self, target_key: ObjectKey) -> bool:
        """Set ``status.needsReconcile`` on the target and commit it.

        Returns:
            True if the flag was newly written, False if it was already set.

        Raises:
            NotFoundError: the target Entity does not exist.
        """
        target = self._target_cls.from_manifest(self._store.get(self._target_cls.KIND, target_key))
        target.status.needs_reconcile = True
        patched = self._status.commit(target)
        if patched:
            logger.info("dependency.triggered", target_kind=self._target_cls.KIND, target=str(target_key))
        return patched


@dataclass
class ScanResult:
    """Dependents found per kind, each list ordered by namespace/name."""

    dependents: dict[str, list[Any]] = field(default_factory=dict)

    def of_kind(self, kind: str) -> list[Any]:
        return self.dependents.get(kind, [])

    def first(self, kind: str) -> Any | None:
        items = self.of_kind(kind)
        return items[0] if items else None

    @property
    def total(self) -> int:
        return sum(len(items) for items in self.dependents.values())


class DependentScanner:
    """Finds Entities whose dependency reference points at a given Entity.

    Args:
        store: Object store
        dependent_types: ``{kind: entity class}``; each class must provide
            ``from_manifest`` and instances must provide ``depends_on()``
            returning the referenced :class:`ObjectKey`.
    """

    def __init__(self, store: ObjectStore, dependent_types: Mapping[str, Any]) -> None:
        self._store = store
        self._dependent_types = dict(dependent_types)

    def scan(self, target: HasMetadata) -> ScanResult:
        result = ScanResult()
        for kind, entity_cls in self._dependent_types.items():
            try:
                manifests = self._store.list(kind)
            except Exception as e:
                raise StoreError(
                    f"cannot list {kind} while looking for dependents of {target.kind} {target.key}: {e}",
                    cause=e,
                ).with_context(kind=kind) from e
            matches = []
            for manifest in manifests:
                dependent = entity_cls.from_manifest(manifest)
                if dependent.depends_on() == target.key:
                    matches.append(dependent)
            result.dependents[kind] = sorted(matches, key=lambda d: str(d.key))

        logger.debug(
            "dependency.scanned",
            target_kind=target.kind,
            target=str(target.key),
            found={kind: [d.key.name for d in items] for kind, items in result.dependents.items()},
        )
        return result


__all__ = ["DependencyTrigger", "DependentScanner", "ScanResult"]
