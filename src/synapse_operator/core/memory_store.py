"""
In-memory object store.

Manifesto:
    Controllers, tests and the CLI's dry runs need an object store that
    behaves like a cluster API server in the ways reconciliation depends on,
    without a cluster: resource versions that move on every write, Conflict
    on stale writes, AlreadyExists on duplicate creates, unknown kinds for
    uninstalled CRDs, and garbage collection through owner references.

Features:
    - Resource versions from a process-wide counter, compared on ``patch``
    - JSON merge patch with a separate ``status`` subresource
    - Secret ``stringData`` folded into base64 ``data`` on write
    - Cascading delete through controller owner references
    - A write journal (``writes``) for asserting on store traffic
    - One-shot fault injection per verb and kind

Examples:
    >>> store = InMemoryObjectStore()
    >>> obj = store.create({"apiVersion": "v1", "kind": "ConfigMap",
    ...                     "metadata": {"name": "a", "namespace": "ns"},
    ...                     "data": {"k": "v"}})
    >>> store.write_count()
    1

Tags:
    object-store, in-memory, testing, optimistic-concurrency

Doc-Types:
    api-reference
"""

from __future__ import annotations

import base64
import copy
import itertools
import threading
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from synapse_operator.core.errors import (
    AlreadyExistsError,
    ConfigurationError,
    ConflictError,
    KindNotInstalledError,
    NotFoundError,
)
from synapse_operator.core.logging import get_logger
from synapse_operator.core.merge import merge_patch
from synapse_operator.core.objects import (
    Manifest,
    ObjectKey,
    controller_of,
    controller_reference,
    kind_of,
    uid_of,
)

logger = get_logger(__name__)

__all__ = ["InMemoryObjectStore", "WriteRecord", "DEFAULT_KINDS", "STATUS_SUBRESOURCE_KINDS"]

DEFAULT_KINDS: frozenset[str] = frozenset(
    {
        "ConfigMap",
        "Secret",
        "Service",
        "PersistentVolumeClaim",
        "Deployment",
        "ServiceAccount",
        "RoleBinding",
        "Synapse",
        "MautrixSignal",
        "Heisenbridge",
    }
)

# Entity kinds whose status is a separate subresource.
STATUS_SUBRESOURCE_KINDS: frozenset[str] = frozenset({"Synapse", "MautrixSignal", "Heisenbridge"})

_VERBS = frozenset({"get", "list", "create", "patch", "delete"})

_versions = itertools.count(1)


@dataclass
class WriteRecord:
    """One successful mutating call."""

    verb: str
    kind: str
    key: ObjectKey
    subresource: str | None = None
    at: datetime = field(default_factory=lambda: datetime.now(UTC))


class InMemoryObjectStore:
    """Dict-backed :class:`~synapse_operator.core.protocols.ObjectStore`.

    Every manifest handed in or out is deep-copied, so callers can never
    change stored state except through ``create``/``patch``/``delete``.
    """

    def __init__(self, kinds: Iterable[str] | None = None) -> None:
        self._kinds: set[str] = set(DEFAULT_KINDS if kinds is None else kinds)
        self._objects: dict[str, dict[ObjectKey, Manifest]] = {}
        self._faults: list[tuple[str, str | None, Exception]] = []
        self._lock = threading.RLock()
        self.writes: list[WriteRecord] = []

    # ------------------------------------------------------------------
    # Kinds and seeding
    # ------------------------------------------------------------------

    def register_kind(self, kind: str) -> None:
        """Make ``kind`` known, as installing its CRD would."""
        self._kinds.add(kind)

    @property
    def kinds(self) -> frozenset[str]:
        return frozenset(self._kinds)

    def load(self, manifests: Iterable[Manifest]) -> list[Manifest]:
        """Restore a snapshot, registering unknown kinds along the way.

        Unlike ``create``, a restored object keeps its ``status``.
        """
        created = []
        for obj in manifests:
            self.register_kind(kind_of(obj))
            created.append(self._insert(obj, keep_status=True))
        return created

    def objects(self, kind: str | None = None) -> list[Manifest]:
        """Copies of all stored objects, ordered by kind then key."""
        with self._lock:
            result = []
            for k in sorted(self._objects):
                if kind is not None and k != kind:
                    continue
                bucket = self._objects[k]
                for key in sorted(bucket, key=str):
                    result.append(copy.deepcopy(bucket[key]))
            return result

    def count(self, kind: str) -> int:
        with self._lock:
            return len(self._objects.get(kind, {}))

    # ------------------------------------------------------------------
    # Journal and faults
    # ------------------------------------------------------------------

    def write_count(self, verb: str | None = None, kind: str | None = None, subresource: str | None = None) -> int:
        """Number of journalled writes matching every given filter."""
        return sum(
            1
            for w in self.writes
            if (verb is None or w.verb == verb)
            and (kind is None or w.kind == kind)
            and (subresource is None or w.subresource == subresource)
        )

    def reset_journal(self) -> None:
        self.writes.clear()

    def inject_fault(self, verb: str, kind: str | None, error: Exception) -> None:
        """Raise ``error`` from the next ``verb`` call on ``kind`` (any kind if None)."""
        if verb not in _VERBS:
            raise ValueError(f"Unknown verb {verb!r}; expected one of {sorted(_VERBS)}")
        self._faults.append((verb, kind, error))

    def _maybe_fail(self, verb: str, kind: str) -> None:
        for i, (fault_verb, fault_kind, error) in enumerate(self._faults):
            if fault_verb == verb and (fault_kind is None or fault_kind == kind):
                del self._faults[i]
                logger.debug("store.fault_injected", verb=verb, kind=kind, error=str(error))
                raise error

    def _bucket(self, kind: str) -> dict[ObjectKey, Manifest]:
        if kind not in self._kinds:
            raise KindNotInstalledError(kind)
        return self._objects.setdefault(kind, {})

    def _record(self, verb: str, kind: str, key: ObjectKey, subresource: str | None = None) -> None:
        self.writes.append(WriteRecord(verb=verb, kind=kind, key=key, subresource=subresource))

    # ------------------------------------------------------------------
    # ObjectStore protocol
    # ------------------------------------------------------------------

    def get(self, kind: str, key: ObjectKey) -> Manifest:
        with self._lock:
            self._maybe_fail("get", kind)
            bucket = self._bucket(kind)
            if key not in bucket:
                raise NotFoundError(kind, key.name, key.namespace)
            return copy.deepcopy(bucket[key])

    def list(self, kind: str, namespace: str | None = None) -> list[Manifest]:
        with self._lock:
            self._maybe_fail("list", kind)
            bucket = self._bucket(kind)
            return [
                copy.deepcopy(obj)
                for key, obj in sorted(bucket.items(), key=lambda item: str(item[0]))
                if namespace is None or key.namespace == namespace
            ]

    def create(self, obj: Manifest) -> Manifest:
        """Store a new object.

        For kinds with a status subresource the submitted ``status`` is
        dropped, as the API server does: status is only written through
        ``patch(..., subresource="status")``.
        """
        return self._insert(obj, keep_status=False)

    def _insert(self, obj: Manifest, *, keep_status: bool) -> Manifest:
        kind = kind_of(obj)
        with self._lock:
            self._maybe_fail("create", kind)
            bucket = self._bucket(kind)
            stored = copy.deepcopy(obj)
            stored.setdefault("metadata", {}).setdefault("namespace", "default")
            key = ObjectKey.of(stored)
            if not key.name:
                raise ConfigurationError(f"{kind} manifest has no metadata.name")
            if key in bucket:
                raise AlreadyExistsError(kind, key.name, key.namespace)
            if kind in STATUS_SUBRESOURCE_KINDS and not keep_status:
                stored.pop("status", None)

            meta = stored["metadata"]
            meta["uid"] = str(uuid.uuid4())
            meta["resourceVersion"] = str(next(_versions))
            meta["creationTimestamp"] = datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")
            _fold_string_data(stored)

            bucket[key] = stored
            self._record("create", kind, key)
            return copy.deepcopy(stored)

    def patch(
        self,
        kind: str,
        key: ObjectKey,
        patch: Manifest,
        *,
        base_version: str | None = None,
        subresource: str | None = None,
    ) -> Manifest:
        with self._lock:
            self._maybe_fail("patch", kind)
            bucket = self._bucket(kind)
            if key not in bucket:
                raise NotFoundError(kind, key.name, key.namespace)
            current = bucket[key]
            current_version = current["metadata"]["resourceVersion"]
            if base_version is not None and base_version != current_version:
                raise ConflictError(
                    f"Operation cannot be fulfilled on {kind} {key}: the object has been modified",
                    expected_version=base_version,
                    actual_version=current_version,
                )

            if subresource == "status":
                effective = {"status": patch.get("status")}
            elif subresource is None:
                effective = {k: v for k, v in patch.items() if k not in ("status", "apiVersion", "kind")}
                meta_patch = effective.get("metadata")
                if isinstance(meta_patch, dict):
                    effective["metadata"] = {
                        k: v for k, v in meta_patch.items() if k not in ("name", "namespace", "uid", "resourceVersion")
                    }
            else:
                raise ValueError(f"Unsupported subresource {subresource!r}")

            updated = merge_patch(current, effective)
            updated["metadata"]["resourceVersion"] = str(next(_versions))
            _fold_string_data(updated)
            bucket[key] = updated
            self._record("patch", kind, key, subresource)
            return copy.deepcopy(updated)

    def delete(self, kind: str, key: ObjectKey) -> None:
        with self._lock:
            self._maybe_fail("delete", kind)
            bucket = self._bucket(kind)
            if key not in bucket:
                raise NotFoundError(kind, key.name, key.namespace)
            removed = bucket.pop(key)
            self._record("delete", kind, key)
            self._collect_garbage(uid_of(removed))

    def set_owner(self, child: Manifest, owner: Manifest) -> None:
        owner_uid = uid_of(owner)
        if not owner_uid:
            raise ConfigurationError(f"cannot own {kind_of(child)}: owner {kind_of(owner)} has no uid")
        existing = controller_of(child)
        if existing is not None and existing.get("uid") != owner_uid:
            raise ConfigurationError(
                f"{kind_of(child)} {ObjectKey.of(child)} is already controlled by "
                f"{existing.get('kind')} {existing.get('name')}"
            )
        refs = [
            ref
            for ref in child.setdefault("metadata", {}).get("ownerReferences") or []
            if ref.get("uid") != owner_uid
        ]
        refs.append(controller_reference(owner))
        child["metadata"]["ownerReferences"] = refs

    def _collect_garbage(self, owner_uid: str | None) -> None:
        if not owner_uid:
            return
        orphans: list[tuple[str, ObjectKey]] = []
        for kind, bucket in self._objects.items():
            for key, obj in bucket.items():
                refs = (obj.get("metadata") or {}).get("ownerReferences") or []
                if any(ref.get("uid") == owner_uid for ref in refs):
                    orphans.append((kind, key))
        for kind, key in orphans:
            removed = self._objects[kind].pop(key, None)
            if removed is None:
                continue
            self._record("delete", kind, key)
            logger.debug("store.garbage_collected", kind=kind, key=str(key))
            self._collect_garbage(uid_of(removed))


def _fold_string_data(obj: Manifest) -> None:
    """Merge a Secret's ``stringData`` into base64 ``data``."""
    if kind_of(obj) != "Secret" or "stringData" not in obj:
        return
    string_data: dict[str, Any] = obj.pop("stringData") or {}
    data = obj.setdefault("data", {})
    for key, value in string_data.items():
        data[key] = base64.b64encode(str(value).encode()).decode()
