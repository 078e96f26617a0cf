"""Object identity and manifest helpers.

Identity is ``(kind, namespace, name)``. ``kind`` travels separately from
:class:`ObjectKey` because one key names a whole family of children (the
Synapse ConfigMap, Service and Deployment share the Entity's name).
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Any

Manifest = dict[str, Any]

# Metadata the store owns; never part of a desired value.
SERVER_POPULATED_METADATA = frozenset(
    {
        "uid",
        "resourceVersion",
        "creationTimestamp",
        "generation",
        "managedFields",
    }
)


@dataclass(frozen=True)
class ObjectKey:
    """Namespaced name of an object."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"

    @classmethod
    def of(cls, obj: Manifest) -> ObjectKey:
        """Key of a manifest dict."""
        meta = obj.get("metadata") or {}
        return cls(namespace=meta.get("namespace", ""), name=meta.get("name", ""))


def kind_of(obj: Manifest) -> str:
    return obj.get("kind", "")


def resource_version_of(obj: Manifest) -> str | None:
    return (obj.get("metadata") or {}).get("resourceVersion")


def uid_of(obj: Manifest) -> str | None:
    return (obj.get("metadata") or {}).get("uid")


def describe(obj: Manifest) -> str:
    """``Kind namespace/name`` for log messages."""
    return f"{kind_of(obj)} {ObjectKey.of(obj)}"


def strip_server_fields(obj: Manifest) -> Manifest:
    """Return a copy of ``obj`` without server-populated metadata."""
    result = copy.deepcopy(obj)
    meta = result.get("metadata")
    if isinstance(meta, dict):
        for field_name in SERVER_POPULATED_METADATA:
            meta.pop(field_name, None)
    return result


def controller_reference(owner: Manifest) -> dict[str, Any]:
    """Owner reference marking ``owner`` as the controlling parent."""
    meta = owner.get("metadata") or {}
    return {
        "apiVersion": owner.get("apiVersion", ""),
        "kind": kind_of(owner),
        "name": meta.get("name", ""),
        "uid": meta.get("uid", ""),
        "controller": True,
        "blockOwnerDeletion": True,
    }


def controller_of(obj: Manifest) -> dict[str, Any] | None:
    """The owner reference with ``controller: true``, if any."""
    for ref in (obj.get("metadata") or {}).get("ownerReferences") or []:
        if ref.get("controller"):
            return ref
    return None


def owner_references_of(obj: Manifest) -> list[dict[str, Any]]:
    return list((obj.get("metadata") or {}).get("ownerReferences") or [])


def has_owner_references(obj: Manifest, refs: list[dict[str, Any]]) -> bool:
    """True if every ref in ``refs`` is on ``obj``, matched by ``uid``.

    Other owners on ``obj`` are ignored.
    """
    present = {ref.get("uid"): ref for ref in owner_references_of(obj)}
    return all(ref.get("uid") in present and present[ref.get("uid")] == ref for ref in refs)


def merge_owner_references(current: list[dict[str, Any]], refs: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """``current`` with each of ``refs`` replacing the entry of the same ``uid`` or appended."""
    wanted = {ref.get("uid"): ref for ref in refs}
    merged = [copy.deepcopy(wanted.pop(ref.get("uid"), ref)) for ref in current]
    merged.extend(copy.deepcopy(ref) for ref in wanted.values())
    return merged


__all__ = [
    "Manifest",
    "SERVER_POPULATED_METADATA",
    "ObjectKey",
    "kind_of",
    "resource_version_of",
    "uid_of",
    "describe",
    "strip_server_fields",
    "controller_reference",
    "controller_of",
    "owner_references_of",
    "has_owner_references",
    "merge_owner_references",
]
