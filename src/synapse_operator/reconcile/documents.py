"""
Document Mutator — targeted edits of YAML documents stored in ConfigMaps.

Manifesto:
    Generated configuration files must reflect facts learned during
    reconciliation (database credentials, bridge registrations, service
    addresses) while keeping everything the user wrote. The mutator loads
    one document, hands the parsed tree to a pure mutation function, and
    writes the document back only if its serialized text changed.

Architecture:
    ::

        mutate_named_artifact(key, artifact_key, owner, mutate_fn)
          │
          ├─ store.get("ConfigMap", key)
          ├─ load_yaml_document(configmap, artifact_key) ─► DocumentParseError
          ├─ mutate_fn(owner, tree)                      ─► DocumentMutationError
          ├─ dump_yaml_document(tree)
          │     └─ tree unchanged, or text == stored ────► False
          └─ store.patch(data={artifact_key: text},
                         base_version=configmap.resourceVersion) ─► True

Guardrails:
    ❌ DON'T: Perform I/O inside ``mutate_fn``
    ✅ DO: Derive everything the mutation needs from ``owner``

    ❌ DON'T: Append to lists unconditionally
    ✅ DO: Check membership first, so a second application is a no-op

Tags:
    reconcile, yaml, configmap, mutation, idempotent

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import copy
from collections.abc import Callable
from typing import Any

import yaml

from synapse_operator.core.errors import (
    DocumentMutationError,
    DocumentParseError,
    OperatorError,
)
from synapse_operator.core.logging import get_logger
from synapse_operator.core.objects import Manifest, ObjectKey, describe, resource_version_of
from synapse_operator.core.protocols import ObjectStore

logger = get_logger(__name__)

MutateFn = Callable[[Any, dict[str, Any]], None]


def load_yaml_document(configmap: Manifest, key: str) -> dict[str, Any]:
    """Parse ``configmap.data[key]`` into a mapping.

    Raises:
        DocumentParseError: key absent, YAML malformed, or not a mapping.
    """
    data = configmap.get("data") or {}
    if key not in data:
        raise DocumentParseError(f"{describe(configmap)} has no data key {key!r}", artifact_key=key)
    try:
        tree = yaml.safe_load(data[key])
    except yaml.YAMLError as e:
        raise DocumentParseError(
            f"cannot parse {key!r} in {describe(configmap)}: {e}",
            artifact_key=key,
            cause=e,
        ) from e
    if not isinstance(tree, dict):
        raise DocumentParseError(
            f"{key!r} in {describe(configmap)} is not a YAML mapping (got {type(tree).__name__})",
            artifact_key=key,
        )
    return tree


def dump_yaml_document(tree: dict[str, Any]) -> str:
    """Serialize a tree, keeping key insertion order."""
    return yaml.safe_dump(tree, sort_keys=False, default_flow_style=False, allow_unicode=True)


def copy_configmap(store: ObjectStore, source_key: ObjectKey, metadata: dict[str, Any]) -> Manifest:
    """Build a new ConfigMap manifest carrying the data of ``source_key``.

    Raises:
        NotFoundError: the source ConfigMap does not exist.
    """
    source = store.get("ConfigMap", source_key)
    manifest: Manifest = {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": copy.deepcopy(metadata),
        "data": copy.deepcopy(source.get("data") or {}),
    }
    if source.get("binaryData"):
        manifest["binaryData"] = copy.deepcopy(source["binaryData"])
    return manifest


class DocumentMutator:
    """Read-modify-write of a single document inside a ConfigMap."""

    def __init__(self, store: ObjectStore) -> None:
        self._store = store

    def mutate_named_artifact(self, key: ObjectKey, artifact_key: str, owner: Any, mutate_fn: MutateFn) -> bool:
        """Apply ``mutate_fn`` to ``data[artifact_key]`` of ConfigMap ``key``.

        Args:
            key: ConfigMap identity
            artifact_key: Data key holding the YAML document
            owner: Entity passed through to ``mutate_fn``
            mutate_fn: ``(owner, tree) -> None``, edits ``tree`` in place

        Returns:
            True if the ConfigMap was patched.

        Raises:
            DocumentParseError: the stored document is unusable
            DocumentMutationError: ``mutate_fn`` rejected the document
            StoreError / ConflictError: retryable store failures
        """
        configmap = self._store.get("ConfigMap", key)
        tree = load_yaml_document(configmap, artifact_key)
        original = configmap["data"][artifact_key]
        before = copy.deepcopy(tree)

        try:
            mutate_fn(owner, tree)
        except OperatorError:
            raise
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise DocumentMutationError(
                f"cannot update {artifact_key!r} in ConfigMap {key}: {e}",
                cause=e,
            ) from e

        updated = dump_yaml_document(tree)
        if tree == before or updated == original:
            logger.debug("document.unchanged", configmap=str(key), artifact=artifact_key)
            return False

        self._store.patch(
            "ConfigMap",
            key,
            {"data": {artifact_key: updated}},
            base_version=resource_version_of(configmap),
        )
        logger.info("document.patched", configmap=str(key), artifact=artifact_key)
        return True


__all__ = [
    "MutateFn",
    "DocumentMutator",
    "load_yaml_document",
    "dump_yaml_document",
    "copy_configmap",
]
