"""Structural comparison and JSON merge patch (RFC 7386) for manifest trees.

``is_subset`` is the managed-field check used by the Resource Reconciler:
every path present in the desired tree must hold the same value in the
existing tree, while paths the desired tree does not mention are unmanaged
and ignored.

Keys removed from a desired tree are not deleted from the stored object.
A merge patch built from the desired value alone cannot express removal, so
fields a controller stops managing are left in place.
"""

from __future__ import annotations

import copy
from typing import Any


def is_subset(desired: Any, existing: Any) -> bool:
    """Return True if every value in ``desired`` is present in ``existing``.

    Mappings recurse key by key. Lists must have equal length and match
    element-wise, so server-side defaults inside list items (container
    fields, ports) do not count as drift. Scalars compare by equality.
    """
    if isinstance(desired, dict):
        if not isinstance(existing, dict):
            return False
        return all(key in existing and is_subset(value, existing[key]) for key, value in desired.items())
    if isinstance(desired, list):
        if not isinstance(existing, list) or len(desired) != len(existing):
            return False
        return all(is_subset(d, e) for d, e in zip(desired, existing))
    return desired == existing


def merge_patch(target: Any, patch: Any) -> Any:
    """Apply ``patch`` to ``target`` and return the result.

    ``None`` values delete keys; mappings merge recursively; anything else
    replaces the target value wholesale. Neither argument is modified.
    """
    if not isinstance(patch, dict):
        return copy.deepcopy(patch)
    result = copy.deepcopy(target) if isinstance(target, dict) else {}
    for key, value in patch.items():
        if value is None:
            result.pop(key, None)
        else:
            result[key] = merge_patch(result.get(key), value)
    return result


def replacement_patch(current: Any, desired: Any) -> Any:
    """Merge patch that turns ``current`` into exactly ``desired``.

    Keys present in ``current`` but absent from ``desired`` are set to
    ``None`` so the patch removes them.
    """
    if not isinstance(desired, dict) or not isinstance(current, dict):
        return copy.deepcopy(desired)
    patch: dict[str, Any] = {}
    for key in current:
        if key not in desired:
            patch[key] = None
    for key, value in desired.items():
        if key not in current:
            patch[key] = copy.deepcopy(value)
        elif current[key] != value:
            patch[key] = replacement_patch(current[key], value)
    return patch


def diff_paths(desired: Any, existing: Any, prefix: str = "") -> list[str]:
    """Dotted paths in ``desired`` whose value differs in ``existing``.

    Used for log output only.
    """
    if isinstance(desired, dict) and isinstance(existing, dict):
        paths: list[str] = []
        for key, value in desired.items():
            path = f"{prefix}.{key}" if prefix else str(key)
            if key not in existing:
                paths.append(path)
            else:
                paths.extend(diff_paths(value, existing[key], path))
        return paths
    return [] if is_subset(desired, existing) else [prefix or "."]


__all__ = ["is_subset", "merge_patch", "replacement_patch", "diff_paths"]
