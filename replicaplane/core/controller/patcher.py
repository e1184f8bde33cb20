"""
JSON merge patches (RFC 7386) for minimal writes.

The sync entry point persists only what changed: it diffs the status it
loaded against the status it computed and sends just the delta. An
empty patch means nothing changed and no write is issued.
"""

from __future__ import annotations

import copy
from typing import Any


def create_merge_patch(original: dict[str, Any], modified: dict[str, Any]) -> dict[str, Any]:
    """Return the merge patch that turns ``original`` into ``modified``.

    Keys missing from ``modified`` become ``None`` (delete). Nested dicts
    are diffed recursively; lists and scalars are replaced whole.
    """
    patch: dict[str, Any] = {}
    for key in original:
        if key not in modified:
            patch[key] = None
    for key, new in modified.items():
        old = original.get(key, _MISSING)
        if old is _MISSING:
            patch[key] = copy.deepcopy(new)
        elif isinstance(old, dict) and isinstance(new, dict):
            sub = create_merge_patch(old, new)
            if sub:
                patch[key] = sub
        elif old != new:
            patch[key] = copy.deepcopy(new)
    return patch


def apply_merge_patch(target: Any, patch: Any) -> Any:
    """Apply a merge patch and return the result (inputs are not mutated)."""
    if not isinstance(patch, dict):
        return copy.deepcopy(patch)
    result = copy.deepcopy(target) if isinstance(target, dict) else {}
    for key, value in patch.items():
        if value is None:
            result.pop(key, None)
        else:
            result[key] = apply_merge_patch(result.get(key), value)
    return result


class _Missing:
    def __repr__(self) -> str:
        return "<missing>"


_MISSING = _Missing()
