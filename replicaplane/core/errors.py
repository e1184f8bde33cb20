"""
Error taxonomy for the controller.

Stages never raise for expected failures. They return one of these
errors alongside the resource, and the sync entry point folds all of
them into a single ``ReconcileError`` per pass.
"""

from __future__ import annotations

from collections.abc import Iterable


class ReplicaplaneError(Exception):
    """Base class for every error raised by replicaplane."""


# ── Storage substrate ───────────────────────────────────────────────


class StoreError(ReplicaplaneError):
    """A storage call failed."""


class NotFoundError(StoreError):
    """The requested object does not exist."""

    def __init__(self, kind: str, namespace: str, name: str):
        self.kind = kind
        self.namespace = namespace
        self.name = name
        super().__init__(f"{kind} {namespace}/{name} not found")


class AlreadyExistsError(StoreError):
    """An object with the same identity already exists."""

    def __init__(self, kind: str, namespace: str, name: str):
        self.kind = kind
        self.namespace = namespace
        self.name = name
        super().__init__(f"{kind} {namespace}/{name} already exists")


class ConflictError(StoreError):
    """The write was based on a stale resource version."""


# ── Selection ───────────────────────────────────────────────────────


class PlacementNotFoundError(ReplicaplaneError):
    """The selection policy referenced by a PlacementRef has no result."""

    def __init__(self, namespace: str, name: str):
        self.namespace = namespace
        self.name = name
        super().__init__(f"placement {namespace}/{name} not found")


# ── Controller ──────────────────────────────────────────────────────


class InvalidKeyError(ReplicaplaneError):
    """A queue key is not in ``namespace/name`` form."""


class TargetError(ReplicaplaneError):
    """An apply or delete against one target failed."""

    def __init__(self, target: str, operation: str, cause: Exception):
        self.target = target
        self.operation = operation
        self.cause = cause
        super().__init__(f"{operation} on cluster {target!r}: {cause}")


class ReconcileCancelledError(ReplicaplaneError):
    """The pass hit its deadline or was cancelled before finishing."""


class ReconcileError(ReplicaplaneError):
    """Ordered aggregate of every error surfaced during one pass."""

    def __init__(self, errors: Iterable[Exception]):
        self.errors: list[Exception] = list(errors)
        super().__init__(self._render())

    def _render(self) -> str:
        if len(self.errors) == 1:
            return str(self.errors[0])
        return "[" + ", ".join(str(e) for e in self.errors) + "]"

    def __len__(self) -> int:
        return len(self.errors)


def aggregate(errors: Iterable[Exception | None]) -> ReconcileError | None:
    """Fold errors into one ``ReconcileError``, or None if there are none.

    Nested aggregates are flattened and exact duplicates (same type and
    message) are dropped, preserving first-seen order.
    """
    flat: list[Exception] = []
    seen: set[tuple[type, str]] = set()
    for err in errors:
        if err is None:
            continue
        parts = err.errors if isinstance(err, ReconcileError) else [err]
        for part in parts:
            ident = (type(part), str(part))
            if ident in seen:
                continue
            seen.add(ident)
            flat.append(part)
    if not flat:
        return None
    return ReconcileError(flat)
