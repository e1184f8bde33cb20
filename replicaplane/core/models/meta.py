"""
Object metadata and conditions shared by every resource kind.
"""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, Field


def now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class ObjectMeta(BaseModel):
    """Identity and lifecycle fields of a stored object."""

    namespace: str
    name: str
    labels: dict[str, str] = Field(default_factory=dict)
    finalizers: list[str] = Field(default_factory=list)
    deletion_timestamp: str | None = None
    generation: int = 1
    resource_version: int = 0

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    @property
    def deleting(self) -> bool:
        return self.deletion_timestamp is not None


class Condition(BaseModel):
    """A typed status condition.

    No timestamps: conditions are recomputed from observed state every
    pass, and recomputing the same state must give the same bytes.
    """

    type: str
    status: str  # "True", "False", "Unknown"
    reason: str = ""
    message: str = ""
    observed_generation: int = 0

    @property
    def is_true(self) -> bool:
        return self.status == "True"


def find_condition(conditions: list[Condition], cond_type: str) -> Condition | None:
    """Look up a condition by type."""
    for cond in conditions:
        if cond.type == cond_type:
            return cond
    return None


def set_condition(conditions: list[Condition], new: Condition) -> list[Condition]:
    """Return a copy of ``conditions`` with ``new`` replacing any same-typed entry."""
    result = [c for c in conditions if c.type != new.type]
    result.append(new)
    return sorted(result, key=lambda c: c.type)


def is_condition_true(conditions: list[Condition], cond_type: str) -> bool:
    cond = find_condition(conditions, cond_type)
    return cond is not None and cond.is_true
