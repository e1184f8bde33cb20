"""
PlacementRef — a ReplicaSet's reference to a selection policy.
"""

from __future__ import annotations

import math
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RolloutStrategy(BaseModel):
    """How quickly a placement's targets receive a new spec.

    ``All`` pushes to every target in the same pass. ``Progressive`` keeps
    at most ``max_concurrency`` targets in flight (created or updated but
    not yet Available); the rest wait for a later pass.
    """

    model_config = ConfigDict(frozen=True)

    type: Literal["All", "Progressive"] = "All"
    max_concurrency: int | str | None = None

    @field_validator("max_concurrency")
    @classmethod
    def _check_concurrency(cls, value: int | str | None) -> int | str | None:
        if value is None:
            return value
        if isinstance(value, int):
            if value < 1:
                raise ValueError("max_concurrency must be >= 1")
            return value
        text = value.strip()
        if not text.endswith("%"):
            raise ValueError(f"max_concurrency must be an int or a percentage, got {value!r}")
        pct = float(text[:-1])
        if not 0 < pct <= 100:
            raise ValueError(f"max_concurrency percentage out of range: {value!r}")
        return text

    def limit(self, total: int) -> int | None:
        """Concurrency cap for ``total`` targets, or None when unbounded."""
        if self.type == "All" or self.max_concurrency is None:
            return None
        if isinstance(self.max_concurrency, int):
            return self.max_concurrency
        pct = float(self.max_concurrency[:-1])
        return max(1, math.ceil(total * pct / 100))


class PlacementRef(BaseModel):
    """Selection-policy name plus rollout configuration."""

    model_config = ConfigDict(frozen=True)

    name: str
    rollout_strategy: RolloutStrategy = RolloutStrategy()


class PlacementDecision(BaseModel):
    """The current output of one selection policy: a set of cluster names."""

    namespace: str
    name: str
    clusters: list[str] = Field(default_factory=list)

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"
