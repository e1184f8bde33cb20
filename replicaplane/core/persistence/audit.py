"""
Audit ledger — append-only log of reconcile passes.

Every sync pass can write one entry to an NDJSON (newline-delimited
JSON) file: which key, how it ended, what happened per cluster. Entries
are never modified or deleted. Writes are serialized with a lock since
worker threads share one writer.
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Iterator
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from replicaplane.core.models.meta import now_iso

logger = logging.getLogger(__name__)


class AuditEntry(BaseModel):
    """One sync pass of one ReplicaSet key."""

    timestamp: str = Field(default_factory=now_iso)
    key: str = ""
    status: str = ""  # ok | failed
    duration_ms: int = 0
    requeue_after: float | None = None

    # str() of each aggregated error
    errors: list[str] = Field(default_factory=list)

    # Per-cluster outcomes from the distribution stage
    outcomes: list[dict[str, Any]] = Field(default_factory=list)


class AuditWriter:
    """Append-only ledger shared by all worker threads."""

    def __init__(self, path: Path):
        self._path = path
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def write(self, entry: AuditEntry) -> None:
        """Append one pass record. I/O failures are logged, never raised into sync."""
        record = json.dumps(entry.model_dump(mode="json"), ensure_ascii=False)
        with self._lock:
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                with self._path.open("a", encoding="utf-8") as f:
                    f.write(record + "\n")
            except OSError as e:
                logger.error("Cannot append to audit ledger %s: %s", self._path, e)
                return
        logger.debug("Audited %s pass (%s)", entry.key, entry.status)

    def _iter_entries(self) -> Iterator[AuditEntry]:
        if not self._path.is_file():
            return
        try:
            with self._path.open("r", encoding="utf-8") as f:
                for lineno, raw in enumerate(f, start=1):
                    if not raw.strip():
                        continue
                    try:
                        yield AuditEntry.model_validate_json(raw)
                    except ValidationError as e:
                        logger.warning(
                            "Audit ledger %s line %d unreadable, skipped: %s",
                            self._path, lineno, e.errors()[0]["msg"],
                        )
        except OSError as e:
            logger.error("Cannot read audit ledger %s: %s", self._path, e)

    def read_all(self) -> list[AuditEntry]:
        """Every readable entry, oldest first."""
        return list(self._iter_entries())

    def for_key(self, key: str) -> list[AuditEntry]:
        """Passes recorded for one ReplicaSet key, oldest first."""
        return [e for e in self._iter_entries() if e.key == key]

    def entry_count(self) -> int:
        return sum(1 for _ in self._iter_entries())
