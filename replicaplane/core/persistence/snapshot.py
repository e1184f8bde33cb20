"""
Snapshot persistence — atomic read/write of the in-memory world.

The offline ``reconcile`` command can save the store (ReplicaSets and
ManifestWorks, with status) as JSON. Writes are atomic (write to temp
file, then rename) so a crash never leaves a half-written snapshot.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

from replicaplane.adapters.memory import InMemoryStore

logger = logging.getLogger(__name__)


def save_snapshot(store: InMemoryStore, path: Path) -> None:
    """Save the store's contents to ``path`` (atomic write)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    content = json.dumps(store.to_dict(), indent=2, ensure_ascii=False) + "\n"

    try:
        fd, tmp_path = tempfile.mkstemp(
            dir=path.parent,
            prefix=".snapshot_",
            suffix=".tmp",
        )
        os.close(fd)
        tmp = Path(tmp_path)
        try:
            tmp.write_text(content, encoding="utf-8")
            tmp.rename(path)
            logger.debug("Snapshot saved to %s", path)
        except Exception:
            tmp.unlink(missing_ok=True)
            raise
    except Exception as e:
        logger.error("Failed to save snapshot to %s: %s", path, e)
        raise


def load_snapshot(path: Path) -> InMemoryStore:
    """Load a store from a snapshot file. A missing file gives an empty store."""
    if not path.is_file():
        logger.info("No snapshot at %s — starting empty", path)
        return InMemoryStore()

    data = json.loads(path.read_text(encoding="utf-8"))
    store = InMemoryStore.from_dict(data)
    logger.debug("Loaded snapshot from %s", path)
    return store
