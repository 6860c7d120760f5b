"""
Snapshot store -- last successful live dataset per (block_id, report_id).

Snapshots are written only after a successful live resolution, overwritten
on every later success (last write wins), and never expired here: staleness
is the caller's concern.  They are read by anonymous viewers and as the
fallback when a live fetch fails.

Two backends:
  InMemorySnapshotStore -- process-local, lock-protected dict
  SqlSnapshotStore      -- ``block_snapshots`` table via SQLAlchemy
"""
from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy import text
from sqlalchemy.engine import Engine

from src.engine.spec import ResolvedDataset
from src.core.config import get_settings
from src.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class CacheSnapshot:
    block_id: str
    report_id: str
    dataset: ResolvedDataset
    captured_at: datetime


class SnapshotStore(Protocol):
    def get(self, block_id: str, report_id: str) -> CacheSnapshot | None: ...

    def put(self, block_id: str, report_id: str, dataset: ResolvedDataset) -> None: ...


# ── In-memory backend ───────────────────────────────────


class InMemorySnapshotStore:
    """Thread-safe in-memory snapshot store."""

    def __init__(self) -> None:
        self._store: dict[tuple[str, str], CacheSnapshot] = {}
        self._lock = threading.Lock()
        self._reads = 0
        self._writes = 0

    def get(self, block_id: str, report_id: str) -> CacheSnapshot | None:
        with self._lock:
            self._reads += 1
            snapshot = self._store.get((block_id, report_id))
        if snapshot is not None:
            logger.debug("Snapshot HIT block=%s report=%s", block_id, report_id)
        return snapshot

    def put(self, block_id: str, report_id: str, dataset: ResolvedDataset) -> None:
        # Copy so later mutation by the caller cannot leak into the snapshot.
        snapshot = CacheSnapshot(
            block_id=block_id,
            report_id=report_id,
            dataset=dataset.model_copy(deep=True),
            captured_at=datetime.now(timezone.utc),
        )
        with self._lock:
            self._store[(block_id, report_id)] = snapshot
            self._writes += 1
        logger.debug("Snapshot PUT block=%s report=%s rows=%d",
                     block_id, report_id, len(dataset.current_rows))

    def clear(self) -> int:
        with self._lock:
            count = len(self._store)
            self._store.clear()
            return count

    def stats(self) -> dict[str, int]:
        with self._lock:
            return {"size": len(self._store), "reads": self._reads, "writes": self._writes}


# ── SQL backend ─────────────────────────────────────────

_TABLE = "block_snapshots"

_CREATE_SQL = f"""
CREATE TABLE IF NOT EXISTS {_TABLE} (
    block_id     VARCHAR(120) NOT NULL,
    report_id    VARCHAR(120) NOT NULL,
    dataset      TEXT NOT NULL,          -- ResolvedDataset JSON
    captured_at  VARCHAR(40) NOT NULL,   -- ISO-8601 UTC
    PRIMARY KEY (block_id, report_id)
)
"""


class SqlSnapshotStore:
    """Snapshot store persisted in a SQL table (Postgres in production)."""

    def __init__(self, engine: Engine):
        self._engine = engine
        self.ensure_table()

    def ensure_table(self) -> None:
        with self._engine.connect() as conn:
            conn.execute(text(_CREATE_SQL))
            conn.commit()
        logger.info("Snapshot table '%s' ensured", _TABLE)

    def get(self, block_id: str, report_id: str) -> CacheSnapshot | None:
        with self._engine.connect() as conn:
            row = conn.execute(
                text(f"SELECT dataset, captured_at FROM {_TABLE} "
                     "WHERE block_id = :block_id AND report_id = :report_id"),
                {"block_id": block_id, "report_id": report_id},
            ).fetchone()
        if row is None:
            return None
        return CacheSnapshot(
            block_id=block_id,
            report_id=report_id,
            dataset=ResolvedDataset.model_validate_json(row[0]),
            captured_at=datetime.fromisoformat(row[1]),
        )

    def put(self, block_id: str, report_id: str, dataset: ResolvedDataset) -> None:
        params = {
            "block_id": block_id,
            "report_id": report_id,
            "dataset": dataset.model_dump_json(),
            "captured_at": datetime.now(timezone.utc).isoformat(),
        }
        # Delete + insert in one transaction: never partially written.
        with self._engine.begin() as conn:
            conn.execute(
                text(f"DELETE FROM {_TABLE} WHERE block_id = :block_id AND report_id = :report_id"),
                params,
            )
            conn.execute(
                text(f"INSERT INTO {_TABLE} (block_id, report_id, dataset, captured_at) "
                     "VALUES (:block_id, :report_id, :dataset, :captured_at)"),
                params,
            )
        logger.debug("Snapshot persisted block=%s report=%s", block_id, report_id)


# ── Module-level singleton ──────────────────────────────

_store: SnapshotStore | None = None


def get_snapshot_store() -> SnapshotStore:
    """Return the configured global snapshot store."""
    global _store
    if _store is None:
        if get_settings().snapshot_backend == "sql":
            from src.db.connection import get_engine

            _store = SqlSnapshotStore(get_engine())
        else:
            _store = InMemorySnapshotStore()
    return _store
