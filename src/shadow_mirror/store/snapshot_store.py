"""Append-only SQLite snapshot store.

Backs both the audit history and rollback.  Rows are inserted once and
never updated; only the retention manager deletes them.

Usage:
    from shadow_mirror.store.snapshot_store import SnapshotStore

    store = SnapshotStore("backups/shadow.db")
    saved = store.append(snapshot)
    good = store.latest_good()
    store.close()
"""

import json
import logging
import sqlite3
from pathlib import Path
from typing import Any

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine, Row
from sqlalchemy.exc import SQLAlchemyError

from shadow_mirror.errors import PersistenceError
from shadow_mirror.mirror.models import Bundle, MirrorSchema, Snapshot
from shadow_mirror.store.checksum import compute_checksum

logger = logging.getLogger(__name__)

_SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS snapshots (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        timestamp INTEGER NOT NULL,
        type TEXT NOT NULL,
        data_json TEXT NOT NULL,
        item_count INTEGER,
        checksum TEXT,
        connection_healthy INTEGER DEFAULT 1,
        latency_ms INTEGER DEFAULT 0
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_timestamp ON snapshots(timestamp)",
    "CREATE INDEX IF NOT EXISTS idx_item_count ON snapshots(item_count)",
)

_COLUMNS = (
    "id, timestamp, type, data_json, item_count, checksum, "
    "connection_healthy, latency_ms"
)

_GOOD = "type = 'full' AND item_count > 0 AND connection_healthy = 1"


def snapshot_from_bundle(
    bundle: Bundle, schema: MirrorSchema | None = None, kind: str = "full"
) -> Snapshot:
    """Build an unsaved ``Snapshot`` (no id) from a captured bundle."""
    return Snapshot(
        timestamp=bundle.meta.timestamp,
        kind=kind,
        payload=bundle.to_payload(),
        item_count=bundle.item_count,
        checksum=compute_checksum(bundle.collections, schema),
        connection_healthy=bundle.meta.connection_healthy,
        latency_ms=bundle.meta.latency_ms,
    )


class SnapshotStore:
    """SQLite-backed snapshot table accessed through SQLAlchemy.

    One engine per store; WAL journaling so readers (the restore CLI) never
    block the capture cycle.

    Args:
        db_path: Path to the SQLite file.  Parent directories are created.
        **engine_kwargs: Forwarded to ``create_engine``.
    """

    def __init__(self, db_path: str | Path, **engine_kwargs: Any) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._engine: Engine = create_engine(
            f"sqlite:///{self._db_path}", **engine_kwargs
        )
        event.listen(self._engine, "connect", _configure_sqlite)
        self._ensure_schema()

    @property
    def path(self) -> Path:
        return self._db_path

    def _ensure_schema(self) -> None:
        try:
            with self._engine.begin() as conn:
                for statement in _SCHEMA_STATEMENTS:
                    conn.execute(text(statement))
        except SQLAlchemyError as e:
            raise PersistenceError(f"Cannot open snapshot store {self._db_path}: {e}") from e

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def append(self, snapshot: Snapshot) -> Snapshot:
        """Insert a new immutable row and return it with its assigned id.

        Raises:
            PersistenceError: If the insert fails.
        """
        params = {
            "timestamp": snapshot.timestamp,
            "type": snapshot.kind,
            "data_json": json.dumps(snapshot.payload, default=str),
            "item_count": snapshot.item_count,
            "checksum": snapshot.checksum,
            "connection_healthy": 1 if snapshot.connection_healthy else 0,
            "latency_ms": snapshot.latency_ms,
        }
        try:
            with self._engine.begin() as conn:
                result = conn.execute(
                    text(
                        """
                        INSERT INTO snapshots
                            (timestamp, type, data_json, item_count, checksum,
                             connection_healthy, latency_ms)
                        VALUES
                            (:timestamp, :type, :data_json, :item_count, :checksum,
                             :connection_healthy, :latency_ms)
                        """
                    ),
                    params,
                )
                new_id = result.lastrowid
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to append snapshot: {e}") from e

        logger.debug(
            f"Appended snapshot {new_id} ({snapshot.item_count} items, {snapshot.checksum})"
        )
        return snapshot.model_copy(update={"id": new_id})

    def delete_older_than(self, cutoff_ms: int, exclude_ids: list[int]) -> int:
        """Delete rows older than ``cutoff_ms`` whose id is not excluded.

        Returns:
            Number of rows deleted.
        """
        params: dict[str, Any] = {"cutoff": cutoff_ms}
        exclude_clause = ""
        if exclude_ids:
            names = []
            for i, snapshot_id in enumerate(exclude_ids):
                params[f"x_{i}"] = snapshot_id
                names.append(f":x_{i}")
            exclude_clause = f" AND id NOT IN ({', '.join(names)})"

        with self._engine.begin() as conn:
            result = conn.execute(
                text(f"DELETE FROM snapshots WHERE timestamp < :cutoff{exclude_clause}"),
                params,
            )
            return result.rowcount or 0

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def latest_good(self) -> Snapshot | None:
        """Most recent full snapshot with ``item_count > 0`` taken while healthy.

        Raises:
            PersistenceError: If the store cannot be read or a row is corrupt.
        """
        return self._fetch_one(
            f"SELECT {_COLUMNS} FROM snapshots WHERE {_GOOD} "
            "ORDER BY timestamp DESC, id DESC LIMIT 1"
        )

    def latest(self) -> Snapshot | None:
        """Most recent snapshot regardless of health."""
        return self._fetch_one(
            f"SELECT {_COLUMNS} FROM snapshots ORDER BY timestamp DESC, id DESC LIMIT 1"
        )

    def get(self, snapshot_id: int) -> Snapshot | None:
        return self._fetch_one(
            f"SELECT {_COLUMNS} FROM snapshots WHERE id = :id", {"id": snapshot_id}
        )

    def list_recent(self, limit: int = 20) -> list[Snapshot]:
        """Newest-first list of snapshots."""
        rows = self._query(
            f"SELECT {_COLUMNS} FROM snapshots "
            "ORDER BY timestamp DESC, id DESC LIMIT :limit",
            {"limit": limit},
        )
        return [self._row_to_snapshot(row) for row in rows]

    def count_all(self) -> int:
        rows = self._query("SELECT count(*) FROM snapshots")
        return int(rows[0][0] or 0)

    def protected_ids(self, keep: int) -> list[int]:
        """Ids of the ``keep`` most recent known-good snapshots.

        Uses the same predicate as ``latest_good``, so the snapshot the
        guard compares against is always protected.
        """
        if keep <= 0:
            return []
        rows = self._query(
            f"SELECT id FROM snapshots WHERE {_GOOD} "
            "ORDER BY timestamp DESC, id DESC LIMIT :keep",
            {"keep": keep},
        )
        return [row[0] for row in rows]

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def backup_to(self, target: str | Path) -> Path:
        """Copy the live database to ``target`` using SQLite's online backup."""
        target = Path(target)
        target.parent.mkdir(parents=True, exist_ok=True)
        raw = self._engine.raw_connection()
        try:
            dest = sqlite3.connect(str(target))
            try:
                raw.driver_connection.backup(dest)
            finally:
                dest.close()
        finally:
            raw.close()
        return target

    def close(self) -> None:
        """Dispose of the engine's connection pool."""
        self._engine.dispose()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _query(self, sql: str, params: dict | None = None) -> list[Row]:
        try:
            with self._engine.connect() as conn:
                return list(conn.execute(text(sql), params or {}).fetchall())
        except SQLAlchemyError as e:
            raise PersistenceError(f"Cannot read snapshot store {self._db_path}: {e}") from e

    def _fetch_one(self, sql: str, params: dict | None = None) -> Snapshot | None:
        rows = self._query(sql, params)
        return self._row_to_snapshot(rows[0]) if rows else None

    @staticmethod
    def _row_to_snapshot(row: Row) -> Snapshot:
        data = row._mapping
        try:
            return Snapshot(
                id=data["id"],
                timestamp=data["timestamp"],
                kind=data["type"],
                payload=json.loads(data["data_json"]),
                item_count=data["item_count"] or 0,
                checksum=data["checksum"] or "",
                connection_healthy=bool(data["connection_healthy"]),
                latency_ms=data["latency_ms"] if data["latency_ms"] is not None else 0,
            )
        except ValueError as e:
            raise PersistenceError(f"Corrupt snapshot row {data['id']}: {e}") from e


def _configure_sqlite(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=FULL")
    finally:
        cursor.close()
