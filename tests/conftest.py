"""Shared fixtures: an in-memory remote store and sample configuration."""

import asyncio
from typing import Any

import pytest

from shadow_mirror.adapters.base import FOREIGN_KEY_VIOLATION, RemoteStoreError
from shadow_mirror.config.models import MirrorConfig, MirrorSettings
from shadow_mirror.store.snapshot_store import SnapshotStore

USER = "user-1"


class FakeRemoteStore:
    """Dict-backed ``RemoteStore`` with FK enforcement and failure injection.

    Args:
        tables: Initial rows per table.
        foreign_keys: ``{table: {field: referenced_table}}`` checked on upsert.
    """

    def __init__(
        self,
        tables: dict[str, list[dict]] | None = None,
        foreign_keys: dict[str, dict[str, str]] | None = None,
    ) -> None:
        self.tables: dict[str, dict[str, dict]] = {}
        for name, rows in (tables or {}).items():
            self.tables[name] = {str(r["id"]): dict(r) for r in rows}
        self.foreign_keys = foreign_keys or {}
        self.fail_select: set[str] = set()
        self.fail_upsert: set[str] = set()
        self.fail_count = False
        self.delay = 0.0
        self.upserts: list[tuple[str, dict]] = []
        self.closed = False

    def rows(self, table: str) -> list[dict]:
        return list(self.tables.get(table, {}).values())

    async def select(
        self,
        table: str,
        columns: str = "*",
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
    ) -> list[dict]:
        if self.delay:
            await asyncio.sleep(self.delay)
        if table in self.fail_select:
            raise RemoteStoreError(503, f"connection lost while reading {table}")

        rows = [dict(r) for r in self.rows(table)]
        if filters:
            rows = [r for r in rows if all(r.get(k) == v for k, v in filters.items())]
        if order_by:
            rows.sort(key=lambda r: str(r.get(order_by)))
        if columns != "*":
            wanted = [c.strip() for c in columns.split(",")]
            rows = [{c: r.get(c) for c in wanted} for r in rows]
        return rows

    async def count(self, table: str) -> int:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_count:
            raise RemoteStoreError(503, "could not connect to server")
        return len(self.tables.get(table, {}))

    async def upsert(self, table: str, data: dict, on_conflict: str = "id") -> dict:
        if table in self.fail_upsert:
            raise RemoteStoreError(500, f"permission denied for table {table}")

        for field, target in self.foreign_keys.get(table, {}).items():
            value = data.get(field)
            if value is not None and str(value) not in self.tables.get(target, {}):
                raise RemoteStoreError(
                    409,
                    f'insert or update on table "{table}" violates foreign key '
                    f'constraint "{table}_{field}_fkey": Key ({field})=({value}) '
                    f'is not present in table "{target}"',
                    code=FOREIGN_KEY_VIOLATION,
                )

        self.upserts.append((table, dict(data)))
        key = str(data[on_conflict])
        stored = {**self.tables.setdefault(table, {}).get(key, {}), **data}
        self.tables[table][key] = stored
        return dict(stored)

    async def delete(self, table: str, filters: dict[str, Any]) -> None:
        rows = self.tables.get(table, {})
        for key in [k for k, r in rows.items() if all(r.get(f) == v for f, v in filters.items())]:
            del rows[key]

    async def close(self) -> None:
        self.closed = True


# ------------------------------------------------------------------
# Sample data
# ------------------------------------------------------------------


def make_tasks(n: int, project_id: str | None = "p1", prefix: str = "t") -> list[dict]:
    return [
        {
            "id": f"{prefix}{i}",
            "user_id": USER,
            "title": f"Task {i}",
            "project_id": project_id,
            "parent_id": None,
            "is_deleted": False,
        }
        for i in range(n)
    ]


def sample_tables(task_count: int = 3) -> dict[str, list[dict]]:
    return {
        "projects": [{"id": "p1", "user_id": USER, "name": "Inbox", "is_deleted": False}],
        "groups": [
            {"id": "g1", "user_id": USER, "name": "Work", "parent_group_id": None},
        ],
        "tasks": make_tasks(task_count),
        "profiles": [
            {"id": USER, "created_at": "2025-01-01T00:00:00Z"},
        ],
        "tombstones": [],
    }


FOREIGN_KEYS = {
    "groups": {"parent_group_id": "groups"},
    "tasks": {"parent_id": "tasks", "project_id": "projects"},
}


@pytest.fixture
def remote() -> FakeRemoteStore:
    return FakeRemoteStore(sample_tables(), FOREIGN_KEYS)


@pytest.fixture
def config(tmp_path) -> MirrorConfig:
    return MirrorConfig(
        mirror=MirrorSettings(
            store_path=tmp_path / "backups" / "shadow.db",
            export_path=tmp_path / "public" / "shadow-latest.json",
            probe_timeout_s=1.0,
            fetch_timeout_s=1.0,
            store_backup_every=0,
        ),
    )


@pytest.fixture
def store(config):
    s = SnapshotStore(config.mirror.store_path)
    yield s
    s.close()
