"""Tests for the remote store adapters and error mapping."""

import asyncio
import inspect
from unittest.mock import AsyncMock, MagicMock, call, patch

import pytest
from sqlalchemy.exc import DBAPIError, OperationalError

from shadow_mirror.adapters.base import (
    FOREIGN_KEY_VIOLATION,
    RemoteStore,
    RemoteStoreError,
)
from shadow_mirror.adapters.postgres import (
    AsyncPostgresAdapter,
    normalize_url,
    to_remote_error,
)


class _PgError(Exception):
    """Stand-in for an asyncpg exception carrying a SQLSTATE."""

    def __init__(self, message: str, sqlstate: str | None = None) -> None:
        super().__init__(message)
        self.sqlstate = sqlstate


# ============================================================================
# Test: RemoteStore Protocol and RemoteStoreError
# ============================================================================


class TestRemoteStoreProtocol:
    """Verify the RemoteStore Protocol is fully async."""

    @pytest.mark.parametrize("method", ["select", "count", "upsert", "delete", "close"])
    def test_protocol_methods_are_async(self, method):
        assert inspect.iscoroutinefunction(getattr(RemoteStore, method))

    @pytest.mark.parametrize("method", ["select", "count", "upsert", "delete", "close"])
    def test_postgres_adapter_methods_are_async(self, method):
        assert inspect.iscoroutinefunction(getattr(AsyncPostgresAdapter, method))


class TestRemoteStoreError:
    """Verify FK violation classification."""

    def test_fk_by_sqlstate(self):
        err = RemoteStoreError(409, "violates constraint", FOREIGN_KEY_VIOLATION)
        assert err.is_foreign_key_violation

    def test_fk_by_message(self):
        err = RemoteStoreError(409, 'violates Foreign Key constraint "x"')
        assert err.is_foreign_key_violation

    def test_unique_violation_is_not_fk(self):
        err = RemoteStoreError(409, "duplicate key value", "23505")
        assert not err.is_foreign_key_violation

    def test_str_includes_status(self):
        assert str(RemoteStoreError(503, "down")) == "[503] down"


# ============================================================================
# Test: AsyncPostgresAdapter
# ============================================================================


class TestNormalizeUrl:
    """Verify URL scheme normalization."""

    def test_postgres_alias(self):
        assert normalize_url("postgres://u:p@h/db") == "postgresql+asyncpg://u:p@h/db"

    def test_postgresql(self):
        assert normalize_url("postgresql://u:p@h/db") == "postgresql+asyncpg://u:p@h/db"

    def test_already_asyncpg(self):
        url = "postgresql+asyncpg://u:p@h/db"
        assert normalize_url(url) == url


class TestToRemoteError:
    """Verify SQLAlchemy errors map to RemoteStoreError statuses."""

    def test_fk_violation_maps_to_409(self):
        exc = DBAPIError("INSERT", {}, _PgError("fk failed", FOREIGN_KEY_VIOLATION))
        err = to_remote_error(exc)

        assert err.status == 409
        assert err.code == FOREIGN_KEY_VIOLATION
        assert err.is_foreign_key_violation

    def test_invalidated_connection_maps_to_503(self):
        exc = OperationalError(
            "SELECT 1", {}, _PgError("server closed"), connection_invalidated=True
        )
        assert to_remote_error(exc).status == 503

    def test_os_error_maps_to_503(self):
        assert to_remote_error(ConnectionRefusedError("refused")).status == 503

    def test_other_errors_map_to_500(self):
        exc = DBAPIError("SELECT", {}, _PgError("syntax error", "42601"))
        assert to_remote_error(exc).status == 500

    def test_remote_store_error_passes_through(self):
        err = RemoteStoreError(409, "x")
        assert to_remote_error(err) is err


class TestBuildUpsert:
    """Verify the generated INSERT ... ON CONFLICT statement."""

    @pytest.fixture
    def adapter(self):
        return AsyncPostgresAdapter(
            "postgresql://u:p@localhost/db", jsonb_columns=["position_json"]
        )

    def test_on_conflict_do_update(self, adapter):
        query, params = adapter._build_upsert(
            "tasks", {"id": "t1", "title": "A", "is_deleted": False}, "id"
        )
        sql = str(query)

        assert "INSERT INTO tasks (id, title, is_deleted)" in sql
        assert "ON CONFLICT (id) DO UPDATE SET title = EXCLUDED.title" in sql
        assert "is_deleted = EXCLUDED.is_deleted" in sql
        assert "RETURNING *" in sql
        assert params == {"id": "t1", "title": "A", "is_deleted": False}

    def test_key_only_row_does_nothing(self, adapter):
        query, _ = adapter._build_upsert("tasks", {"id": "t1"}, "id")

        assert "ON CONFLICT (id) DO NOTHING" in str(query)

    def test_metadata_fields_stripped(self, adapter):
        query, params = adapter._build_upsert(
            "tasks", {"id": "t1", "_synced": True, "title": "A"}, "id"
        )

        assert "_synced" not in str(query)
        assert "_synced" not in params

    def test_jsonb_columns_cast_and_serialized(self, adapter):
        query, params = adapter._build_upsert(
            "tasks", {"id": "t1", "position_json": [1, 2]}, "id"
        )

        assert "CAST(:position_json AS jsonb)" in str(query)
        assert params["position_json"] == "[1, 2]"

    def test_dict_values_serialized(self, adapter):
        _, params = adapter._build_upsert("tasks", {"id": "t1", "meta": {"a": 1}}, "id")

        assert params["meta"] == '{"a": 1}'


class TestSerializeRow:
    """Verify UUID/datetime values come back as JSON-friendly types."""

    def test_uuid_and_datetime(self):
        from datetime import datetime, timezone
        from uuid import UUID

        adapter = AsyncPostgresAdapter("postgresql://u:p@localhost/db")
        row = adapter._serialize_row({
            "id": UUID("12345678-1234-5678-1234-567812345678"),
            "created_at": datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc),
            "title": "x",
        })

        assert row == {
            "id": "12345678-1234-5678-1234-567812345678",
            "created_at": "2025-01-02T03:04:05+00:00",
            "title": "x",
        }


# ============================================================================
# Test: AsyncSupabaseAdapter
# ============================================================================


class TestSupabaseAdapter:
    """Verify lazy client creation and error mapping."""

    @pytest.fixture(autouse=True)
    def _require_supabase(self):
        pytest.importorskip("supabase")

    async def test_client_created_once_under_concurrency(self):
        from shadow_mirror.adapters.supabase import AsyncSupabaseAdapter

        client = MagicMock()
        with patch(
            "shadow_mirror.adapters.supabase.acreate_client",
            new=AsyncMock(return_value=client),
        ) as mock_create:
            adapter = AsyncSupabaseAdapter(url="https://x.supabase.co", key="k")
            results = await asyncio.gather(*(adapter._get_client() for _ in range(5)))

        assert mock_create.await_count == 1
        assert all(r is client for r in results)

    @staticmethod
    def _paged_adapter(pages: list[list[dict]], page_size: int):
        from shadow_mirror.adapters.supabase import AsyncSupabaseAdapter

        query = MagicMock()
        query.select.return_value = query
        query.eq.return_value = query
        query.order.return_value = query
        query.range.return_value = query
        query.execute = AsyncMock(side_effect=[MagicMock(data=page) for page in pages])
        client = MagicMock()
        client.table.return_value = query

        adapter = AsyncSupabaseAdapter(url="https://x.supabase.co", key="k", page_size=page_size)
        adapter._client = client
        return adapter, query

    async def test_select_pages_past_max_rows(self):
        adapter, query = self._paged_adapter(
            [[{"id": "t0"}, {"id": "t1"}], [{"id": "t2"}]], page_size=2
        )

        rows = await adapter.select("tasks", "*", order_by="id")

        assert [r["id"] for r in rows] == ["t0", "t1", "t2"]
        assert query.range.call_args_list == [call(0, 1), call(2, 3)]
        query.order.assert_called_with("id")

    async def test_select_stops_on_empty_page(self):
        adapter, query = self._paged_adapter(
            [[{"id": "t0"}, {"id": "t1"}], [{"id": "t2"}, {"id": "t3"}], []], page_size=2
        )

        rows = await adapter.select("tasks", "*", order_by="id")

        assert len(rows) == 4
        assert query.execute.await_count == 3

    def test_api_error_fk_maps_to_409(self):
        from postgrest.exceptions import APIError

        from shadow_mirror.adapters.supabase import to_remote_error as sb_error

        err = sb_error(APIError({"message": "violates foreign key", "code": "23503"}))

        assert err.status == 409
        assert err.is_foreign_key_violation

    def test_api_error_pgrst_maps_to_400(self):
        from postgrest.exceptions import APIError

        from shadow_mirror.adapters.supabase import to_remote_error as sb_error

        err = sb_error(APIError({"message": "bad column", "code": "PGRST204"}))

        assert err.status == 400

    def test_transport_error_maps_to_503(self):
        from shadow_mirror.adapters.supabase import to_remote_error as sb_error

        assert sb_error(ConnectionError("dns failure")).status == 503
