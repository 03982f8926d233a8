"""Async Supabase remote store adapter.

Provides ``AsyncSupabaseAdapter``, an async implementation of the
``RemoteStore`` protocol using the supabase-py async client.

The client is initialized lazily on first use with an ``asyncio.Lock``
to ensure safe initialization.

Usage:
    from shadow_mirror.adapters.supabase import AsyncSupabaseAdapter

    adapter = AsyncSupabaseAdapter(
        url="https://xyzproject.supabase.co",
        key="eyJ...",
    )

    rows = await adapter.select("tasks", "*")
    await adapter.close()
"""

import asyncio
from typing import Any

from postgrest.exceptions import APIError
from supabase import AsyncClient, acreate_client

from shadow_mirror.adapters.base import RemoteStoreError

# PostgREST default for the max-rows setting
DEFAULT_PAGE_SIZE = 1000


def to_remote_error(exc: Exception) -> RemoteStoreError:
    """Translate a PostgREST ``APIError`` (or transport error) into ``RemoteStoreError``."""
    if isinstance(exc, APIError):
        code = exc.code
        message = exc.message or str(exc)
        if code and code.startswith("23"):
            return RemoteStoreError(409, message, code)
        if code and code.startswith("PGRST"):
            return RemoteStoreError(400, message, code)
        return RemoteStoreError(500, message, code)
    return RemoteStoreError(503, str(exc))


class AsyncSupabaseAdapter:
    """Async Supabase implementation of the ``RemoteStore`` protocol.

    Wraps the Supabase Python async client to match the ``RemoteStore``
    interface.  The client is initialized lazily on first call using
    ``acreate_client`` protected by an ``asyncio.Lock``.

    Use a service-role key: an anon key is subject to row level security
    and may produce an empty (and therefore guard-blocked) capture.

    Args:
        url: Supabase project URL.
        key: Supabase API key (service role or anon).
        page_size: Rows per request; keep at or below the project's
            ``max-rows`` setting.
    """

    def __init__(self, url: str, key: str, page_size: int = DEFAULT_PAGE_SIZE) -> None:
        self._url: str = url
        self._key: str = key
        self._page_size: int = page_size
        self._client: AsyncClient | None = None
        self._lock: asyncio.Lock = asyncio.Lock()

    async def _get_client(self) -> AsyncClient:
        """Get or create the async Supabase client.

        Uses an ``asyncio.Lock`` to ensure the client is created exactly
        once, even under concurrent access.
        """
        if self._client is None:
            async with self._lock:
                # Double-check after acquiring lock
                if self._client is None:
                    self._client = await acreate_client(self._url, self._key)
        return self._client

    # ------------------------------------------------------------------
    # RemoteStore Methods
    # ------------------------------------------------------------------

    async def select(
        self,
        table: str,
        columns: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
    ) -> list[dict]:
        """Select every matching row, paging past the PostgREST ``max-rows`` cap.

        Pages are requested with ``range`` until a short page comes back.
        Pass ``order_by`` (capture passes the primary key) for stable pages.
        """
        client = await self._get_client()
        rows: list[dict] = []
        start = 0

        while True:
            query = client.table(table).select(columns)
            if filters:
                for key, value in filters.items():
                    query = query.eq(key, value)
            if order_by:
                query = query.order(order_by)
            query = query.range(start, start + self._page_size - 1)

            try:
                result = await query.execute()
            except Exception as e:
                raise to_remote_error(e) from e

            page = result.data or []
            rows.extend(page)
            if len(page) < self._page_size:
                return rows
            start += self._page_size

    async def count(self, table: str) -> int:
        """Return an exact row count using a head-only request."""
        client = await self._get_client()
        try:
            result = await (
                client.table(table).select("id", count="exact", head=True).execute()
            )
        except Exception as e:
            raise to_remote_error(e) from e
        return result.count or 0

    async def upsert(self, table: str, data: dict, on_conflict: str = "id") -> dict:
        """Insert or update a row keyed by ``on_conflict``.

        Filters out metadata fields (starting with ``_``) before writing.
        """
        client = await self._get_client()
        clean_data = {k: v for k, v in data.items() if not k.startswith("_")}
        try:
            result = await (
                client.table(table).upsert(clean_data, on_conflict=on_conflict).execute()
            )
        except Exception as e:
            raise to_remote_error(e) from e
        return result.data[0] if result.data else clean_data

    async def delete(self, table: str, filters: dict[str, Any]) -> None:
        """Delete rows matching filters."""
        client = await self._get_client()
        query = client.table(table).delete()

        for key, value in filters.items():
            query = query.eq(key, value)

        try:
            await query.execute()
        except Exception as e:
            raise to_remote_error(e) from e

    async def close(self) -> None:
        """Release the Supabase async client.

        If the client was never initialized (no calls were made),
        this is a no-op.
        """
        if self._client is not None:
            await self._client.postgrest.aclose()
            self._client = None
