"""Remote store protocol definition.

Defines the ``RemoteStore`` Protocol that all remote adapters must implement
and the ``RemoteStoreError`` every adapter raises on failure.
All methods are ``async def`` -- the remote side is always network I/O.

Usage:
    from shadow_mirror.adapters.base import RemoteStore

    async def do_work(store: RemoteStore) -> None:
        rows = await store.select("tasks", "*")
        total = await store.count("tasks")
        await store.upsert("tasks", {"id": "t1", "title": "Write docs"})
        await store.close()
"""

from typing import Any, Protocol

# SQLSTATE for foreign_key_violation
FOREIGN_KEY_VIOLATION = "23503"


class RemoteStoreError(Exception):
    """Typed failure raised by remote adapters.

    Attributes:
        status: HTTP-like status code (``409`` for constraint conflicts,
            ``503`` for unreachable store, ``500`` otherwise).
        message: Human readable error message from the backend.
        code: Backend error code when available (PostgreSQL SQLSTATE).
    """

    def __init__(self, status: int, message: str, code: str | None = None) -> None:
        self.status = status
        self.message = message
        self.code = code
        super().__init__(f"[{status}] {message}")

    @property
    def is_foreign_key_violation(self) -> bool:
        """True when the write was rejected by a missing FK reference."""
        if self.code == FOREIGN_KEY_VIOLATION:
            return True
        return "foreign key" in self.message.lower()


class RemoteStore(Protocol):
    """Remote store interface that all adapters must implement.

    The mirror only ever reads from the remote store (capture, health probe,
    tombstone fetch) or upserts into it (restore).
    """

    async def select(
        self,
        table: str,
        columns: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
    ) -> list[dict]:
        """Select rows from table.

        Args:
            table: Table name.
            columns: Comma-separated column names, or ``"*"``.
            filters: Optional dict of field=value filters (all must match via AND).
            order_by: Optional column name to sort by.

        Returns:
            List of dicts, one per row.  Empty list if no matches.

        Raises:
            RemoteStoreError: If the query fails.
        """
        ...

    async def count(self, table: str) -> int:
        """Return the number of rows in table.

        Used by the health probe as the cheapest possible round trip.

        Raises:
            RemoteStoreError: If the query fails.
        """
        ...

    async def upsert(self, table: str, data: dict, on_conflict: str = "id") -> dict:
        """Insert a row, or update it in place when ``on_conflict`` collides.

        Args:
            table: Table name.
            data: Dict of field=value pairs.
            on_conflict: Column whose collision turns the insert into an update.

        Returns:
            Dict representing the stored row.

        Raises:
            RemoteStoreError: On constraint violation or backend failure.
        """
        ...

    async def delete(self, table: str, filters: dict[str, Any]) -> None:
        """Delete rows matching filters (all must match via AND)."""
        ...

    async def close(self) -> None:
        """Close connections and clean up resources."""
        ...
