"""Replay a snapshot back into the remote store.

Restore runs in five steps:

1. **Identity**: pick the owner of the restored rows (explicit argument,
   newest row of the remote identity table, or the owner recorded in the
   snapshot as a last resort).
2. **Filter**: drop soft-deleted rows and rows matching a tombstone fetched
   fresh from the remote store, so intentionally deleted data is not
   resurrected.  Skippable.
3. **Order**: referenced collections first, then breadth-first over each
   collection's self-reference (root groups before child groups, parent
   tasks before subtasks).  A row whose parent is not part of the restore
   set is detached to root level.
4. **Write**: one idempotent upsert per row keyed by its primary key.  A
   write rejected for a missing FK target is retried once with that
   reference nulled.
5. **Report**: per-collection tallies plus a decision per row.  A dry run
   produces the same decisions without writing anything.

A failed row is logged and counted; it never stops the rows or
collections after it.

Usage:
    from shadow_mirror.restore.engine import RestorationEngine

    engine = RestorationEngine(adapter, schema, config.restore)
    report = await engine.restore(snapshot, user_id="u1", dry_run=True)
"""

import logging
from collections import deque
from typing import Any

from shadow_mirror.adapters.base import RemoteStore, RemoteStoreError
from shadow_mirror.config.models import MirrorConfig, RestoreConfig
from shadow_mirror.errors import RestoreError
from shadow_mirror.mirror.models import (
    CollectionDef,
    MirrorSchema,
    Snapshot,
    TrackedRecord,
)
from shadow_mirror.restore.models import (
    CollectionTally,
    IdentitySource,
    RestoreDecision,
    RestoreReport,
)
from shadow_mirror.store.snapshot_store import SnapshotStore

logger = logging.getLogger(__name__)


class RestorationEngine:
    """Restores snapshots into a ``RemoteStore``.

    Args:
        adapter: Remote store to write into.
        schema: Tracked collections (FKs drive ordering and FK retries).
        config: Identity and tombstone table names.
    """

    def __init__(
        self,
        adapter: RemoteStore,
        schema: MirrorSchema,
        config: RestoreConfig | None = None,
    ) -> None:
        self._adapter = adapter
        self._schema = schema
        self._config = config or RestoreConfig()

    # ------------------------------------------------------------------
    # Identity resolution
    # ------------------------------------------------------------------

    async def resolve_identity(
        self,
        snapshot: Snapshot,
        user_id: str | None = None,
    ) -> tuple[str, IdentitySource]:
        """Determine the owner identity for restored rows.

        Raises:
            RestoreError: If no identity can be determined.
        """
        if user_id:
            return user_id, "argument"

        detected = await self._detect_remote_identity()
        if detected:
            logger.info(f"Found user in remote store: {detected}")
            return detected, "remote"

        for collection in self._schema.restore_order():
            for row in snapshot.payload.get(collection.name) or []:
                owner = row.get(collection.user_field)
                if owner:
                    logger.warning(
                        f"Using user_id from snapshot: {owner}. This may fail "
                        f"if the user no longer exists; pass an explicit user id."
                    )
                    return str(owner), "snapshot"

        raise RestoreError(
            "Could not detect a target user. Provide one explicitly "
            "(shadow-mirror restore --user-id <id>)."
        )

    async def _detect_remote_identity(self) -> str | None:
        table = self._config.identity_table
        try:
            rows = await self._adapter.select(table, "*")
        except Exception as e:
            logger.warning(f"Could not read identity table '{table}': {e}")
            return None
        if not rows:
            return None

        order_field = self._config.identity_order_field
        newest = max(rows, key=lambda r: str(r.get(order_field) or ""))
        return str(newest["id"]) if newest.get("id") else None

    # ------------------------------------------------------------------
    # Filtering
    # ------------------------------------------------------------------

    async def fetch_tombstones(self) -> set[tuple[str, str]]:
        """Read ``(entity_type, entity_id)`` pairs from the remote store.

        Raises:
            RestoreError: If tombstones cannot be read; restoring without
                them could resurrect deleted records.
        """
        table = self._config.tombstone_table
        try:
            rows = await self._adapter.select(table, "entity_type, entity_id")
        except Exception as e:
            raise RestoreError(
                f"Could not read tombstones from '{table}': {e}. "
                "Re-run with --skip-filter to restore without them."
            ) from e
        return {(str(r["entity_type"]), str(r["entity_id"])) for r in rows}

    def filter_collection(
        self,
        collection: CollectionDef,
        rows: list[dict],
        tombstones: set[tuple[str, str]],
    ) -> tuple[list[dict], list[RestoreDecision]]:
        """Split rows into those to restore and skip decisions for the rest."""
        kept: list[dict] = []
        skipped: list[RestoreDecision] = []

        for row in rows:
            record = TrackedRecord.from_row(row, collection)
            if record.is_deleted:
                skipped.append(RestoreDecision(
                    collection=collection.name,
                    record_id=record.id,
                    action="skip_deleted",
                    reason=f"{collection.deleted_field} is set in snapshot",
                ))
            elif (collection.entity_type, record.id) in tombstones:
                skipped.append(RestoreDecision(
                    collection=collection.name,
                    record_id=record.id,
                    action="skip_tombstoned",
                    reason="permanently deleted (tombstone)",
                ))
            else:
                kept.append(row)

        return kept, skipped

    # ------------------------------------------------------------------
    # Ordering
    # ------------------------------------------------------------------

    def order_collection(
        self,
        collection: CollectionDef,
        rows: list[dict],
    ) -> list[tuple[dict, list[str]]]:
        """Order rows breadth-first over the collection's self-reference.

        Returns:
            ``(row, detached_fields)`` pairs.  ``detached_fields`` names the
            self-reference when the parent is not in ``rows`` (or the row is
            part of a reference cycle); the row is then restored at root
            level.
        """
        self_ref = collection.self_ref
        if not self_ref:
            return [(row, []) for row in rows]

        pk = collection.pk
        present = {str(row[pk]) for row in rows}
        children: dict[str, list[dict]] = {}
        queue: deque[tuple[dict, list[str]]] = deque()

        for row in rows:
            parent = row.get(self_ref)
            if parent is None or parent == "":
                queue.append((row, []))
            elif str(parent) not in present or str(parent) == str(row[pk]):
                queue.append((row, [self_ref]))
            else:
                children.setdefault(str(parent), []).append(row)

        ordered: list[tuple[dict, list[str]]] = []
        visited: set[str] = set()
        while queue:
            row, detached = queue.popleft()
            row_id = str(row[pk])
            if row_id in visited:
                continue
            visited.add(row_id)
            ordered.append((row, detached))
            for child in children.pop(row_id, []):
                queue.append((child, []))

        # Whatever is left only reaches itself through a reference cycle
        for row in rows:
            if str(row[pk]) not in visited:
                visited.add(str(row[pk]))
                ordered.append((row, [self_ref]))

        return ordered

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    async def restore(
        self,
        snapshot: Snapshot,
        user_id: str | None = None,
        dry_run: bool = False,
        skip_filter: bool = False,
    ) -> RestoreReport:
        """Restore ``snapshot`` into the remote store.

        Args:
            snapshot: Snapshot to replay.
            user_id: Target owner; auto-detected when omitted.
            dry_run: Produce the decision trace without writing.
            skip_filter: Restore soft-deleted and tombstoned rows too.

        Returns:
            RestoreReport with per-collection tallies and decisions.

        Raises:
            RestoreError: If no target identity can be determined or the
                tombstones cannot be read.
        """
        target_user, source = await self.resolve_identity(snapshot, user_id)
        report = RestoreReport(
            snapshot_id=snapshot.id,
            snapshot_timestamp=snapshot.timestamp,
            target_user_id=target_user,
            identity_source=source,
            dry_run=dry_run,
            filtered=not skip_filter,
        )
        if source == "snapshot":
            report.warnings.append(
                f"Target user {target_user} taken from the snapshot; it may no longer exist"
            )

        tombstones = set() if skip_filter else await self.fetch_tombstones()

        for collection in self._schema.restore_order():
            rows = list(snapshot.payload.get(collection.name) or [])
            tally = CollectionTally()
            report.tallies[collection.name] = tally
            logger.info(f"Restoring {len(rows)} {collection.name}...")

            if skip_filter:
                kept = rows
            else:
                kept, skipped = self.filter_collection(collection, rows, tombstones)
                tally.skipped += len(skipped)
                report.decisions.extend(skipped)

            for row, detached in self.order_collection(collection, kept):
                decision = await self._restore_row(
                    collection, row, detached, target_user, dry_run, tally
                )
                report.decisions.append(decision)

        return report

    async def _restore_row(
        self,
        collection: CollectionDef,
        row: dict,
        detached: list[str],
        target_user: str,
        dry_run: bool,
        tally: CollectionTally,
    ) -> RestoreDecision:
        record_id = str(row[collection.pk])
        data = self._prepare_row(collection, row, detached, target_user)
        reason = f"detached {', '.join(detached)} (parent not in snapshot)" if detached else ""

        if dry_run:
            tally.restored += 1
            return RestoreDecision(
                collection=collection.name,
                record_id=record_id,
                action="restore",
                reason=reason or "would restore",
                detached=list(detached),
            )

        try:
            await self._adapter.upsert(collection.name, data, on_conflict=collection.pk)
        except RemoteStoreError as e:
            if not e.is_foreign_key_violation:
                return self._fail(collection, record_id, str(e), tally)
            return await self._retry_without_refs(collection, data, record_id, detached, e, tally)
        except Exception as e:
            return self._fail(collection, record_id, str(e), tally)

        tally.restored += 1
        return RestoreDecision(
            collection=collection.name,
            record_id=record_id,
            action="restore",
            reason=reason,
            detached=list(detached),
        )

    async def _retry_without_refs(
        self,
        collection: CollectionDef,
        data: dict,
        record_id: str,
        detached: list[str],
        error: RemoteStoreError,
        tally: CollectionTally,
    ) -> RestoreDecision:
        """Retry once with the offending FK reference(s) nulled."""
        candidates = [f for f in collection.fk_fields if data.get(f) is not None]
        named = [f for f in candidates if _names_fk_field(error.message, collection.name, f)]
        to_null = named or candidates
        if not to_null:
            return self._fail(collection, record_id, str(error), tally)

        logger.warning(
            f"{collection.name} {record_id} references a missing row via "
            f"{', '.join(to_null)}; restoring without it"
        )
        retry = dict(data)
        for field in to_null:
            retry[field] = None

        try:
            await self._adapter.upsert(collection.name, retry, on_conflict=collection.pk)
        except Exception as e:
            return self._fail(collection, record_id, str(e), tally)

        tally.restored += 1
        tally.degraded += 1
        return RestoreDecision(
            collection=collection.name,
            record_id=record_id,
            action="restore",
            reason=f"restored without {', '.join(to_null)} (missing reference)",
            detached=list(detached) + to_null,
        )

    @staticmethod
    def _prepare_row(
        collection: CollectionDef,
        row: dict,
        detached: list[str],
        target_user: str,
    ) -> dict[str, Any]:
        data = {k: v for k, v in row.items() if not k.startswith("_")}
        if collection.user_field:
            data[collection.user_field] = target_user
        for field in detached:
            data[field] = None
        return data

    @staticmethod
    def _fail(
        collection: CollectionDef,
        record_id: str,
        reason: str,
        tally: CollectionTally,
    ) -> RestoreDecision:
        logger.error(f"Failed to restore {collection.name} {record_id}: {reason}")
        tally.failed += 1
        return RestoreDecision(
            collection=collection.name,
            record_id=record_id,
            action="failed",
            reason=reason,
        )


def load_snapshot(store: SnapshotStore, snapshot_id: int | None = None) -> Snapshot:
    """Load the requested snapshot, defaulting to the latest known-good one.

    Raises:
        RestoreError: If the snapshot does not exist.
    """
    if snapshot_id is not None:
        snapshot = store.get(snapshot_id)
        if snapshot is None:
            raise RestoreError(f"Snapshot {snapshot_id} not found in {store.path}")
        return snapshot

    snapshot = store.latest_good()
    if snapshot is None:
        raise RestoreError(f"No known-good snapshots found in {store.path}")
    return snapshot


async def restore_snapshot(
    adapter: RemoteStore,
    store: SnapshotStore,
    config: MirrorConfig,
    snapshot_id: int | None = None,
    user_id: str | None = None,
    dry_run: bool = False,
    skip_filter: bool = False,
) -> RestoreReport:
    """Load a snapshot from ``store`` and restore it through ``adapter``.

    Example:
        report = await restore_snapshot(adapter, store, config, dry_run=True)
        for name, tally in report.tallies.items():
            print(name, tally.restored, tally.failed)
    """
    snapshot = load_snapshot(store, snapshot_id)
    engine = RestorationEngine(adapter, config.mirror_schema, config.restore)
    return await engine.restore(
        snapshot, user_id=user_id, dry_run=dry_run, skip_filter=skip_filter
    )


def _names_fk_field(message: str, table: str, field: str) -> bool:
    """True when a Postgres FK violation message points at ``field``.

    Matches the key detail ``Key (<field>)=`` or the default constraint
    name ``<table>_<field>_fkey``.
    """
    return f"({field})=" in message or f'"{table}_{field}_fkey"' in message
