"""One capture cycle: probe, capture, guard, persist, export, prune.

Stages run strictly in order and a later stage never runs after an earlier
one failed or aborted.  Every abort happens before the snapshot store and
the export file are touched, so an aborted cycle leaves both exactly as
they were.

Usage:
    from shadow_mirror.mirror.pipeline import run_cycle

    result = await run_cycle(adapter, store, config)
    if result.status != "ok":
        print(result.reason)
"""

import logging
from typing import Literal

from pydantic import BaseModel, Field

from shadow_mirror.adapters.base import RemoteStore
from shadow_mirror.config.models import MirrorConfig
from shadow_mirror.errors import CaptureError, PersistenceError
from shadow_mirror.mirror.capture import capture
from shadow_mirror.mirror.export import export_latest
from shadow_mirror.mirror.guard import evaluate
from shadow_mirror.mirror.health import probe
from shadow_mirror.mirror.models import GuardVerdict, HealthReport
from shadow_mirror.store.retention import PruneResult, prune_with_config
from shadow_mirror.store.snapshot_store import SnapshotStore, snapshot_from_bundle

logger = logging.getLogger(__name__)

CycleStatus = Literal["ok", "unhealthy", "capture_failed", "suspicious", "persist_failed"]


class CycleResult(BaseModel):
    """Outcome of one capture cycle.

    Attributes:
        status: ``ok`` or the gate that stopped the cycle.
        reason: Human readable explanation for operators.
        health: Health probe result (always set).
        verdict: Anomaly guard verdict (set once capture succeeded).
        snapshot_id: Id of the appended snapshot on success.
        counts: Per-collection counts of the capture.
        checksum: Checksum of the stored snapshot.
        prune: Retention pass result (never affects ``status``).
        store_backup: Path of the periodic SQLite backup, if one was made.
    """

    status: CycleStatus
    reason: str = ""
    health: HealthReport | None = None
    verdict: GuardVerdict | None = None
    snapshot_id: int | None = None
    counts: dict[str, int] = Field(default_factory=dict)
    checksum: str | None = None
    prune: PruneResult | None = None
    store_backup: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"


async def run_cycle(
    adapter: RemoteStore,
    store: SnapshotStore,
    config: MirrorConfig,
    override_guard: bool = False,
    now_ms: int | None = None,
) -> CycleResult:
    """Run one backup cycle against the remote store.

    Args:
        adapter: Remote store adapter.
        store: Local snapshot store.
        config: Mirror configuration.
        override_guard: Persist even when the anomaly guard trips (the
            verdict is still logged and returned).
        now_ms: Capture timestamp in ms (defaults to wall clock).

    Returns:
        CycleResult describing how far the cycle got.
    """
    schema = config.mirror_schema
    settings = config.mirror

    # 1. Health gate
    health = await probe(adapter, config.probe_collection, settings.probe_timeout_s)
    if not health.healthy:
        logger.error("BLOCKED: remote store unreachable, skipping this cycle")
        return CycleResult(
            status="unhealthy",
            reason="Remote store unreachable; last good snapshot preserved",
            health=health,
        )
    logger.info(f"Remote store healthy (latency: {health.latency_ms}ms)")

    # 2. Capture (all-or-nothing)
    try:
        bundle = await capture(
            adapter,
            schema,
            health,
            schema_version=settings.schema_version,
            timeout=settings.fetch_timeout_s,
            timestamp=now_ms,
        )
    except CaptureError as e:
        logger.error(f"Capture failed: {e}")
        return CycleResult(status="capture_failed", reason=str(e), health=health)

    counts = bundle.counts

    # 3. Anomaly guard against the last known-good snapshot
    try:
        last_good = store.latest_good()
    except PersistenceError as e:
        logger.error(f"Cannot read last good snapshot: {e}")
        return CycleResult(
            status="persist_failed",
            reason=str(e),
            health=health,
            counts=counts,
        )
    previous_counts = last_good.counts(schema) if last_good else None
    verdict = evaluate(counts, previous_counts, config.guard)
    if verdict.suspicious:
        if not override_guard:
            logger.error(f"BLOCKED: {verdict.reason}")
            return CycleResult(
                status="suspicious",
                reason=verdict.reason,
                health=health,
                verdict=verdict,
                counts=counts,
            )
        logger.warning(f"Anomaly guard overridden by operator: {verdict.reason}")

    # 4. Persist, then export
    snapshot = snapshot_from_bundle(bundle, schema)
    try:
        saved = store.append(snapshot)
        export_latest(bundle, snapshot.checksum, settings.export_path)
    except PersistenceError as e:
        logger.error(f"Persist failed: {e}")
        return CycleResult(
            status="persist_failed",
            reason=str(e),
            health=health,
            verdict=verdict,
            counts=counts,
        )

    logger.info(
        "Snapshot saved: "
        + ", ".join(f"{n} {name}" for name, n in counts.items())
    )

    # 5. Best-effort maintenance
    prune_result = prune_with_config(store, config.retention, now_ms=now_ms)
    store_backup = _periodic_store_backup(store, settings.store_backup_every, bundle.meta.timestamp)

    return CycleResult(
        status="ok",
        reason="Snapshot saved",
        health=health,
        verdict=verdict,
        snapshot_id=saved.id,
        counts=counts,
        checksum=saved.checksum,
        prune=prune_result,
        store_backup=store_backup,
    )


def _periodic_store_backup(store: SnapshotStore, every: int, timestamp: int) -> str | None:
    """Copy the SQLite file every ``every`` snapshots; failures are only logged."""
    if every <= 0:
        return None
    try:
        if store.count_all() % every != 0:
            return None
        target = store.path.parent / f"{store.path.stem}-{timestamp}.db.backup"
        store.backup_to(target)
    except Exception as e:
        logger.warning(f"SQLite backup failed: {e}")
        return None
    logger.info(f"SQLite backup created: {target.name}")
    return str(target)
