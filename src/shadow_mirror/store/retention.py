"""Protected ring buffer retention.

Pruning only starts once the store grows past a high-water mark, and it
never deletes one of the ``keep_protected`` most recent known-good
snapshots, however old.  Failures are logged and reported, never raised.
"""

import logging
import time

from pydantic import BaseModel

from shadow_mirror.config.models import RetentionConfig
from shadow_mirror.store.snapshot_store import SnapshotStore

logger = logging.getLogger(__name__)

DAY_MS = 24 * 60 * 60 * 1000


class PruneResult(BaseModel):
    """Outcome of one pruning pass."""

    ran: bool = False
    deleted: int = 0
    protected: int = 0
    total_before: int = 0
    error: str | None = None


def prune(
    store: SnapshotStore,
    keep_protected: int = 10,
    high_water_mark: int = 1000,
    window_days: int = 7,
    now_ms: int | None = None,
) -> PruneResult:
    """Delete old, unprotected snapshots once the store passes its high-water mark.

    Args:
        store: Snapshot store to prune.
        keep_protected: Number of most recent known-good snapshots that are
            always kept.
        high_water_mark: Pruning only runs when the row count exceeds this.
        window_days: Rows younger than this are never deleted.
        now_ms: Current time in ms (defaults to wall clock).

    Returns:
        PruneResult; ``error`` is set instead of raising on failure.
    """
    result = PruneResult()
    try:
        total = store.count_all()
        result.total_before = total
        if total <= high_water_mark:
            return result

        protected_ids = store.protected_ids(keep_protected)
        result.protected = len(protected_ids)
        if not protected_ids:
            # Nothing known-good to anchor on: keep everything
            logger.warning("No known-good snapshots to protect; skipping prune")
            return result

        now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
        cutoff = now_ms - window_days * DAY_MS

        result.ran = True
        result.deleted = store.delete_older_than(cutoff, protected_ids)
        if result.deleted:
            logger.info(
                f"Pruned {result.deleted} old snapshots "
                f"(kept {result.protected} protected)"
            )
    except Exception as e:
        logger.warning(f"Prune error: {e}")
        result.error = str(e)

    return result


def prune_with_config(
    store: SnapshotStore,
    config: RetentionConfig,
    now_ms: int | None = None,
) -> PruneResult:
    """``prune`` driven by a ``RetentionConfig``."""
    return prune(
        store,
        keep_protected=config.keep_protected,
        high_water_mark=config.high_water_mark,
        window_days=config.window_days,
        now_ms=now_ms,
    )
