"""Snapshot restoration into the remote store.

Usage:
    from shadow_mirror.restore import restore_snapshot

    report = await restore_snapshot(adapter, store, config, dry_run=True)
"""

from shadow_mirror.restore.engine import RestorationEngine, load_snapshot, restore_snapshot
from shadow_mirror.restore.models import CollectionTally, RestoreDecision, RestoreReport

__all__ = [
    "RestorationEngine",
    "load_snapshot",
    "restore_snapshot",
    "CollectionTally",
    "RestoreDecision",
    "RestoreReport",
]
