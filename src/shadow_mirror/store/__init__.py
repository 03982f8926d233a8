"""Local snapshot persistence: SQLite store, checksums and retention.

Usage:
    from shadow_mirror.store import SnapshotStore, compute_checksum, prune
"""

from shadow_mirror.store.checksum import compute_checksum, verify_checksum
from shadow_mirror.store.retention import PruneResult, prune, prune_with_config
from shadow_mirror.store.snapshot_store import SnapshotStore, snapshot_from_bundle

__all__ = [
    "SnapshotStore",
    "snapshot_from_bundle",
    "compute_checksum",
    "verify_checksum",
    "PruneResult",
    "prune",
    "prune_with_config",
]
