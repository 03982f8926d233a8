"""shadow-mirror: continuous local backup and recovery for a remote task store.

Captures the remote collections on a schedule into an append-only SQLite
history plus an atomically replaced JSON export, refuses to overwrite good
backups with suspicious ones, and restores a chosen snapshot back into the
remote store.

Usage:
    from shadow_mirror import load_config, select_profile, get_adapter
    from shadow_mirror import SnapshotStore, run_cycle, restore_snapshot
"""

__version__ = "0.1.0"

# Adapters
from shadow_mirror.adapters.base import RemoteStore, RemoteStoreError
from shadow_mirror.adapters.postgres import AsyncPostgresAdapter

# Config
from shadow_mirror.config.loader import load_config
from shadow_mirror.config.models import DatabaseProfile, MirrorConfig

# Errors
from shadow_mirror.errors import (
    CaptureError,
    ConfigError,
    CycleLockedError,
    PersistenceError,
    ProfileNotFoundError,
    RestoreError,
    ShadowMirrorError,
)

# Factory
from shadow_mirror.factory import get_adapter, resolve_url, select_profile

# Pipeline
from shadow_mirror.mirror.models import CollectionDef, ForeignKey, MirrorSchema, Snapshot
from shadow_mirror.mirror.pipeline import CycleResult, run_cycle

# Store and restore
from shadow_mirror.restore.engine import restore_snapshot
from shadow_mirror.store.snapshot_store import SnapshotStore

__all__ = [
    # Adapters
    "RemoteStore",
    "RemoteStoreError",
    "AsyncPostgresAdapter",
    # Config
    "load_config",
    "DatabaseProfile",
    "MirrorConfig",
    # Errors
    "ShadowMirrorError",
    "ConfigError",
    "ProfileNotFoundError",
    "CaptureError",
    "PersistenceError",
    "RestoreError",
    "CycleLockedError",
    # Factory
    "get_adapter",
    "select_profile",
    "resolve_url",
    # Pipeline
    "CollectionDef",
    "ForeignKey",
    "MirrorSchema",
    "Snapshot",
    "CycleResult",
    "run_cycle",
    # Store and restore
    "SnapshotStore",
    "restore_snapshot",
]

# Optional: AsyncSupabaseAdapter (only available with supabase extra)
try:
    from shadow_mirror.adapters.supabase import AsyncSupabaseAdapter

    __all__.append("AsyncSupabaseAdapter")
except ImportError:
    # supabase extra not installed -- AsyncSupabaseAdapter unavailable
    pass
