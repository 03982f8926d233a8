"""Pydantic models for shadow-mirror configuration."""

from pathlib import Path

from pydantic import BaseModel, Field

from shadow_mirror.mirror.models import CollectionDef, MirrorSchema, default_schema


# ============================================================================
# Remote store profiles
# ============================================================================


class DatabaseProfile(BaseModel):
    """Remote store connection profile from shadow-mirror.toml."""

    url: str
    description: str = ""
    provider: str = "postgres"  # "postgres" or "supabase"
    db_password: str | None = None  # For [YOUR-PASSWORD] placeholder substitution
    key: str | None = None  # Supabase API key (inline)
    key_env: str | None = None  # Env var holding the Supabase API key
    jsonb_columns: list[str] = Field(default_factory=list)


# ============================================================================
# Pipeline settings
# ============================================================================


class MirrorSettings(BaseModel):
    """Local artifacts and per-call timeouts."""

    store_path: Path = Path("backups/shadow.db")
    export_path: Path = Path("public/shadow-latest.json")
    probe_collection: str | None = None  # defaults to guard.primary_collection
    probe_timeout_s: float = 5.0
    fetch_timeout_s: float = 30.0
    schema_version: str = "3.1.0"
    store_backup_every: int = 10  # 0 disables periodic SQLite backups


class GuardConfig(BaseModel):
    """Anomaly guard thresholds.

    Heuristics, not correctness requirements: tune per deployment.
    """

    primary_collection: str = "tasks"
    drop_ratio: float = 0.5
    wipe_floor: int = 5


class RetentionConfig(BaseModel):
    """Protected ring buffer settings."""

    keep_protected: int = 10
    high_water_mark: int = 1000
    window_days: int = 7


class RestoreConfig(BaseModel):
    """Remote tables consulted during restore."""

    identity_table: str = "profiles"
    identity_order_field: str = "created_at"
    tombstone_table: str = "tombstones"


class MirrorConfig(BaseModel):
    """Complete configuration, built once at process start.

    Passed explicitly into every component; nothing below the CLI reads the
    environment.
    """

    profiles: dict[str, DatabaseProfile] = Field(default_factory=dict)
    default_profile: str | None = None
    active_profile: str | None = None
    mirror: MirrorSettings = Field(default_factory=MirrorSettings)
    guard: GuardConfig = Field(default_factory=GuardConfig)
    retention: RetentionConfig = Field(default_factory=RetentionConfig)
    restore: RestoreConfig = Field(default_factory=RestoreConfig)
    collections: list[CollectionDef] = Field(default_factory=list)

    @property
    def mirror_schema(self) -> MirrorSchema:
        """Tracked collections, falling back to projects/groups/tasks."""
        if self.collections:
            return MirrorSchema(collections=self.collections)
        return default_schema()

    @property
    def probe_collection(self) -> str:
        return self.mirror.probe_collection or self.guard.primary_collection
