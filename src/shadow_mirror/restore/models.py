"""Restore report models."""

from typing import Literal

from pydantic import BaseModel, Field

RestoreAction = Literal["restore", "skip_deleted", "skip_tombstoned", "failed"]
IdentitySource = Literal["argument", "remote", "snapshot"]


class RestoreDecision(BaseModel):
    """What happened (or would happen, in a dry run) to one record."""

    collection: str
    record_id: str
    action: RestoreAction
    reason: str = ""
    detached: list[str] = Field(default_factory=list)  # FK fields nulled


class CollectionTally(BaseModel):
    """Per-collection counts.

    ``degraded`` counts records that were restored only after an FK
    reference was nulled; they are also counted in ``restored``.
    """

    restored: int = 0
    skipped: int = 0
    failed: int = 0
    degraded: int = 0


class RestoreReport(BaseModel):
    """Result of one restore run."""

    snapshot_id: int | None = None
    snapshot_timestamp: int = 0
    target_user_id: str
    identity_source: IdentitySource
    dry_run: bool = False
    filtered: bool = True
    tallies: dict[str, CollectionTally] = Field(default_factory=dict)
    decisions: list[RestoreDecision] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @property
    def total_restored(self) -> int:
        return sum(t.restored for t in self.tallies.values())

    @property
    def total_skipped(self) -> int:
        return sum(t.skipped for t in self.tallies.values())

    @property
    def total_failed(self) -> int:
        return sum(t.failed for t in self.tallies.values())

    @property
    def ok(self) -> bool:
        return self.total_failed == 0
