"""Mirror schema and snapshot models.

Collections declare their identity, ownership, soft-delete and FK fields;
the capture, checksum and restore code is driven entirely by that
declaration.

Usage:
    from shadow_mirror.mirror.models import MirrorSchema, CollectionDef, ForeignKey

    schema = MirrorSchema(collections=[
        CollectionDef(name="folders", entity_type="folder",
                      self_ref="parent_folder_id"),
        CollectionDef(name="notes", entity_type="note",
                      refs=[ForeignKey(table="folders", field="folder_id")]),
    ])
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ForeignKey(BaseModel):
    """Reference from a collection field to another collection."""

    table: str          # referenced collection name
    field: str          # FK column in this collection


class CollectionDef(BaseModel):
    """Definition of a tracked collection for capture and restore."""

    name: str                                   # remote table name
    entity_type: str                            # tombstone entity_type value
    pk: str = "id"                              # stable identity column
    user_field: str = "user_id"                 # ownership column remapped on restore
    deleted_field: str = "is_deleted"           # soft-delete flag
    self_ref: str | None = None                 # FK to a row of the same collection
    refs: list[ForeignKey] = Field(default_factory=list)  # FKs to other collections

    @property
    def fk_fields(self) -> list[str]:
        """All FK columns, self-reference first."""
        fields = [self.self_ref] if self.self_ref else []
        return fields + [ref.field for ref in self.refs]


class MirrorSchema(BaseModel):
    """Declarative set of tracked collections.

    List order is only a tie-breaker; restore order is derived from the FKs.
    """

    collections: list[CollectionDef]

    def get(self, name: str) -> CollectionDef | None:
        """Find a collection definition by name."""
        for c in self.collections:
            if c.name == name:
                return c
        return None

    @property
    def names(self) -> list[str]:
        return [c.name for c in self.collections]

    def restore_order(self) -> list[CollectionDef]:
        """Collections sorted so referenced collections come first.

        Depth-first topological sort over cross-collection FKs; a cycle is
        broken by emitting the collection when it is revisited.
        """
        by_name = {c.name: c for c in self.collections}
        ordered: list[CollectionDef] = []
        visited: set[str] = set()
        visiting: set[str] = set()

        def visit(name: str) -> None:
            if name in visited or name in visiting:
                return
            visiting.add(name)
            for ref in by_name[name].refs:
                if ref.table in by_name and ref.table != name:
                    visit(ref.table)
            visiting.discard(name)
            visited.add(name)
            ordered.append(by_name[name])

        for c in self.collections:
            visit(c.name)

        return ordered


def default_schema() -> MirrorSchema:
    """Projects, groups and tasks as tracked by the task application."""
    return MirrorSchema(
        collections=[
            CollectionDef(name="projects", entity_type="project"),
            CollectionDef(
                name="groups",
                entity_type="group",
                self_ref="parent_group_id",
            ),
            CollectionDef(
                name="tasks",
                entity_type="task",
                self_ref="parent_id",
                refs=[ForeignKey(table="projects", field="project_id")],
            ),
        ]
    )


# ============================================================================
# Records
# ============================================================================


class TrackedRecord(BaseModel):
    """A remote row: ``id`` and ``is_deleted`` typed, everything else opaque."""

    model_config = ConfigDict(extra="allow")

    id: str
    is_deleted: bool = False

    @classmethod
    def from_row(cls, row: dict, collection: CollectionDef) -> "TrackedRecord":
        """Build a record from a raw row using the collection's field names."""
        data = dict(row)
        data["id"] = str(row[collection.pk])
        data["is_deleted"] = bool(row.get(collection.deleted_field) or False)
        return cls.model_validate(data)


# ============================================================================
# Bundle and Snapshot
# ============================================================================


class BundleMeta(BaseModel):
    """Metadata block embedded in every bundle."""

    timestamp: int
    schema_version: str
    connection_healthy: bool = True
    latency_ms: int = 0
    counts: dict[str, int] = Field(default_factory=dict)


class Bundle(BaseModel):
    """Full capture of every tracked collection plus metadata."""

    collections: dict[str, list[dict[str, Any]]]
    meta: BundleMeta

    @property
    def counts(self) -> dict[str, int]:
        return {name: len(rows) for name, rows in self.collections.items()}

    @property
    def item_count(self) -> int:
        return sum(self.counts.values())

    def to_payload(self) -> dict[str, Any]:
        """Flatten to ``{<collection>: [...], "meta": {...}}``."""
        payload: dict[str, Any] = dict(self.collections)
        payload["meta"] = self.meta.model_dump()
        return payload


class Snapshot(BaseModel):
    """One immutable row of the snapshot store."""

    model_config = ConfigDict(frozen=True)

    id: int | None = None
    timestamp: int
    kind: str = "full"
    payload: dict[str, Any]
    item_count: int
    checksum: str
    connection_healthy: bool
    latency_ms: int

    @property
    def is_good(self) -> bool:
        """Known-good: a full, non-empty capture taken while the remote store was healthy."""
        return self.kind == "full" and self.item_count > 0 and self.connection_healthy

    def counts(self, schema: MirrorSchema) -> dict[str, int]:
        """Per-collection record counts recomputed from the payload."""
        return {name: len(self.payload.get(name) or []) for name in schema.names}


# ============================================================================
# Stage results
# ============================================================================


class HealthReport(BaseModel):
    """Result of one health probe."""

    healthy: bool
    latency_ms: int


class GuardVerdict(BaseModel):
    """Anomaly guard decision with the counts that produced it."""

    suspicious: bool
    reason: str = ""
    previous_counts: dict[str, int] | None = None
    new_counts: dict[str, int] = Field(default_factory=dict)
