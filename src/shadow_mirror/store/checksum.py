"""Order-stable payload checksums.

The digest covers the tracked collections only.  ``meta`` (timestamps,
health fields) is excluded, so two captures of the same data taken at
different times produce the same checksum.

Records are ordered by their collection's primary key (``id`` unless a
schema declares otherwise).
"""

import hashlib
import json
from typing import Any

from shadow_mirror.mirror.models import MirrorSchema

CHECKSUM_PREFIX = "sha256:"


def _dump(value: Any) -> str:
    return json.dumps(value, sort_keys=True, default=str)


def _record_key(pk: str):
    def key(record: Any) -> tuple[int, str, str]:
        if isinstance(record, dict) and record.get(pk) is not None:
            return (0, str(record[pk]), _dump(record))
        return (1, "", _dump(record))

    return key


def _pk_for(name: str, schema: MirrorSchema | None) -> str:
    collection = schema.get(name) if schema is not None else None
    return collection.pk if collection is not None else "id"


def canonical_json(
    collections: dict[str, list[Any]], schema: MirrorSchema | None = None
) -> str:
    """Serialize collections with sorted keys, collections and records."""
    canonical = {
        name: sorted(rows or [], key=_record_key(_pk_for(name, schema)))
        for name, rows in sorted(collections.items())
        if name != "meta"
    }
    return json.dumps(canonical, sort_keys=True, separators=(",", ":"), default=str)


def compute_checksum(
    collections: dict[str, list[Any]], schema: MirrorSchema | None = None
) -> str:
    """Return ``sha256:<hex>`` over the canonical form of ``collections``.

    Accepts either a bundle's ``collections`` dict or a full payload; a
    ``meta`` key is ignored.  ``schema`` supplies per-collection primary
    keys for record ordering.
    """
    digest = hashlib.sha256(canonical_json(collections, schema).encode("utf-8")).hexdigest()
    return f"{CHECKSUM_PREFIX}{digest}"


def verify_checksum(
    payload: dict[str, Any], checksum: str, schema: MirrorSchema | None = None
) -> bool:
    """True when ``checksum`` matches the payload's collections."""
    return compute_checksum(payload, schema) == checksum
