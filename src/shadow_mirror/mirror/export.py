"""Atomic JSON export of the latest snapshot.

The export file is the one artifact the application's own recovery screen
reads directly, fully offline.  It is replaced atomically: written to a
temporary file in the same directory, fsynced, then renamed into place, so
a reader sees either the previous file or the new one, never a fragment.

Usage:
    from shadow_mirror.mirror.export import export_latest, verify_export

    export_latest(bundle, checksum, Path("public/shadow-latest.json"))
    report = verify_export(Path("public/shadow-latest.json"), schema)
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

from shadow_mirror.errors import PersistenceError
from shadow_mirror.mirror.models import Bundle, MirrorSchema
from shadow_mirror.store.checksum import compute_checksum

logger = logging.getLogger(__name__)


def build_export_document(bundle: Bundle, checksum: str) -> dict[str, Any]:
    """Build ``{<collections>..., meta, timestamp, checksum}``."""
    document: dict[str, Any] = dict(bundle.collections)
    document["meta"] = {
        "timestamp": bundle.meta.timestamp,
        "schemaVersion": bundle.meta.schema_version,
        "counts": bundle.counts,
        "connectionHealthy": bundle.meta.connection_healthy,
        "latencyMs": bundle.meta.latency_ms,
    }
    document["timestamp"] = bundle.meta.timestamp
    document["checksum"] = checksum
    return document


def atomic_write_text(path: Path, content: str) -> None:
    """Write ``content`` to ``path`` via temp file + fsync + rename.

    Raises:
        PersistenceError: If any step fails.  The temporary file is removed
            and the previous ``path`` is left untouched.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(
        prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent)
    )
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except OSError as e:
        tmp_path.unlink(missing_ok=True)
        raise PersistenceError(f"Failed to write {path}: {e}") from e

    _fsync_directory(path.parent)


def _fsync_directory(directory: Path) -> None:
    # Persist the rename itself; not supported on every platform
    try:
        dir_fd = os.open(str(directory), os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(dir_fd)
    except OSError:
        pass
    finally:
        os.close(dir_fd)


def export_latest(bundle: Bundle, checksum: str, path: Path) -> Path:
    """Serialize ``bundle`` to the well-known export path atomically.

    Args:
        bundle: Captured bundle to export.
        checksum: Checksum of the bundle's collections.
        path: Destination file.

    Returns:
        The destination path.

    Raises:
        PersistenceError: If the file cannot be written.
    """
    document = build_export_document(bundle, checksum)
    atomic_write_text(path, json.dumps(document, indent=2, default=str))
    logger.debug(f"Exported snapshot to {path}")
    return path


def read_export(path: Path) -> dict[str, Any]:
    """Load the export document.

    Raises:
        FileNotFoundError: If the file does not exist.
        json.JSONDecodeError: If it is not valid JSON.
    """
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def verify_export(path: Path, schema: MirrorSchema) -> dict:
    """Validate the export file's format and data integrity.

    Checks that the file is valid JSON, carries every tracked collection,
    ``meta``, ``timestamp`` and ``checksum``, that the checksum matches, that
    ids are unique per collection, and reports self-references pointing
    outside the export as warnings.

    Returns:
        Dict with ``valid`` (bool), ``errors`` (list[str]),
        ``warnings`` (list[str]) and ``counts`` (dict[str, int]).
    """
    errors: list[str] = []
    warnings: list[str] = []
    counts: dict[str, int] = {}

    try:
        data = read_export(path)
    except FileNotFoundError:
        errors.append(f"Export file not found: {path}")
        return {"valid": False, "errors": errors, "warnings": warnings, "counts": counts}
    except json.JSONDecodeError as e:
        errors.append(f"Invalid JSON: {e}")
        return {"valid": False, "errors": errors, "warnings": warnings, "counts": counts}

    required_keys = schema.names + ["meta", "timestamp", "checksum"]
    for key in required_keys:
        if key not in data:
            errors.append(f"Missing required key: {key}")

    if errors:
        return {"valid": False, "errors": errors, "warnings": warnings, "counts": counts}

    collections = {name: data[name] for name in schema.names}
    if compute_checksum(collections, schema) != data["checksum"]:
        errors.append(f"Checksum mismatch: file says {data['checksum']}")

    for collection in schema.collections:
        rows = collections[collection.name]
        counts[collection.name] = len(rows)
        ids = [row.get(collection.pk) for row in rows]
        if len(ids) != len(set(ids)):
            errors.append(f"Duplicate ids in {collection.name}")

        if collection.self_ref:
            known = set(ids)
            orphans = [
                row for row in rows
                if row.get(collection.self_ref) is not None
                and row.get(collection.self_ref) not in known
            ]
            if orphans:
                warnings.append(
                    f"{len(orphans)} {collection.name} reference a "
                    f"{collection.self_ref} not in the export"
                )

    valid = len(errors) == 0
    return {"valid": valid, "errors": errors, "warnings": warnings, "counts": counts}
