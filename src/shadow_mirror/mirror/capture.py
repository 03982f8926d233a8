"""Snapshot capture: pull every tracked collection from the remote store.

Capture is all-or-nothing.  A single failed or timed-out fetch raises
``CaptureError`` and no bundle is produced.
"""

import asyncio
import logging
import time

from shadow_mirror.adapters.base import RemoteStore
from shadow_mirror.errors import CaptureError
from shadow_mirror.mirror.models import (
    Bundle,
    BundleMeta,
    CollectionDef,
    HealthReport,
    MirrorSchema,
)

logger = logging.getLogger(__name__)


def now_ms() -> int:
    """Current time in milliseconds since the epoch."""
    return int(time.time() * 1000)


async def fetch_collection(
    adapter: RemoteStore,
    collection: CollectionDef,
    timeout: float,
) -> list[dict]:
    """Fetch all rows of one collection, ordered by its primary key.

    Raises:
        CaptureError: On timeout or any adapter failure.
    """
    name = collection.name
    try:
        rows = await asyncio.wait_for(
            adapter.select(name, "*", order_by=collection.pk), timeout=timeout
        )
    except asyncio.TimeoutError as e:
        raise CaptureError(name, f"timed out after {timeout:.1f}s") from e
    except Exception as e:
        raise CaptureError(name, str(e)) from e

    if rows is None:
        raise CaptureError(name, "remote store returned no result set")
    return list(rows)


async def capture(
    adapter: RemoteStore,
    schema: MirrorSchema,
    health: HealthReport,
    schema_version: str,
    timeout: float = 30.0,
    timestamp: int | None = None,
) -> Bundle:
    """Capture the full current state of every tracked collection.

    Collections are fetched one after another; each fetch carries its own
    timeout.

    Args:
        adapter: Remote store adapter.
        schema: Tracked collections.
        health: Health probe result recorded into the bundle metadata.
        schema_version: Export format version recorded into the metadata.
        timeout: Per-collection fetch timeout in seconds.
        timestamp: Capture instant in ms (defaults to now).

    Returns:
        Bundle holding one list per collection plus metadata.

    Raises:
        CaptureError: If any collection fetch fails.
    """
    timestamp = timestamp if timestamp is not None else now_ms()
    collections: dict[str, list[dict]] = {}

    for collection in schema.collections:
        rows = await fetch_collection(adapter, collection, timeout)
        collections[collection.name] = rows
        logger.debug(f"Fetched {len(rows)} rows from '{collection.name}'")

    counts = {name: len(rows) for name, rows in collections.items()}
    return Bundle(
        collections=collections,
        meta=BundleMeta(
            timestamp=timestamp,
            schema_version=schema_version,
            connection_healthy=health.healthy,
            latency_ms=health.latency_ms,
            counts=counts,
        ),
    )
