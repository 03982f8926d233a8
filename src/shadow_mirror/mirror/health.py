"""Remote store health probe.

One cheap row-count query with a hard timeout.  The probe never retries:
the next scheduled cycle is the retry.
"""

import asyncio
import logging
import time

from shadow_mirror.adapters.base import RemoteStore
from shadow_mirror.mirror.models import HealthReport

logger = logging.getLogger(__name__)


async def probe(
    adapter: RemoteStore,
    collection: str,
    timeout: float = 5.0,
) -> HealthReport:
    """Check that the remote store answers a count query in time.

    Args:
        adapter: Remote store adapter.
        collection: Table to count.
        timeout: Seconds before the probe counts as failed.

    Returns:
        ``HealthReport(healthy=True, latency_ms=<ms>)`` on success,
        ``HealthReport(healthy=False, latency_ms=-1)`` on any error or timeout.
    """
    start = time.monotonic()
    try:
        await asyncio.wait_for(adapter.count(collection), timeout=timeout)
    except asyncio.TimeoutError:
        logger.error(f"Health probe timed out after {timeout:.1f}s on '{collection}'")
        return HealthReport(healthy=False, latency_ms=-1)
    except Exception as e:
        logger.error(f"Health probe failed on '{collection}': {e}")
        return HealthReport(healthy=False, latency_ms=-1)

    latency_ms = int((time.monotonic() - start) * 1000)
    logger.debug(f"Health probe ok on '{collection}' ({latency_ms}ms)")
    return HealthReport(healthy=True, latency_ms=latency_ms)
