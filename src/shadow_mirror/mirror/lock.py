"""Single-writer lock for capture cycles.

A lock file created with ``O_EXCL`` next to the snapshot store.  A second
cycle started while the first is still running fails fast instead of
racing on the store and the export file.
"""

import logging
import os
from pathlib import Path

from shadow_mirror.errors import CycleLockedError

logger = logging.getLogger(__name__)


class CycleLock:
    """Context manager holding ``<store>.lock`` for the duration of a cycle.

    Usage:
        with CycleLock(config.mirror.store_path):
            result = await run_cycle(adapter, store, config)
    """

    def __init__(self, store_path: str | Path) -> None:
        store_path = Path(store_path)
        self.path = store_path.with_name(store_path.name + ".lock")

    def acquire(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(str(self.path), os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError as e:
            holder = self.path.read_text().strip() if self.path.exists() else "unknown"
            raise CycleLockedError(
                f"Another capture cycle holds {self.path} (pid {holder}). "
                f"Remove the file if that process is gone."
            ) from e
        with os.fdopen(fd, "w") as f:
            f.write(str(os.getpid()))
        logger.debug(f"Acquired cycle lock {self.path}")

    def release(self) -> None:
        self.path.unlink(missing_ok=True)

    def __enter__(self) -> "CycleLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()
