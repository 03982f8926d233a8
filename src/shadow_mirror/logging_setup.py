"""Logging configuration for the shadow-mirror CLI.

Library modules only create ``logging.getLogger(__name__)`` loggers; the
CLI calls ``setup_logging`` once, before the first command runs.
"""

import logging
import sys
from pathlib import Path

LOG_FORMAT = "%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Chatty at INFO/DEBUG; only their warnings are interesting here
_NOISY_LOGGERS = ("sqlalchemy", "httpx", "httpcore", "asyncpg", "hpack")


def setup_logging(verbose: bool = False, log_file: str | Path | None = None) -> None:
    """Configure root logging.

    Args:
        verbose: DEBUG on the console instead of INFO.
        log_file: Optional file receiving everything at DEBUG.
    """
    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    # Remove any pre-existing handlers to avoid duplicates.
    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

    ch = logging.StreamHandler(sys.stderr)
    ch.setLevel(logging.DEBUG if verbose else logging.INFO)
    ch.setFormatter(fmt)
    root.addHandler(ch)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(str(log_path), encoding="utf-8")
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(fmt)
        root.addHandler(fh)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.captureWarnings(True)
