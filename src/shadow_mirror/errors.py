"""Exception hierarchy shared across the mirror pipeline and restore engine.

Usage:
    from shadow_mirror.errors import CaptureError, ShadowMirrorError
"""


class ShadowMirrorError(Exception):
    """Base class for all shadow-mirror failures."""

    pass


class ConfigError(ShadowMirrorError):
    """Raised when the configuration file is missing or malformed."""

    pass


class ProfileNotFoundError(ConfigError):
    """Raised when no remote store profile is configured."""

    pass


class CaptureError(ShadowMirrorError):
    """Raised when any collection fetch fails during a capture."""

    def __init__(self, collection: str, reason: str) -> None:
        self.collection = collection
        self.reason = reason
        super().__init__(f"Failed to capture '{collection}': {reason}")


class PersistenceError(ShadowMirrorError):
    """Raised when the snapshot store or export file cannot be written."""

    pass


class RestoreError(ShadowMirrorError):
    """Raised when a restore cannot start (no snapshot, no target identity)."""

    pass


class CycleLockedError(ShadowMirrorError):
    """Raised when another capture cycle holds the store lock."""

    pass
