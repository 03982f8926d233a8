"""Configuration management: profiles, TOML loading, and config models.

Usage:
    >>> from shadow_mirror.config import load_config, MirrorConfig, DatabaseProfile
"""

from shadow_mirror.config.loader import load_config
from shadow_mirror.config.models import (
    DatabaseProfile,
    GuardConfig,
    MirrorConfig,
    MirrorSettings,
    RestoreConfig,
    RetentionConfig,
)

__all__ = [
    "load_config",
    "DatabaseProfile",
    "GuardConfig",
    "MirrorConfig",
    "MirrorSettings",
    "RestoreConfig",
    "RetentionConfig",
]
