"""TOML configuration loader for shadow-mirror."""

import tomllib
from pathlib import Path

from shadow_mirror.config.models import (
    DatabaseProfile,
    GuardConfig,
    MirrorConfig,
    MirrorSettings,
    RestoreConfig,
    RetentionConfig,
)
from shadow_mirror.errors import ConfigError
from shadow_mirror.mirror.models import CollectionDef

DEFAULT_CONFIG_FILE = "shadow-mirror.toml"


def load_config(config_path: Path | None = None) -> MirrorConfig:
    """Load mirror configuration from a TOML file.

    Relative ``store_path``/``export_path`` values are resolved against the
    directory holding the config file, so a scheduled run does not depend on
    its working directory.

    Args:
        config_path: Path to shadow-mirror.toml (default: ./shadow-mirror.toml)

    Returns:
        MirrorConfig with all profiles and pipeline settings

    Raises:
        FileNotFoundError: If config file doesn't exist
        ConfigError: If config format is invalid
    """
    if config_path is None:
        config_path = Path.cwd() / DEFAULT_CONFIG_FILE

    if not config_path.exists():
        raise FileNotFoundError(
            f"Mirror config not found: {config_path}\n"
            f"Copy shadow-mirror.toml.example to {DEFAULT_CONFIG_FILE} and "
            f"configure your profiles."
        )

    with open(config_path, "rb") as f:
        try:
            data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Invalid TOML in {config_path}: {e}") from e

    try:
        profiles = {
            name: DatabaseProfile(**profile_data)
            for name, profile_data in data.get("profiles", {}).items()
        }
        mirror = MirrorSettings(**data.get("mirror", {}))
        config = MirrorConfig(
            profiles=profiles,
            default_profile=data.get("default_profile"),
            mirror=mirror,
            guard=GuardConfig(**data.get("guard", {})),
            retention=RetentionConfig(**data.get("retention", {})),
            restore=RestoreConfig(**data.get("restore", {})),
            collections=[CollectionDef(**c) for c in data.get("collections", [])],
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid configuration in {config_path}: {e}") from e

    base_dir = config_path.resolve().parent
    settings = config.mirror
    if not settings.store_path.is_absolute():
        settings.store_path = base_dir / settings.store_path
    if not settings.export_path.is_absolute():
        settings.export_path = base_dir / settings.export_path

    return config
