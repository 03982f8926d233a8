"""Remote store adapter factory.

Resolves which profile to use and builds the matching ``RemoteStore``
adapter.  Environment lookups happen here, once, when the CLI starts;
components below receive the resulting ``MirrorConfig`` and adapter.

Profile resolution priority:
1. Explicit ``profile_name`` argument (``--profile``)
2. ``{env_prefix}SHADOW_PROFILE`` environment variable
3. ``default_profile`` in shadow-mirror.toml
4. The only profile, when exactly one is configured
"""

import os
from urllib.parse import quote

from shadow_mirror.adapters.base import RemoteStore
from shadow_mirror.adapters.postgres import AsyncPostgresAdapter
from shadow_mirror.config.models import DatabaseProfile, MirrorConfig
from shadow_mirror.errors import ConfigError, ProfileNotFoundError


def get_active_profile_name(
    config: MirrorConfig,
    profile_name: str | None = None,
    env_prefix: str = "",
) -> str:
    """Get active profile name from argument, env var, or config file.

    Args:
        config: Loaded configuration.
        profile_name: Explicit profile name (wins over everything else).
        env_prefix: Prefix for the env var lookup (``APP_`` reads
            ``APP_SHADOW_PROFILE``).

    Returns:
        Profile name

    Raises:
        ProfileNotFoundError: If no profile is configured or the chosen one
            does not exist.
    """
    name = (
        profile_name
        or os.environ.get(f"{env_prefix}SHADOW_PROFILE")
        or config.default_profile
    )
    if not name and len(config.profiles) == 1:
        name = next(iter(config.profiles))

    if not name:
        raise ProfileNotFoundError(
            "No remote store profile configured.\n"
            f"Set {env_prefix}SHADOW_PROFILE=<name>, pass --profile, or add "
            "default_profile to shadow-mirror.toml.\n"
            f"Available profiles: {', '.join(config.profiles) or '(none)'}"
        )

    if name not in config.profiles:
        raise ProfileNotFoundError(
            f"Profile '{name}' not found in shadow-mirror.toml.\n"
            f"Available profiles: {', '.join(config.profiles) or '(none)'}"
        )

    return name


def select_profile(
    config: MirrorConfig,
    profile_name: str | None = None,
    env_prefix: str = "",
) -> MirrorConfig:
    """Return a copy of ``config`` with ``active_profile`` resolved."""
    name = get_active_profile_name(config, profile_name, env_prefix)
    return config.model_copy(update={"active_profile": name})


def resolve_url(profile: DatabaseProfile) -> str:
    """Resolve profile URL with password substitution.

    Args:
        profile: Database profile from config

    Returns:
        Connection URL with password substituted
    """
    url = profile.url
    if profile.db_password and "[YOUR-PASSWORD]" in url:
        url = url.replace("[YOUR-PASSWORD]", quote(profile.db_password, safe=""))
    return url


def resolve_key(profile: DatabaseProfile) -> str:
    """Resolve the Supabase API key from the profile or its env var.

    Raises:
        ConfigError: If neither ``key`` nor a populated ``key_env`` is set.
    """
    if profile.key:
        return profile.key
    if profile.key_env:
        value = os.environ.get(profile.key_env)
        if value:
            return value
        raise ConfigError(f"Environment variable {profile.key_env} is not set")
    raise ConfigError("Supabase profile requires 'key' or 'key_env'")


async def get_adapter(config: MirrorConfig) -> RemoteStore:
    """Create the remote store adapter for the active profile.

    Args:
        config: Configuration with ``active_profile`` set (see
            ``select_profile``).

    Returns:
        ``AsyncPostgresAdapter`` or ``AsyncSupabaseAdapter``.

    Raises:
        ProfileNotFoundError: If no active profile is set.
        ConfigError: If the provider is unknown or the supabase extra is
            missing.
    """
    if not config.active_profile or config.active_profile not in config.profiles:
        raise ProfileNotFoundError("No active profile selected")

    profile = config.profiles[config.active_profile]

    if profile.provider == "supabase":
        try:
            from shadow_mirror.adapters.supabase import AsyncSupabaseAdapter
        except ImportError as e:
            raise ConfigError(
                "Supabase provider requires the 'supabase' extra: "
                "pip install shadow-mirror[supabase]"
            ) from e
        return AsyncSupabaseAdapter(url=profile.url, key=resolve_key(profile))

    if profile.provider == "postgres":
        return AsyncPostgresAdapter(
            resolve_url(profile), jsonb_columns=profile.jsonb_columns
        )

    raise ConfigError(f"Unknown provider '{profile.provider}'")
