"""Remote store adapters package.

Provides the ``RemoteStore`` Protocol, the ``RemoteStoreError`` failure type
and concrete async adapter implementations for PostgreSQL and (optionally)
Supabase.

``AsyncSupabaseAdapter`` is only available when the ``supabase`` extra
is installed.  A missing ``supabase`` dependency does not prevent
importing the rest of the package.

Usage:
    from shadow_mirror.adapters import RemoteStore, AsyncPostgresAdapter

    # With supabase extra installed:
    from shadow_mirror.adapters import AsyncSupabaseAdapter
"""

from shadow_mirror.adapters.base import RemoteStore, RemoteStoreError
from shadow_mirror.adapters.postgres import AsyncPostgresAdapter

__all__ = [
    "RemoteStore",
    "RemoteStoreError",
    "AsyncPostgresAdapter",
]

try:
    from shadow_mirror.adapters.supabase import AsyncSupabaseAdapter

    __all__.append("AsyncSupabaseAdapter")
except ImportError:
    # supabase extra not installed -- AsyncSupabaseAdapter unavailable
    pass
