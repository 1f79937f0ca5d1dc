"""Identity store adapters.

Import this module to auto-register all bundled adapters.

Example:
    # Import adapters module to register all store adapters
    import carcare.identity.adapters  # noqa: F401

    # Or import specific adapters
    from carcare.identity.adapters.durable import SupabaseStoreAdapter
    from carcare.identity.adapters.volatile import VolatileStore, VolatileStoreAdapter
    from carcare.identity.adapters.local_file import LocalFileStoreAdapter
"""

from __future__ import annotations

# Import adapters to trigger auto-registration
from carcare.identity.adapters.durable import SupabaseStoreAdapter as SupabaseStoreAdapter
from carcare.identity.adapters.local_file import LocalFileStoreAdapter as LocalFileStoreAdapter
from carcare.identity.adapters.volatile import VolatileStore as VolatileStore
from carcare.identity.adapters.volatile import VolatileStoreAdapter as VolatileStoreAdapter

__all__ = [
    "LocalFileStoreAdapter",
    "SupabaseStoreAdapter",
    "VolatileStore",
    "VolatileStoreAdapter",
]
