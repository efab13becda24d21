"""
Request-coalescing TTL cache for ESI calls.

Components, in dependency order:

- keys: RequestKeyBuilder / CacheKey (identity incl. credential)
- store: CacheStore with Pending and Settled entries, Waiter handles
- freshness: FreshnessPolicy computing TTL from the Expires header
- coalescer: Coalescer, at most one in-flight call per key with fan-out

Nothing here is shared across processes or persisted; expiry is purely
time based and detected lazily on lookup.
"""

from .keys import CacheKey, RequestKeyBuilder
from .store import CacheStore, Outcome, PendingEntry, SettledEntry, Waiter
from .freshness import FreshnessMetadata, FreshnessPolicy
from .coalescer import Coalescer

__all__ = [
    "CacheKey",
    "RequestKeyBuilder",
    "CacheStore",
    "Outcome",
    "PendingEntry",
    "SettledEntry",
    "Waiter",
    "FreshnessMetadata",
    "FreshnessPolicy",
    "Coalescer",
]
