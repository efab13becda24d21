"""
In-process cache store holding pending coordination records and settled outcomes.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union

from ..exceptions import InternalCoordinationError, RemoteError
from .freshness import FreshnessMetadata
from .keys import CacheKey


@dataclass(frozen=True)
class Outcome:
    """Final result of one remote call: data or a RemoteError."""

    data: Any = None
    error: Optional[RemoteError] = None
    metadata: Optional[FreshnessMetadata] = None

    @classmethod
    def success(cls, data: Any, metadata: Optional[FreshnessMetadata] = None) -> "Outcome":
        return cls(data=data, metadata=metadata)

    @classmethod
    def failure(cls, error: RemoteError) -> "Outcome":
        return cls(error=error, metadata=error.metadata)

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def unwrap(self) -> Any:
        """Return the data, or raise the stored error."""
        if self.error is not None:
            # The same error object is replayed on every hit; start each raise
            # from an empty traceback so frames do not pile up on it.
            raise self.error.with_traceback(None)
        return self.data


class Waiter:
    """Owned handle for one caller awaiting a pending entry.

    Delivers at most once. A caller that abandoned its request leaves a
    cancelled future behind and is skipped.
    """

    __slots__ = ("future", "_notified")

    def __init__(self, future: "asyncio.Future[Any]"):
        self.future = future
        self._notified = False

    @property
    def notified(self) -> bool:
        return self._notified

    def resolve(self, data: Any) -> bool:
        if self._notified:
            return False
        self._notified = True
        if self.future.done():
            return False
        self.future.set_result(data)
        return True

    def reject(self, error: BaseException) -> bool:
        if self._notified:
            return False
        self._notified = True
        if self.future.done():
            return False
        self.future.set_exception(error.with_traceback(None))
        return True

    def notify(self, outcome: Outcome) -> bool:
        if outcome.is_error:
            return self.reject(outcome.error)
        return self.resolve(outcome.data)


@dataclass
class PendingEntry:
    """A remote call is in flight; callers queue up in arrival order."""

    waiters: List[Waiter] = field(default_factory=list)


@dataclass
class SettledEntry:
    """A completed outcome, valid while ``now < expires_at``."""

    outcome: Outcome
    expires_at: float


CacheEntry = Union[PendingEntry, SettledEntry]


class CacheStore:
    """Mapping of :class:`CacheKey` to pending or settled entries.

    Expired entries are dropped lazily when looked up; nothing sweeps the
    store. It performs no I/O and is meant to be driven from a single event
    loop, which is what makes check-then-create atomic.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self._entries: Dict[CacheKey, CacheEntry] = {}

    def get(self, key: CacheKey) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if isinstance(entry, SettledEntry) and entry.expires_at <= self.clock():
            del self._entries[key]
            return None
        return entry

    def put_pending(self, key: CacheKey) -> PendingEntry:
        if self.get(key) is not None:
            raise InternalCoordinationError(
                "Live entry already exists",
                {"key": str(key)},
            )
        entry = PendingEntry()
        self._entries[key] = entry
        return entry

    def add_waiter(self, key: CacheKey, waiter: Waiter) -> None:
        entry = self._entries.get(key)
        if not isinstance(entry, PendingEntry):
            raise InternalCoordinationError(
                "No pending entry to wait on",
                {"key": str(key), "state": _state_of(entry)},
            )
        entry.waiters.append(waiter)

    def settle(self, key: CacheKey, outcome: Outcome, ttl: float) -> List[Waiter]:
        """Move a pending entry to settled and hand back its waiters in arrival order."""
        entry = self._entries.get(key)
        if not isinstance(entry, PendingEntry):
            raise InternalCoordinationError(
                "No pending entry to settle",
                {"key": str(key), "state": _state_of(entry)},
            )
        waiters, entry.waiters = entry.waiters, []
        self._entries[key] = SettledEntry(
            outcome=outcome,
            expires_at=self.clock() + max(0.0, ttl),
        )
        return waiters

    def invalidate(self, key: CacheKey) -> bool:
        """Drop a settled entry. Pending entries are left to settle."""
        if isinstance(self._entries.get(key), SettledEntry):
            del self._entries[key]
            return True
        return False

    def clear(self) -> int:
        """Drop every settled entry and return how many were dropped."""
        settled = [k for k, e in self._entries.items() if isinstance(e, SettledEntry)]
        for key in settled:
            del self._entries[key]
        return len(settled)

    def stats(self) -> Dict[str, int]:
        now = self.clock()
        pending = settled = expired = 0
        for entry in self._entries.values():
            if isinstance(entry, PendingEntry):
                pending += 1
            elif entry.expires_at <= now:
                expired += 1
            else:
                settled += 1
        return {"pending": pending, "settled": settled, "expired": expired}

    def __contains__(self, key: CacheKey) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        stats = self.stats()
        return stats["pending"] + stats["settled"]


def _state_of(entry: Optional[CacheEntry]) -> str:
    if entry is None:
        return "absent"
    return "pending" if isinstance(entry, PendingEntry) else "settled"
