"""
Request coalescer: one remote call per distinct request, fanned out to every caller.
"""

import asyncio
import time
from typing import Any, Callable, Dict, Optional, Sequence, Set, TYPE_CHECKING

from shared.logging import get_logger
from ..exceptions import InternalCoordinationError, RemoteError
from .freshness import FreshnessPolicy
from .keys import CacheKey, RequestKeyBuilder
from .store import CacheStore, Outcome, PendingEntry, SettledEntry, Waiter

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from ..adapters.base import RemoteInvoker
    from shared.metrics import MetricsCollector


class Coalescer:
    """Front door of the cache.

    ``request()`` returns a settled outcome straight from the store, joins
    an in-flight call for the same key, or starts exactly one remote call.
    The lookup and the create-or-register that follows contain no ``await``,
    so concurrent callers on the same event loop cannot both miss.
    """

    def __init__(
        self,
        invoker: "RemoteInvoker",
        store: Optional[CacheStore] = None,
        *,
        key_builder: Optional[RequestKeyBuilder] = None,
        freshness: Optional[FreshnessPolicy] = None,
        metrics: Optional["MetricsCollector"] = None,
        call_timeout: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.invoker = invoker
        self.store = store if store is not None else CacheStore(clock)
        self.key_builder = key_builder or RequestKeyBuilder()
        self.freshness = freshness or FreshnessPolicy(clock)
        self.metrics = metrics
        self.call_timeout = call_timeout
        self.logger = get_logger("esi.coalescer")

        self._tasks: Set["asyncio.Task[None]"] = set()
        self._counters: Dict[str, int] = {
            "hits": 0,
            "misses": 0,
            "coalesced": 0,
            "remote_calls": 0,
            "coordination_errors": 0,
        }

    async def request(
        self,
        endpoint_id: str,
        args: Sequence[Any] = (),
        credential: Optional[str] = None,
    ) -> Any:
        """Resolve to the endpoint's data, or raise its :class:`RemoteError`."""
        args = tuple(args)
        key = self.key_builder.key(endpoint_id, args, credential)

        entry = self.store.get(key)
        if isinstance(entry, SettledEntry):
            self._record_lookup("hit")
            self.logger.debug("Cache hit", key=str(key), error=entry.outcome.is_error)
            return entry.outcome.unwrap()

        waiter = Waiter(asyncio.get_running_loop().create_future())
        if isinstance(entry, PendingEntry):
            self.store.add_waiter(key, waiter)
            self._record_lookup("coalesced")
            self.logger.debug("Joined in-flight call", key=str(key), waiters=len(entry.waiters))
        else:
            self.store.put_pending(key)
            self.store.add_waiter(key, waiter)
            self._record_lookup("miss")
            self._start_call(key, endpoint_id, args, credential, waiter)

        return await waiter.future

    def invalidate(
        self,
        endpoint_id: str,
        args: Sequence[Any] = (),
        credential: Optional[str] = None,
    ) -> bool:
        """Forget a settled result so the next request goes upstream."""
        return self.store.invalidate(self.key_builder.key(endpoint_id, tuple(args), credential))

    def clear(self) -> int:
        return self.store.clear()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def stats(self) -> Dict[str, Any]:
        return {
            **self._counters,
            "in_flight": self.in_flight,
            "entries": self.store.stats(),
        }

    async def aclose(self) -> None:
        """Cancel outstanding remote calls; their waiters are rejected."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _start_call(
        self,
        key: CacheKey,
        endpoint_id: str,
        args: tuple,
        credential: Optional[str],
        initiator: Waiter,
    ) -> None:
        # The call runs in its own task so an initiator that gives up does
        # not take the shared call down with it.
        task = asyncio.get_running_loop().create_task(
            self._run_call(key, endpoint_id, args, credential, initiator)
        )
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._call_done(t, key, initiator))
        self._counters["remote_calls"] += 1
        if self.metrics:
            self.metrics.set_gauge("esi_in_flight_calls", len(self._tasks))

    def _call_done(self, task: "asyncio.Task[None]", key: CacheKey, initiator: Waiter) -> None:
        self._tasks.discard(task)
        if self.metrics:
            self.metrics.set_gauge("esi_in_flight_calls", len(self._tasks))

        # A call that ended without settling (cancelled, possibly before it
        # ever ran, or crashed outside _invoke) must still release its waiters.
        if task.cancelled():
            self.logger.warning("Remote call cancelled", key=str(key))
            error = RemoteError("Remote call cancelled")
        else:
            exc = task.exception()
            if exc is None:
                return
            self.logger.error("Remote call task crashed", key=str(key), error=repr(exc))
            error = RemoteError.wrap(exc)

        if isinstance(self.store.get(key), PendingEntry):
            self._settle(key, Outcome.failure(error), initiator)

    async def _run_call(
        self,
        key: CacheKey,
        endpoint_id: str,
        args: tuple,
        credential: Optional[str],
        initiator: Waiter,
    ) -> None:
        start = time.perf_counter()
        try:
            outcome = await self._invoke(endpoint_id, args, credential)
        finally:
            if self.metrics:
                self.metrics.observe_histogram(
                    "esi_remote_call_duration_seconds",
                    time.perf_counter() - start,
                    endpoint=endpoint_id,
                )

        if self.metrics:
            self.metrics.increment_counter(
                "esi_remote_calls_total",
                endpoint=endpoint_id,
                outcome="error" if outcome.is_error else "success",
            )
        self._settle(key, outcome, initiator)

    async def _invoke(self, endpoint_id: str, args: tuple, credential: Optional[str]) -> Outcome:
        """Run the invoker and fold every way it can end into an :class:`Outcome`."""
        try:
            call = self.invoker.call(endpoint_id, args, credential)
            if self.call_timeout is not None:
                response = await asyncio.wait_for(call, self.call_timeout)
            else:
                response = await call
            return Outcome.success(response.data, response.metadata)
        except RemoteError as exc:
            return Outcome.failure(exc)
        except asyncio.TimeoutError:
            self.logger.warning("Remote call timed out", endpoint=endpoint_id, timeout=self.call_timeout)
            return Outcome.failure(RemoteError(
                f"Remote call timed out after {self.call_timeout}s",
                details={"timeout": self.call_timeout},
            ))
        except Exception as exc:
            self.logger.error("Remote call failed", endpoint=endpoint_id, error=str(exc))
            return Outcome.failure(RemoteError.wrap(exc))

    def _settle(self, key: CacheKey, outcome: Outcome, initiator: Waiter) -> None:
        ttl = self.freshness.ttl(outcome.metadata)
        try:
            waiters = self.store.settle(key, outcome, ttl)
        except InternalCoordinationError as exc:
            # Co-waiters are out of reach here; only the initiator is told.
            self._counters["coordination_errors"] += 1
            if self.metrics:
                self.metrics.increment_counter("esi_coordination_errors_total")
            self.logger.error(
                "Settlement failed, notifying initiating caller only",
                key=str(key),
                error=exc.message,
                details=exc.details,
            )
            initiator.reject(exc)
            return

        self.logger.info(
            "Remote call settled",
            key=str(key),
            ttl=round(ttl, 3),
            error=outcome.is_error,
            waiters=len(waiters),
        )
        for waiter in waiters:
            waiter.notify(outcome)

    def _record_lookup(self, result: str) -> None:
        counter = {"hit": "hits", "miss": "misses", "coalesced": "coalesced"}[result]
        self._counters[counter] += 1
        if self.metrics:
            self.metrics.increment_counter("esi_cache_lookups_total", result=result)
