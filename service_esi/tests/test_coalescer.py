"""
Unit tests for the request Coalescer.
"""

import asyncio
import traceback

import httpx
import pytest

from service_esi.app.adapters.base import RemoteResponse
from service_esi.app.caching.coalescer import Coalescer
from service_esi.app.caching.freshness import FreshnessMetadata, FreshnessPolicy
from service_esi.app.caching.store import CacheStore
from service_esi.app.exceptions import InternalCoordinationError, RemoteError, UnknownEndpointError
from shared.errors import ValidationError
from shared.metrics import MetricsCollector

from conftest import GatedInvoker, expiring_response, http_date, settle_loop


class BrokenSettleStore(CacheStore):
    """Store whose settle always reports a missing pending entry."""

    def settle(self, key, outcome, ttl):
        raise InternalCoordinationError("No pending entry to settle", {"key": str(key)})


class FailingOnceFreshness(FreshnessPolicy):
    """Freshness policy that blows up the first time it is asked for a TTL."""

    def __init__(self, clock):
        super().__init__(clock)
        self.failed = False

    def ttl(self, metadata):
        if not self.failed:
            self.failed = True
            raise RuntimeError("clock skew")
        return super().ttl(metadata)


class TestCoalescing:
    """At most one remote call per key, fanned out to every waiter."""

    @pytest.mark.asyncio
    async def test_concurrent_identical_requests_share_one_call(self, clock, invoker):
        coalescer = Coalescer(invoker, clock=clock)

        tasks = [
            asyncio.create_task(coalescer.request("getShip", [1001]))
            for _ in range(5)
        ]
        await settle_loop()
        assert len(invoker.calls) == 1
        assert coalescer.in_flight == 1

        invoker.release.set()
        results = await asyncio.gather(*tasks)

        assert results == [{"ship_id": 1}] * 5
        assert invoker.calls == [("getShip", (1001,), None)]
        stats = coalescer.stats()
        assert stats["misses"] == 1
        assert stats["coalesced"] == 4
        assert stats["remote_calls"] == 1

    @pytest.mark.asyncio
    async def test_waiters_see_identical_outcome_object(self, clock, invoker):
        payload = {"corporation_name": "C C P", "ticker": "-CCP-"}
        invoker.default = RemoteResponse(payload)
        coalescer = Coalescer(invoker, clock=clock)

        first = asyncio.create_task(coalescer.request("getCorporationsCorporationId", [109299958]))
        second = asyncio.create_task(coalescer.request("getCorporationsCorporationId", [109299958]))
        await settle_loop()
        invoker.release.set()

        assert await first is payload
        assert await second is payload

    @pytest.mark.asyncio
    async def test_different_args_do_not_coalesce(self, clock, invoker):
        invoker.release.set()
        coalescer = Coalescer(invoker, clock=clock)

        await asyncio.gather(
            coalescer.request("getShip", [1001]),
            coalescer.request("getShip", [1002]),
        )

        assert sorted(call[1] for call in invoker.calls) == [(1001,), (1002,)]

    @pytest.mark.asyncio
    async def test_credentials_are_isolated(self, clock, invoker):
        coalescer = Coalescer(invoker, clock=clock)
        invoker.outcomes = [
            expiring_response({"ship": "A"}, clock, 60),
            expiring_response({"ship": "B"}, clock, 60),
        ]

        a = asyncio.create_task(coalescer.request("getShip", [1001], "token-a"))
        b = asyncio.create_task(coalescer.request("getShip", [1001], "token-b"))
        await settle_loop()
        assert [call[2] for call in invoker.calls] == ["token-a", "token-b"]

        invoker.release.set()
        assert await a == {"ship": "A"}
        assert await b == {"ship": "B"}

        # Cached per principal as well
        assert await coalescer.request("getShip", [1001], "token-a") == {"ship": "A"}
        assert await coalescer.request("getShip", [1001], "token-b") == {"ship": "B"}
        assert len(invoker.calls) == 2

    @pytest.mark.asyncio
    async def test_public_request_does_not_join_authenticated_one(self, clock, invoker):
        coalescer = Coalescer(invoker, clock=clock)

        tasks = [
            asyncio.create_task(coalescer.request("getShip", [1001], "token-a")),
            asyncio.create_task(coalescer.request("getShip", [1001])),
        ]
        await settle_loop()
        invoker.release.set()
        await asyncio.gather(*tasks)

        assert len(invoker.calls) == 2


class TestExpiry:
    """Settled entries live until the Expires header, evaluated at settlement."""

    @pytest.mark.asyncio
    async def test_hit_before_expiry_refetch_after(self, clock):
        invoker = GatedInvoker(gated=False)
        invoker.outcomes = [
            expiring_response({"v": 1}, clock, 5),
            expiring_response({"v": 2}, clock, 5),
        ]
        coalescer = Coalescer(invoker, clock=clock)

        assert await coalescer.request("getShip", [1001]) == {"v": 1}

        clock.advance(4)
        assert await coalescer.request("getShip", [1001]) == {"v": 1}
        assert len(invoker.calls) == 1

        clock.advance(2)
        assert await coalescer.request("getShip", [1001]) == {"v": 2}
        assert len(invoker.calls) == 2

    @pytest.mark.asyncio
    async def test_missing_expiry_is_immediately_stale(self, clock, invoker):
        coalescer = Coalescer(invoker, clock=clock)

        first = asyncio.create_task(coalescer.request("getShip", [1001]))
        second = asyncio.create_task(coalescer.request("getShip", [1001]))
        await settle_loop()
        invoker.release.set()

        # Everyone waiting at settlement gets the value
        assert await first == {"ship_id": 1}
        assert await second == {"ship_id": 1}

        # but the next lookup goes upstream again
        await coalescer.request("getShip", [1001])
        assert len(invoker.calls) == 2

    @pytest.mark.asyncio
    async def test_ttl_is_measured_from_settlement(self, clock, invoker):
        coalescer = Coalescer(invoker, clock=clock)
        invoker.outcomes = [
            RemoteResponse({"v": 1}, FreshnessMetadata(expires=http_date(clock.now + 5))),
        ]

        task = asyncio.create_task(coalescer.request("getShip", [1001]))
        await settle_loop()
        clock.advance(3)
        invoker.release.set()
        await task

        # Settled at t=3 with the header still pointing at t=5
        entry = coalescer.store.get(coalescer.key_builder.key("getShip", [1001]))
        assert entry.expires_at == pytest.approx(clock.now + 2)

    @pytest.mark.asyncio
    async def test_ship_scenario(self, clock, invoker):
        """A and B overlap, C is served from cache, D refetches after expiry."""
        coalescer = Coalescer(invoker, clock=clock)
        start = clock.now

        def respond_with_five_second_expiry():
            invoker.outcomes.append(
                RemoteResponse({"ship_id": 1}, FreshnessMetadata(expires=http_date(start + 5)))
            )

        invoker.on_call = respond_with_five_second_expiry

        call_a = asyncio.create_task(coalescer.request("getShip", [1001]))
        await settle_loop()

        clock.advance(0.01)
        call_b = asyncio.create_task(coalescer.request("getShip", [1001]))
        await settle_loop()

        clock.advance(0.19)
        invoker.release.set()
        assert await call_a == {"ship_id": 1}
        assert await call_b == {"ship_id": 1}
        assert len(invoker.calls) == 1

        clock.now = start + 3
        assert await coalescer.request("getShip", [1001]) == {"ship_id": 1}
        assert len(invoker.calls) == 1

        clock.now = start + 6
        await coalescer.request("getShip", [1001])
        assert len(invoker.calls) == 2


class TestErrors:
    """Remote errors are cached like data; other failures still settle."""

    @pytest.mark.asyncio
    async def test_remote_error_fans_out_and_is_cached(self, clock, invoker):
        error = RemoteError(
            "Character not found",
            FreshnessMetadata(expires=http_date(clock.now + 30), status_code=404),
        )
        invoker.outcomes = [error]
        coalescer = Coalescer(invoker, clock=clock)

        first = asyncio.create_task(coalescer.request("getShip", [1]))
        second = asyncio.create_task(coalescer.request("getShip", [1]))
        await settle_loop()
        invoker.release.set()

        results = await asyncio.gather(first, second, return_exceptions=True)
        assert results == [error, error]

        clock.advance(10)
        with pytest.raises(RemoteError) as exc_info:
            await coalescer.request("getShip", [1])
        assert exc_info.value is error
        assert len(invoker.calls) == 1
        assert coalescer.stats()["hits"] == 1

    @pytest.mark.asyncio
    async def test_remote_error_without_expiry_is_not_reused(self, clock, invoker):
        invoker.outcomes = [RemoteError("boom")]
        invoker.release.set()
        coalescer = Coalescer(invoker, clock=clock)

        with pytest.raises(RemoteError):
            await coalescer.request("getShip", [1])

        assert await coalescer.request("getShip", [1]) == {"ship_id": 1}
        assert len(invoker.calls) == 2

    @pytest.mark.asyncio
    async def test_transport_failure_becomes_remote_error(self, clock, invoker):
        invoker.outcomes = [httpx.ConnectError("connection refused")]
        invoker.release.set()
        coalescer = Coalescer(invoker, clock=clock)

        with pytest.raises(RemoteError) as exc_info:
            await coalescer.request("getShip", [1])

        assert exc_info.value.details["exception"] == "ConnectError"
        assert "connection refused" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_call_timeout_settles_waiters(self, clock, invoker):
        coalescer = Coalescer(invoker, clock=clock, call_timeout=0.05)

        results = await asyncio.gather(
            coalescer.request("getShip", [1]),
            coalescer.request("getShip", [1]),
            return_exceptions=True,
        )

        assert all(isinstance(r, RemoteError) for r in results)
        assert results[0] is results[1]
        assert "timed out" in results[0].message
        assert len(invoker.calls) == 1

    @pytest.mark.asyncio
    async def test_settle_fault_notifies_only_initiator(self, clock, invoker):
        metrics = MetricsCollector("esi")
        coalescer = Coalescer(invoker, BrokenSettleStore(clock), metrics=metrics, clock=clock)

        initiator = asyncio.create_task(coalescer.request("getShip", [1]))
        follower = asyncio.create_task(coalescer.request("getShip", [1]))
        await settle_loop()
        invoker.release.set()

        with pytest.raises(InternalCoordinationError):
            await initiator
        await settle_loop()
        assert not follower.done()
        assert coalescer.stats()["coordination_errors"] == 1
        assert metrics.sample("esi_coordination_errors_total") == 1

        follower.cancel()
        with pytest.raises(asyncio.CancelledError):
            await follower

    @pytest.mark.asyncio
    async def test_malformed_invoker_result_settles_waiters(self, clock):
        invoker = GatedInvoker(default={"ship_id": 1})
        coalescer = Coalescer(invoker, clock=clock)

        first = asyncio.create_task(coalescer.request("getShip", [1]))
        second = asyncio.create_task(coalescer.request("getShip", [1]))
        await settle_loop()
        invoker.release.set()

        results = await asyncio.wait_for(asyncio.gather(first, second, return_exceptions=True), 1)
        assert all(isinstance(r, RemoteError) for r in results)
        assert results[0].details["exception"] == "AttributeError"
        assert coalescer.store.stats()["pending"] == 0
        assert coalescer.in_flight == 0

    @pytest.mark.asyncio
    async def test_crash_outside_invoke_still_releases_waiters(self, clock, invoker):
        coalescer = Coalescer(invoker, freshness=FailingOnceFreshness(clock), clock=clock)

        first = asyncio.create_task(coalescer.request("getShip", [1]))
        second = asyncio.create_task(coalescer.request("getShip", [1]))
        await settle_loop()
        invoker.release.set()

        results = await asyncio.wait_for(asyncio.gather(first, second, return_exceptions=True), 1)
        assert results[0] is results[1]
        assert isinstance(results[0], RemoteError)
        assert results[0].details["exception"] == "RuntimeError"

        # The key is usable again rather than stuck behind a dead pending entry
        assert await asyncio.wait_for(coalescer.request("getShip", [1]), 1) == {"ship_id": 1}
        assert len(invoker.calls) == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "raised, status, code",
        [
            (ValidationError("Expected 1 path argument(s), got 0"), 422, "VALIDATION_ERROR"),
            (UnknownEndpointError("getNothing"), 404, "UNKNOWN_ENDPOINT"),
        ],
    )
    async def test_access_layer_errors_keep_their_status(self, clock, invoker, raised, status, code):
        invoker.outcomes = [raised]
        invoker.release.set()
        coalescer = Coalescer(invoker, clock=clock)

        with pytest.raises(RemoteError) as exc_info:
            await coalescer.request("getShip", [1])

        assert exc_info.value.status_code == status
        assert exc_info.value.details["code"] == code
        assert exc_info.value.message == raised.message

    @pytest.mark.asyncio
    async def test_cached_error_traceback_does_not_grow(self, clock, invoker):
        invoker.outcomes = [
            RemoteError("Character not found", FreshnessMetadata(expires=http_date(clock.now + 60), status_code=404)),
        ]
        invoker.release.set()
        coalescer = Coalescer(invoker, clock=clock)

        for _ in range(200):
            with pytest.raises(RemoteError) as exc_info:
                await coalescer.request("getShip", [1])

        depth = len(list(traceback.walk_tb(exc_info.value.__traceback__)))
        assert depth < 20
        assert len(invoker.calls) == 1


class TestCancellation:
    """A caller may give up without disturbing anyone else."""

    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_affect_co_waiters(self, clock, invoker):
        coalescer = Coalescer(invoker, clock=clock)

        initiator = asyncio.create_task(coalescer.request("getShip", [1001]))
        follower = asyncio.create_task(coalescer.request("getShip", [1001]))
        await settle_loop()

        initiator.cancel()
        await settle_loop()
        assert coalescer.in_flight == 1

        invoker.release.set()
        assert await follower == {"ship_id": 1}
        with pytest.raises(asyncio.CancelledError):
            await initiator
        assert len(invoker.calls) == 1

    @pytest.mark.asyncio
    async def test_aclose_rejects_outstanding_waiters(self, clock, invoker):
        coalescer = Coalescer(invoker, clock=clock)

        waiter = asyncio.create_task(coalescer.request("getShip", [1]))
        await settle_loop()
        await coalescer.aclose()

        with pytest.raises(RemoteError, match="cancelled"):
            await waiter
        assert coalescer.in_flight == 0


class TestMaintenance:
    """Invalidation, stats and metrics."""

    @pytest.mark.asyncio
    async def test_invalidate_forces_refetch(self, clock):
        invoker = GatedInvoker(gated=False)
        invoker.outcomes = [
            expiring_response({"v": 1}, clock, 60),
            expiring_response({"v": 2}, clock, 60),
        ]
        coalescer = Coalescer(invoker, clock=clock)

        assert await coalescer.request("getShip", [1]) == {"v": 1}
        assert coalescer.invalidate("getShip", [1]) is True
        assert await coalescer.request("getShip", [1]) == {"v": 2}
        assert coalescer.clear() == 1

    @pytest.mark.asyncio
    async def test_lookup_metrics(self, clock):
        invoker = GatedInvoker(default=expiring_response({"v": 1}, clock, 60), gated=False)
        metrics = MetricsCollector("esi")
        coalescer = Coalescer(invoker, metrics=metrics, clock=clock)

        await coalescer.request("getShip", [1])
        await coalescer.request("getShip", [1])

        assert metrics.sample("esi_cache_lookups_total", result="miss") == 1
        assert metrics.sample("esi_cache_lookups_total", result="hit") == 1
        assert metrics.sample("esi_remote_calls_total", endpoint="getShip", outcome="success") == 1
        assert metrics.sample("esi_remote_call_duration_seconds_count", endpoint="getShip") == 1
