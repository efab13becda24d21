"""
Shared fixtures for ESI service tests.
"""

import asyncio
from email.utils import formatdate
from typing import Any, List, Optional, Sequence, Tuple

import pytest

from service_esi.app.adapters.base import RemoteResponse
from service_esi.app.caching.freshness import FreshnessMetadata

# Sat, 09 Dec 2023 14:00:00 GMT
EPOCH = 1702130400.0


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, start: float = EPOCH):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def http_date(timestamp: float) -> str:
    return formatdate(timestamp, usegmt=True)


class GatedInvoker:
    """RemoteInvoker double that holds every call until ``release`` is set.

    ``outcomes`` is consumed one per call; an exception instance is raised,
    anything else is returned. When empty, ``default`` is returned.
    """

    def __init__(self, default: Any = None, gated: bool = True):
        self.calls: List[Tuple[str, Tuple[Any, ...], Optional[str]]] = []
        self.release = asyncio.Event()
        if not gated:
            self.release.set()
        self.default = default if default is not None else RemoteResponse({"ship_id": 1})
        self.outcomes: List[Any] = []
        self.on_call = None

    async def call(self, endpoint_id: str, args: Sequence[Any], credential: Optional[str] = None) -> RemoteResponse:
        self.calls.append((endpoint_id, tuple(args), credential))
        if self.on_call is not None:
            self.on_call()
        await self.release.wait()
        outcome = self.outcomes.pop(0) if self.outcomes else self.default
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


def expiring_response(data: Any, clock: FakeClock, seconds: float, status_code: int = 200) -> RemoteResponse:
    """Response whose Expires header lies ``seconds`` after the clock's current time."""
    return RemoteResponse(
        data,
        FreshnessMetadata(expires=http_date(clock.now + seconds), status_code=status_code),
    )


async def settle_loop(rounds: int = 5) -> None:
    """Give scheduled tasks and done-callbacks a few loop turns."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def invoker():
    return GatedInvoker()
