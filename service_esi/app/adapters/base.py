"""
Contract between the coalescer and whatever performs the network call.
"""

from dataclasses import dataclass
from typing import Any, Optional, Protocol, Sequence

from ..caching.freshness import FreshnessMetadata


@dataclass(frozen=True)
class RemoteResponse:
    """Successful response: decoded body plus freshness metadata."""

    data: Any
    metadata: FreshnessMetadata = FreshnessMetadata()


class RemoteInvoker(Protocol):
    """Performs one remote call.

    Returns a :class:`RemoteResponse` on success and raises
    :class:`~service_esi.app.exceptions.RemoteError` for an error response.
    Any other exception is wrapped by the coalescer as a failure with no expiry.
    """

    async def call(
        self,
        endpoint_id: str,
        args: Sequence[Any],
        credential: Optional[str] = None,
    ) -> RemoteResponse:
        ...
