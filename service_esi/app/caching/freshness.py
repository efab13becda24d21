"""
Freshness policy: how long a settled ESI response stays valid.
"""

import time
from dataclasses import dataclass
from datetime import timezone
from email.utils import parsedate_to_datetime
from typing import Callable, Mapping, Optional

from shared.logging import get_logger


@dataclass(frozen=True)
class FreshnessMetadata:
    """Freshness information taken from a response."""

    expires: Optional[str] = None
    status_code: Optional[int] = None

    @classmethod
    def from_headers(cls, headers: Mapping[str, str], status_code: Optional[int] = None) -> "FreshnessMetadata":
        """Build metadata from response headers (lookup is case-insensitive)."""
        expires = None
        for name, value in headers.items():
            if name.lower() == "expires":
                expires = value
                break
        return cls(expires=expires, status_code=status_code)


def parse_http_date(value: Optional[str]) -> Optional[float]:
    """Parse an HTTP-date such as ``Sat, 09 Dec 2023 14:00:00 GMT`` to epoch seconds."""
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value.strip())
    except (TypeError, ValueError, IndexError):
        return None
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp()


class FreshnessPolicy:
    """Computes the TTL of a settled outcome from its freshness metadata."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self.logger = get_logger("esi.freshness")

    def ttl(self, metadata: Optional[FreshnessMetadata]) -> float:
        """Seconds until ``metadata.expires``, or 0 when absent or unparsable.

        Evaluated when the entry settles, so time spent waiting on the remote
        call is not counted as freshness.
        """
        if metadata is None or not metadata.expires:
            return 0.0

        expires_at = parse_http_date(metadata.expires)
        if expires_at is None:
            self.logger.debug("Unparsable expires header", expires=metadata.expires)
            return 0.0

        return max(0.0, expires_at - self.clock())
