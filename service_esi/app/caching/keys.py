"""
Cache key construction for coalesced ESI requests.
"""

import hashlib
import json
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence


@dataclass(frozen=True)
class CacheKey:
    """Identity of a request for coalescing and caching.

    Two requests share an entry exactly when their keys compare equal. The
    credential takes part in equality but never in ``str()``, so keys can
    be logged.
    """

    endpoint_id: str
    args: str
    credential: Optional[str] = field(default=None, repr=False)

    @property
    def principal(self) -> str:
        """Short fingerprint of the credential, or ``"public"``."""
        if self.credential is None:
            return "public"
        return hashlib.sha256(self.credential.encode("utf-8")).hexdigest()[:12]

    def __str__(self) -> str:
        return f"{self.endpoint_id}/{self.args}@{self.principal}"


class RequestKeyBuilder:
    """Derives a :class:`CacheKey` from endpoint identity, args and credential."""

    def key(
        self,
        endpoint_id: str,
        args: Sequence[Any] = (),
        credential: Optional[str] = None,
    ) -> CacheKey:
        return CacheKey(
            endpoint_id=endpoint_id,
            args=self.serialize_args(args),
            credential=credential or None,
        )

    @staticmethod
    def serialize_args(args: Sequence[Any]) -> str:
        """Serialize ordered args deterministically.

        Compact JSON keeps positional order; dict keys are sorted and values
        JSON cannot represent fall back to ``str``, so ``(Decimal("1.5"),)``
        and ``("1.5",)`` share a key.
        """
        return json.dumps(
            list(args),
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
            default=str,
        )
