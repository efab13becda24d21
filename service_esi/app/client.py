"""
EsiClient: wires the invoker, the coalescing cache and the bindings together.
"""

from typing import Any, Dict, Optional, TYPE_CHECKING

from shared.config import BaseConfig
from shared.logging import get_logger
from shared.retry import RetryConfig
from .adapters.esi_client import EsiInvoker
from .bindings import Corporation, Location
from .caching import CacheStore, Coalescer

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from .adapters.base import RemoteInvoker
    from shared.metrics import MetricsCollector


class EsiClient:
    """Cached, coalescing ESI client.

    ``datasource`` and ``base_url`` default to the configured values
    (``ESI_DATASOURCE``, ``ESI_BASE_URL``). Each client owns its own
    :class:`CacheStore`; pass one in to share it between clients in the
    same process.
    """

    def __init__(
        self,
        datasource: Optional[str] = None,
        base_url: Optional[str] = None,
        *,
        config: Optional[BaseConfig] = None,
        invoker: Optional["RemoteInvoker"] = None,
        store: Optional[CacheStore] = None,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.config = config or BaseConfig()
        self.logger = get_logger("esi.client")

        if invoker is None:
            invoker = EsiInvoker(
                base_url or self.config.base_url,
                datasource or self.config.datasource,
                timeout=self.config.request_timeout,
                user_agent=self.config.user_agent,
                retry_config=RetryConfig(
                    max_attempts=self.config.retry_attempts,
                    base_delay=self.config.retry_base_delay,
                    max_delay=self.config.retry_max_delay,
                ),
            )
        self.invoker = invoker

        self.coalescer = Coalescer(
            invoker,
            store,
            metrics=metrics,
            call_timeout=self.config.call_timeout,
        )
        self.corporation = Corporation(self.coalescer)
        self.location = Location(self.coalescer)

        self.logger.info(
            "ESI client ready",
            base_url=getattr(invoker, "base_url", None),
            datasource=getattr(invoker, "datasource", None),
        )

    async def request(self, endpoint_id: str, *args: Any, access_token: Optional[str] = None) -> Any:
        """Call any registered endpoint through the cache."""
        return await self.coalescer.request(endpoint_id, args, access_token)

    def cache_stats(self) -> Dict[str, Any]:
        return self.coalescer.stats()

    async def aclose(self) -> None:
        await self.coalescer.aclose()
        aclose = getattr(self.invoker, "aclose", None)
        if aclose is not None:
            await aclose()

    async def __aenter__(self) -> "EsiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
