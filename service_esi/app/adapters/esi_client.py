"""
HTTP invoker for the EVE Swagger Interface.
"""

from typing import Any, Dict, Optional, Sequence

import httpx

from shared.logging import get_logger
from shared.retry import RetryConfig, retry_call
from ..caching.freshness import FreshnessMetadata
from ..exceptions import RemoteError
from .base import RemoteResponse
from .endpoints import EndpointRegistry

DEFAULT_BASE_URL = "https://esi.evetech.net/latest"
DEFAULT_DATASOURCE = "tranquility"


class EsiInvoker:
    """Performs ESI calls over one pooled ``httpx.AsyncClient``.

    The credential travels with each call as a bearer header; the client
    itself carries no auth state, so calls for different principals can
    share it.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        datasource: str = DEFAULT_DATASOURCE,
        *,
        registry: Optional[EndpointRegistry] = None,
        timeout: float = 10.0,
        user_agent: str = "esi-access/1.0",
        retry_config: Optional[RetryConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip('/')
        self.datasource = datasource or DEFAULT_DATASOURCE
        self.registry = registry or EndpointRegistry()
        self.logger = get_logger("esi.invoker")
        self.retry_config = retry_config or RetryConfig(
            max_attempts=3,
            base_delay=0.5,
            max_delay=5.0,
            exponential_base=2.0,
            jitter=True
        )
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            headers={"User-Agent": user_agent, "Accept": "application/json"},
            transport=transport,
        )

    async def call(
        self,
        endpoint_id: str,
        args: Sequence[Any],
        credential: Optional[str] = None,
    ) -> RemoteResponse:
        endpoint = self.registry.get(endpoint_id)
        path, params = endpoint.build(list(args))
        params["datasource"] = self.datasource

        headers: Dict[str, str] = {}
        if credential:
            headers["Authorization"] = f"Bearer {credential}"
        elif endpoint.requires_auth:
            self.logger.warning("Calling authenticated endpoint without credential", endpoint=endpoint_id)

        response = await retry_call(
            self._client.request,
            endpoint.method,
            path,
            params=params,
            headers=headers,
            exceptions=(httpx.TransportError,),
            config=self.retry_config,
        )

        metadata = FreshnessMetadata.from_headers(response.headers, response.status_code)
        if response.is_success:
            self.logger.debug(
                "ESI response received",
                endpoint=endpoint_id,
                path=path,
                status_code=response.status_code,
                expires=metadata.expires,
            )
            return RemoteResponse(data=response.json(), metadata=metadata)

        payload = self._error_payload(response)
        self.logger.warning(
            "ESI returned an error",
            endpoint=endpoint_id,
            path=path,
            status_code=response.status_code,
            error=str(payload),
        )
        raise RemoteError(
            payload,
            metadata,
            details={"endpoint_id": endpoint_id, "path": path},
        )

    @staticmethod
    def _error_payload(response: httpx.Response) -> Any:
        """ESI error bodies look like ``{"error": "..."}``; fall back to the raw text."""
        try:
            body = response.json()
        except ValueError:
            return response.text or f"HTTP {response.status_code}"
        if isinstance(body, dict) and "error" in body:
            return body["error"]
        return body

    async def aclose(self) -> None:
        await self._client.aclose()
