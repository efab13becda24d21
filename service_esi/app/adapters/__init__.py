"""
Adapters package for the ESI service.

Contains the RemoteInvoker contract consumed by the coalescing cache and
its HTTP implementation against ESI:

- base: RemoteResponse and the RemoteInvoker protocol
- endpoints: endpoint id to method, path template and query names
- esi_client: EsiInvoker over httpx with transport retries

Keep adapters thin: no caching or coordination happens here.
"""

from .base import RemoteInvoker, RemoteResponse
from .endpoints import DEFAULT_ENDPOINTS, Endpoint, EndpointRegistry
from .esi_client import EsiInvoker

__all__ = [
    "RemoteInvoker",
    "RemoteResponse",
    "DEFAULT_ENDPOINTS",
    "Endpoint",
    "EndpointRegistry",
    "EsiInvoker",
]
