"""
ESI access service package.

Sits between callers and the EVE Swagger Interface, guaranteeing at most
one in-flight HTTP call per distinct request and reusing results until the
server's Expires header says they are stale.

Structure:
- app.caching: key builder, cache store, freshness policy, coalescer.
- app.adapters: RemoteInvoker contract, endpoint registry, httpx invoker.
- app.bindings: Corporation and Location namespaces over the coalescer.
- app.client: EsiClient facade wiring the above together.
- app.main: FastAPI app exposing the bindings, health and cache stats.
"""
