"""
ESI access service: HTTP front for the coalescing ESI client.
"""

from typing import Any, Dict, List, Optional

from fastapi import Header, Query

from shared.base_service import BaseService
from shared.errors import AuthenticationError, ValidationError
from shared.logging import set_endpoint_context
from .client import EsiClient


def _bearer_token(authorization: Optional[str]) -> str:
    """Extract the token from an ``Authorization: Bearer ...`` header."""
    if not authorization:
        raise AuthenticationError("Bearer token required")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError("Malformed Authorization header")
    return token.strip()


def _parse_ids(raw: str) -> List[int]:
    try:
        ids = [int(part) for part in raw.split(",") if part.strip()]
    except ValueError:
        raise ValidationError("ids must be a comma separated list of integers", details={"ids": raw})
    if not ids:
        raise ValidationError("at least one id is required")
    return ids


class EsiService(BaseService):
    """ESI access service implementation."""

    def __init__(self, client: Optional[EsiClient] = None, **config_overrides):
        super().__init__("esi", 8000, **config_overrides)
        self.client = client or EsiClient(config=self.config, metrics=self.metrics)

        @self.app.on_event("shutdown")
        async def _shutdown():
            await self.client.aclose()

        self._setup_cache_routes()
        self._setup_corporation_routes()
        self._setup_location_routes()

    async def _check_dependencies(self) -> Dict[str, Any]:
        stats = self.client.cache_stats()
        return {
            "cache": "ok",
            "in_flight": stats["in_flight"],
            "coordination_errors": stats["coordination_errors"],
        }

    def _setup_cache_routes(self):
        @self.app.get("/cache/stats")
        async def cache_stats():
            """Coalescer counters and entry counts."""
            return self.client.cache_stats()

        @self.app.delete("/cache")
        async def clear_cache():
            """Drop every settled entry; in-flight calls still complete."""
            cleared = self.client.coalescer.clear()
            self.logger.info("Cache cleared", cleared=cleared)
            return {"cleared": cleared}

    def _setup_corporation_routes(self):
        corporation = self.client.corporation

        # Registered before /corporations/{corporation_id} so "names" is not
        # parsed as an id.
        @self.app.get("/corporations/names")
        async def corporation_names(ids: str = Query(..., description="Comma separated corporation ids")):
            set_endpoint_context("getCorporationsNames")
            return await corporation.get_names_of(_parse_ids(ids))

        @self.app.get("/corporations/{corporation_id}")
        async def corporation_info(corporation_id: int):
            set_endpoint_context("getCorporationsCorporationId")
            return await corporation.get(corporation_id)

        @self.app.get("/corporations/{corporation_id}/alliancehistory")
        async def corporation_alliance_history(corporation_id: int):
            set_endpoint_context("getCorporationsCorporationIdAllianceHistory")
            return await corporation.get_alliance_history(corporation_id)

        @self.app.get("/corporations/{corporation_id}/icons")
        async def corporation_icons(corporation_id: int):
            set_endpoint_context("getCorporationsCorporationIdIcons")
            return await corporation.get_icons(corporation_id)

        @self.app.get("/corporations/{corporation_id}/members")
        async def corporation_members(corporation_id: int, authorization: Optional[str] = Header(None)):
            set_endpoint_context("getCorporationsCorporationIdMembers")
            return await corporation.get_members(corporation_id, _bearer_token(authorization))

        @self.app.get("/corporations/{corporation_id}/roles")
        async def corporation_roles(corporation_id: int, authorization: Optional[str] = Header(None)):
            set_endpoint_context("getCorporationsCorporationIdRoles")
            return await corporation.get_roles(corporation_id, _bearer_token(authorization))

    def _setup_location_routes(self):
        location = self.client.location

        @self.app.get("/characters/{character_id}/location")
        async def character_location(character_id: int, authorization: Optional[str] = Header(None)):
            set_endpoint_context("getCharactersCharacterIdLocation")
            return await location.get_location(character_id, _bearer_token(authorization))

        @self.app.get("/characters/{character_id}/ship")
        async def character_ship(character_id: int, authorization: Optional[str] = Header(None)):
            set_endpoint_context("getCharactersCharacterIdShip")
            return await location.get_ship(character_id, _bearer_token(authorization))


def create_app(client: Optional[EsiClient] = None):
    """Create the FastAPI application."""
    return EsiService(client).app


if __name__ == "__main__":
    EsiService().run()
