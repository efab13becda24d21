"""
Location endpoints. Both need an SSO token for the character.
"""

from typing import Any, Dict

from ..caching.coalescer import Coalescer


class Location:
    """Bindings for the ESI Location namespace."""

    def __init__(self, coalescer: Coalescer):
        self._coalescer = coalescer

    async def get_location(self, character_id: int, access_token: str) -> Dict[str, Any]:
        """Current solar system, plus station or structure id when docked."""
        return await self._coalescer.request(
            "getCharactersCharacterIdLocation", [character_id], access_token
        )

    async def get_ship(self, character_id: int, access_token: str) -> Dict[str, Any]:
        return await self._coalescer.request(
            "getCharactersCharacterIdShip", [character_id], access_token
        )
