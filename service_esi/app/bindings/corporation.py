"""
Corporation endpoints.

See https://esi.evetech.net/ui/#/Corporation
"""

from typing import Any, Dict, Iterable, List

from ..caching.coalescer import Coalescer


class Corporation:
    """Bindings for the ESI Corporation namespace.

    Every method goes through the shared coalescer, so concurrent identical
    calls produce one HTTP request and results are reused until the
    ``Expires`` header says otherwise.
    """

    def __init__(self, coalescer: Coalescer):
        self._coalescer = coalescer

    async def get(self, corporation_id: int) -> Dict[str, Any]:
        """Public info, e.g.::

            {"alliance_id": 434243723, "ceo_id": 180548812,
             "corporation_name": "C C P", "member_count": 656, "ticker": "-CCP-"}
        """
        return await self._coalescer.request("getCorporationsCorporationId", [corporation_id])

    async def get_alliance_history(self, corporation_id: int) -> List[Dict[str, Any]]:
        """Alliance membership records, newest first."""
        return await self._coalescer.request(
            "getCorporationsCorporationIdAllianceHistory", [corporation_id]
        )

    async def get_icons(self, corporation_id: int) -> Dict[str, str]:
        """Icon URLs keyed by size (``px64x64``, ``px128x128``, ``px256x256``)."""
        return await self._coalescer.request("getCorporationsCorporationIdIcons", [corporation_id])

    async def get_members(self, corporation_id: int, access_token: str) -> List[Dict[str, Any]]:
        """Member character ids; ``access_token`` must belong to a member."""
        return await self._coalescer.request(
            "getCorporationsCorporationIdMembers", [corporation_id], access_token
        )

    async def get_roles(self, corporation_id: int, access_token: str) -> List[Dict[str, Any]]:
        """Members with their roles; needs a personnel manager token."""
        return await self._coalescer.request(
            "getCorporationsCorporationIdRoles", [corporation_id], access_token
        )

    async def get_names_of(self, corporation_ids: Iterable[int]) -> List[Dict[str, Any]]:
        """Resolve ids to ``{"corporation_id", "corporation_name"}`` records."""
        return await self._coalescer.request("getCorporationsNames", [list(corporation_ids)])
