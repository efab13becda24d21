"""
Registry of ESI endpoints the invoker knows how to call.
"""

import string
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Sequence, Tuple

from shared.errors import ValidationError
from ..exceptions import UnknownEndpointError


@dataclass(frozen=True)
class Endpoint:
    """One ESI operation.

    Positional args fill the path placeholders in order; whatever is left
    maps onto ``query`` names. List values are sent comma separated.
    """

    endpoint_id: str
    path: str
    method: str = "GET"
    query: Tuple[str, ...] = ()
    requires_auth: bool = False

    @property
    def path_params(self) -> Tuple[str, ...]:
        return tuple(
            name for _, name, _, _ in string.Formatter().parse(self.path) if name
        )

    def build(self, args: Sequence[Any]) -> Tuple[str, Dict[str, Any]]:
        """Return ``(path, query_params)`` for positional ``args``."""
        names = self.path_params
        expected = len(names) + len(self.query)
        if len(args) != expected:
            raise ValidationError(
                f"{self.endpoint_id} takes {expected} argument(s), got {len(args)}",
                details={"endpoint_id": self.endpoint_id, "args": len(args)},
            )

        path = self.path.format(**dict(zip(names, args)))
        params = {
            name: _query_value(value)
            for name, value in zip(self.query, args[len(names):])
        }
        return path, params


def _query_value(value: Any) -> Any:
    if isinstance(value, (list, tuple, set, frozenset)):
        return ",".join(str(v) for v in value)
    return value


class EndpointRegistry:
    """Endpoint id to :class:`Endpoint` lookup."""

    def __init__(self, endpoints: Optional[Iterable[Endpoint]] = None):
        self._endpoints: Dict[str, Endpoint] = {}
        for endpoint in endpoints if endpoints is not None else DEFAULT_ENDPOINTS:
            self.register(endpoint)

    def register(self, endpoint: Endpoint) -> None:
        self._endpoints[endpoint.endpoint_id] = endpoint

    def get(self, endpoint_id: str) -> Endpoint:
        try:
            return self._endpoints[endpoint_id]
        except KeyError:
            raise UnknownEndpointError(endpoint_id) from None

    def __contains__(self, endpoint_id: str) -> bool:
        return endpoint_id in self._endpoints

    def __iter__(self):
        return iter(self._endpoints.values())


DEFAULT_ENDPOINTS = (
    # Corporation
    Endpoint("getCorporationsCorporationId", "/corporations/{corporation_id}/"),
    Endpoint("getCorporationsCorporationIdAllianceHistory", "/corporations/{corporation_id}/alliancehistory/"),
    Endpoint("getCorporationsCorporationIdIcons", "/corporations/{corporation_id}/icons/"),
    Endpoint("getCorporationsCorporationIdMembers", "/corporations/{corporation_id}/members/", requires_auth=True),
    Endpoint("getCorporationsCorporationIdRoles", "/corporations/{corporation_id}/roles/", requires_auth=True),
    Endpoint("getCorporationsNames", "/corporations/names/", query=("corporation_ids",)),
    # Location
    Endpoint("getCharactersCharacterIdLocation", "/characters/{character_id}/location/", requires_auth=True),
    Endpoint("getCharactersCharacterIdShip", "/characters/{character_id}/ship/", requires_auth=True),
)
