"""
Exceptions raised by the ESI coalescing cache and its invoker.
"""

from typing import Any, Dict, Optional, TYPE_CHECKING

from shared.errors import AccessLayerException

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from .caching.freshness import FreshnessMetadata


class RemoteError(AccessLayerException):
    """An error outcome reported by the remote API.

    ``payload`` is passed through verbatim from the invoker. The error is
    cached and replayed like a successful result, so ``metadata`` (the
    freshness headers of the failed response) decides how long it is kept.
    """

    status_code = 502

    def __init__(
        self,
        payload: Any,
        metadata: Optional["FreshnessMetadata"] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.payload = payload
        self.metadata = metadata
        details = dict(details or {})
        upstream_status = getattr(metadata, "status_code", None)
        if upstream_status is not None:
            details.setdefault("upstream_status", upstream_status)
            # Upstream 4xx are relayed as-is, everything else is a bad gateway
            if 400 <= upstream_status < 500:
                self.status_code = upstream_status
        super().__init__("REMOTE_ERROR", str(payload), details)

    @classmethod
    def wrap(cls, exc: BaseException) -> "RemoteError":
        """Fold a failure that never reached the API into a RemoteError.

        The result has no freshness metadata, so it is never reused. Access
        layer errors keep their code, details and HTTP status.
        """
        details: Dict[str, Any] = {"exception": type(exc).__name__}
        if isinstance(exc, AccessLayerException):
            details.update(exc.details)
            details["code"] = exc.code
            error = cls(exc.message, details=details)
            error.status_code = exc.status_code
            return error
        return cls(str(exc) or type(exc).__name__, details=details)


class InternalCoordinationError(AccessLayerException):
    """A cache store invariant was violated.

    Indicates a defect, never retried. The coalescer contains it and falls
    back to notifying only the caller that triggered the miss.
    """

    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("INTERNAL_COORDINATION_ERROR", message, details)


class UnknownEndpointError(AccessLayerException):
    """No binding is registered for an endpoint id."""

    status_code = 404

    def __init__(self, endpoint_id: str):
        self.endpoint_id = endpoint_id
        super().__init__(
            "UNKNOWN_ENDPOINT",
            f"No ESI endpoint registered as '{endpoint_id}'",
            {"endpoint_id": endpoint_id},
        )
