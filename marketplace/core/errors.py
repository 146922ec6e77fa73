"""
Typed failures raised by the marketplace engine.

Routes never build these by hand; services raise them and the exception
handler registered in ``marketplace.main`` turns them into JSON responses.
"""
from fastapi import Request, status
from fastapi.responses import JSONResponse

from marketplace.core.logging import get_logger

logger = get_logger(__name__)


class MarketplaceError(Exception):
    """Base class for engine failures reported to the caller."""

    code = "marketplace_error"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, reason: str, code: str = None):
        super().__init__(reason)
        self.reason = reason
        if code:
            self.code = code

    def to_dict(self) -> dict:
        return {"error": self.code, "detail": self.reason}


class NotFoundError(MarketplaceError):
    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class NotEligibleError(MarketplaceError):
    """Score below the match threshold, or the RFQ is not accepting this action."""
    code = "not_eligible"
    status_code = status.HTTP_409_CONFLICT


class NotAuthorizedError(NotEligibleError):
    """The actor does not own the record it is acting on."""
    code = "not_authorized"
    status_code = status.HTTP_403_FORBIDDEN


class ConflictError(MarketplaceError):
    code = "conflict"
    status_code = status.HTTP_409_CONFLICT


class InvalidInputError(MarketplaceError):
    code = "invalid_input"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class UpstreamUnavailableError(MarketplaceError):
    """The persistence layer failed and no safe fallback exists."""
    code = "upstream_unavailable"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


async def marketplace_error_handler(request: Request, exc: MarketplaceError) -> JSONResponse:
    """FastAPI exception handler for engine failures."""
    if isinstance(exc, UpstreamUnavailableError):
        logger.error(f"{request.method} {request.url.path} failed: {exc.reason}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())
