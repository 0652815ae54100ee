from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from hall_booking.core.logging_config import get_logger

logger = get_logger()


class ReservationError(Exception):
    """Base class for every business error the engine reports to callers."""

    kind = "error"

    def __init__(self, message: str, status_code: int = 400) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class NotFound(ReservationError):
    kind = "not_found"

    def __init__(self, message: str) -> None:
        super().__init__(message, 404)


class Conflict(ReservationError):
    kind = "conflict"

    def __init__(self, message: str) -> None:
        super().__init__(message, 409)


class InvalidState(ReservationError):
    kind = "invalid_state"

    def __init__(self, message: str) -> None:
        super().__init__(message, 400)


class PolicyViolation(ReservationError):
    kind = "policy_violation"

    def __init__(self, message: str) -> None:
        super().__init__(message, 400)


class UpstreamFailure(ReservationError):
    """Gateway or store unavailable. Safe to retry with the same call."""

    kind = "upstream_failure"

    def __init__(self, message: str) -> None:
        super().__init__(message, 502)


# ---------------------------------------------------------------------
# FASTAPI HANDLERS
# ---------------------------------------------------------------------
async def reservation_error_handler(request: Request, exc: ReservationError) -> JSONResponse:
    if isinstance(exc, UpstreamFailure):
        logger.error(f"UPSTREAM: {request.url} -> {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": exc.kind},
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.opt(exception=exc).error(f"UNHANDLED: {request.url}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ReservationError, reservation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
