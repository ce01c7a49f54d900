"""
Exception handlers mapping domain errors to HTTP responses.

Bodies are ``{"detail": ..., "code": ...}`` so clients can branch on the
reason code (SOLD_OUT, LIMIT_EXCEEDED, ...) without parsing messages.
"""

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from prizedraw.core.exceptions import (
    ConflictError,
    DomainError,
    PaymentConflictError,
)
from prizedraw.core.logging import get_logger

logger = get_logger(__name__)


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    logger.warning(
        "domain_error",
        code=exc.code,
        status_code=exc.status_code,
        detail=exc.message,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
    )


async def conflict_error_handler(request: Request, exc: ConflictError) -> JSONResponse:
    # Normally retried inside the allocator; reaching here means a direct pool call lost a race
    logger.warning(
        "ticket_conflict",
        competition_id=exc.competition_id,
        ticket_numbers=exc.ticket_numbers,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code, "ticket_numbers": exc.ticket_numbers},
    )


async def payment_conflict_handler(request: Request, exc: PaymentConflictError) -> JSONResponse:
    logger.error(
        "payment_conflict_unresolved",
        competition_id=exc.competition_id,
        user_id=exc.user_id,
        ticket_numbers=exc.ticket_numbers,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code, "ticket_numbers": exc.ticket_numbers},
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_exception", error=str(exc))
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error", "code": "INTERNAL_ERROR"},
    )


EXCEPTION_HANDLERS = {
    PaymentConflictError: payment_conflict_handler,
    ConflictError: conflict_error_handler,
    DomainError: domain_error_handler,
    Exception: unhandled_error_handler,
}


def register_exception_handlers(app: FastAPI) -> None:
    for exception_class, handler in EXCEPTION_HANDLERS.items():
        app.add_exception_handler(exception_class, handler)
