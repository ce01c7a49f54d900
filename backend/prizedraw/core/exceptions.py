"""
Domain exceptions for the ticket reservation core.

Services raise these; api/errors.py maps them to HTTP responses so the
services stay free of framework types. Every error carries a stable
machine-readable ``code`` next to the human message.
"""

from typing import Iterable, Optional


class DomainError(Exception):
    status_code = 400
    code = "DOMAIN_ERROR"

    def __init__(self, message: str, code: Optional[str] = None):
        self.message = message
        if code is not None:
            self.code = code
        super().__init__(message)


class ValidationError(DomainError):
    """Bad input shape: quantity, ticket numbers, mutually exclusive fields."""

    status_code = 400
    code = "INVALID_REQUEST"


class BusinessRuleError(DomainError):
    """A well-formed request that the business rules reject."""

    # Capacity problems are conflicts; everything else is a plain bad request
    CONFLICT_CODES = frozenset({"SOLD_OUT", "CONTENTION", "TICKETS_UNAVAILABLE"})

    def __init__(self, message: str, code: str):
        super().__init__(message, code)
        self.status_code = 409 if code in self.CONFLICT_CODES else 400


class ConflictError(DomainError):
    """Lost a compare-and-set race for specific ticket numbers."""

    status_code = 409
    code = "TICKET_CONFLICT"

    def __init__(self, competition_id: int, ticket_numbers: Iterable[int], message: Optional[str] = None):
        self.competition_id = competition_id
        self.ticket_numbers = sorted(ticket_numbers)
        super().__init__(
            message or f"Tickets {self.ticket_numbers} in competition {competition_id} changed state concurrently"
        )


class PaymentConflictError(DomainError):
    """Payment went through but the reservation it paid for is gone."""

    status_code = 409
    code = "PAYMENT_CONFLICT"

    def __init__(self, competition_id: int, user_id: int, ticket_numbers: Iterable[int]):
        self.competition_id = competition_id
        self.user_id = user_id
        self.ticket_numbers = sorted(ticket_numbers)
        super().__init__(
            f"Reservation for tickets {self.ticket_numbers} expired or was released before payment completed"
        )


class NotFoundError(DomainError):
    status_code = 404
    code = "NOT_FOUND"


class AlreadyExistsError(DomainError):
    status_code = 409
    code = "ALREADY_EXISTS"


class AuthenticationError(DomainError):
    status_code = 401
    code = "NOT_AUTHENTICATED"


class PermissionDeniedError(DomainError):
    status_code = 403
    code = "FORBIDDEN"
