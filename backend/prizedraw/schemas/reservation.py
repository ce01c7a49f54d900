"""
Pydantic schemas for ticket reservation requests and responses.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


class ReserveRequest(BaseModel):
    """
    Either `quantity` (lowest free numbers) or explicit `ticket_numbers`.
    Range and exclusivity checks live in the allocator so they come back
    with a reason code.
    """

    competition_id: int
    quantity: Optional[int] = None
    ticket_numbers: Optional[list[int]] = Field(None, max_length=500)


class ReservationResponse(BaseModel):
    competition_id: int
    user_id: int
    ticket_numbers: list[int]
    bonus_numbers: list[int] = []
    reserved_at: datetime
    expires_at: datetime

    @classmethod
    def from_reservation(cls, reservation) -> "ReservationResponse":
        return cls(
            competition_id=reservation.competition_id,
            user_id=reservation.user_id,
            ticket_numbers=list(reservation.ticket_numbers),
            bonus_numbers=list(reservation.bonus_numbers),
            reserved_at=reservation.reserved_at,
            expires_at=reservation.expires_at,
        )


class CompetitionRef(BaseModel):
    competition_id: int


class TicketStatusResponse(BaseModel):
    competition_id: int
    total_tickets: int
    available_count: int
    unavailable_count: int
    user_reservation: Optional[ReservationResponse] = None


class ReleaseResponse(BaseModel):
    competition_id: int
    released: int


class FreeEntryRequest(BaseModel):
    competition_id: int
    user_id: int
    quantity: int = Field(default=1, gt=0)


class FreeEntryResponse(BaseModel):
    competition_id: int
    user_id: int
    ticket_numbers: list[int]
