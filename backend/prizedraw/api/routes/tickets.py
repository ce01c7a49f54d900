"""
Ticket reservation endpoints.

All writes go through the TicketAllocator; see services/allocation_service.py
for the concurrency strategy.
"""

from typing import Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from prizedraw.api.deps import get_allocator, require_admin
from prizedraw.db.session import get_db
from prizedraw.models.user import User
from prizedraw.schemas.reservation import (
    CompetitionRef,
    FreeEntryRequest,
    FreeEntryResponse,
    ReleaseResponse,
    ReservationResponse,
    ReserveRequest,
    TicketStatusResponse,
)
from prizedraw.services.allocation_service import TicketAllocator
from prizedraw.core.security import get_current_user_id, get_optional_user_id
from prizedraw.core.logging import bind_reservation_context

router = APIRouter(prefix="/tickets", tags=["Tickets"])


@router.post("/reserve", response_model=ReservationResponse, status_code=status.HTTP_201_CREATED)
async def reserve_tickets(
    data: ReserveRequest,
    user_id: int = Depends(get_current_user_id),
    allocator: TicketAllocator = Depends(get_allocator),
    db: AsyncSession = Depends(get_db),
):
    """
    Reserve tickets for ten minutes (RESERVATION_TTL_SECONDS).

    Replaces the caller's previous reservation in the competition. Qualifying
    quantities earn bonus tickets, reserved alongside when capacity allows.
    """
    bind_reservation_context(data.competition_id, user_id)
    reservation = await allocator.reserve(
        db,
        data.competition_id,
        user_id,
        quantity=data.quantity,
        ticket_numbers=data.ticket_numbers,
    )
    return ReservationResponse.from_reservation(reservation)


@router.post("/release", response_model=ReleaseResponse)
async def release_tickets(
    data: CompetitionRef,
    user_id: int = Depends(get_current_user_id),
    allocator: TicketAllocator = Depends(get_allocator),
    db: AsyncSession = Depends(get_db),
):
    """Give the caller's reserved tickets back. Safe to repeat."""
    bind_reservation_context(data.competition_id, user_id)
    released = await allocator.release(db, data.competition_id, user_id)
    return ReleaseResponse(competition_id=data.competition_id, released=released)


@router.post("/status", response_model=TicketStatusResponse)
async def ticket_status(
    data: CompetitionRef,
    user_id: Optional[int] = Depends(get_optional_user_id),
    allocator: TicketAllocator = Depends(get_allocator),
    db: AsyncSession = Depends(get_db),
):
    """Availability counts; signed-in callers also get their reservation."""
    view = await allocator.get_status(db, data.competition_id, user_id=user_id)
    return TicketStatusResponse(
        competition_id=view.competition_id,
        total_tickets=view.total_tickets,
        available_count=view.available_count,
        unavailable_count=view.unavailable_count,
        user_reservation=(
            ReservationResponse.from_reservation(view.user_reservation)
            if view.user_reservation
            else None
        ),
    )


@router.post("/free-entry", response_model=FreeEntryResponse, status_code=status.HTTP_201_CREATED)
async def grant_free_entry(
    data: FreeEntryRequest,
    admin: User = Depends(require_admin),
    allocator: TicketAllocator = Depends(get_allocator),
    db: AsyncSession = Depends(get_db),
):
    """Record postal / free-route entries. Admin only."""
    bind_reservation_context(data.competition_id, data.user_id)
    numbers = await allocator.grant_free_entry(db, data.competition_id, data.user_id, data.quantity)
    return FreeEntryResponse(competition_id=data.competition_id, user_id=data.user_id, ticket_numbers=numbers)
