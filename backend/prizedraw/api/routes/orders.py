"""
Order endpoints: checkout, payment completion, cancellation, refunds.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from prizedraw.api.deps import get_allocator, require_admin, require_payment_secret
from prizedraw.core.exceptions import PermissionDeniedError
from prizedraw.core.logging import bind_reservation_context
from prizedraw.core.security import get_current_user_id
from prizedraw.db.session import get_db
from prizedraw.models.user import User
from prizedraw.schemas.order import OrderCreate, OrderResponse, PaymentCompletion
from prizedraw.services.allocation_service import TicketAllocator
from prizedraw.services.order_service import (
    cancel_order,
    complete_payment,
    create_order,
    fail_payment,
    get_order,
    list_user_orders,
    mark_processing,
    refund_order,
)

router = APIRouter(prefix="/orders", tags=["Orders"])


@router.post("/", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def create_order_endpoint(
    data: OrderCreate,
    user_id: int = Depends(get_current_user_id),
    allocator: TicketAllocator = Depends(get_allocator),
    db: AsyncSession = Depends(get_db),
):
    """Start checkout for the caller's current reservation."""
    bind_reservation_context(data.competition_id, user_id)
    return await create_order(db, allocator, data.competition_id, user_id)


@router.get("/", response_model=list[OrderResponse])
async def list_orders_endpoint(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return await list_user_orders(db, user_id)


@router.post("/{order_id}/checkout", response_model=OrderResponse)
async def checkout_endpoint(
    order_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Payment session opened: PENDING -> PROCESSING."""
    order = await get_order(db, order_id)
    if order.user_id != user_id:
        raise PermissionDeniedError("Not your order")
    return await mark_processing(db, order_id)


@router.post("/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order_endpoint(
    order_id: int,
    user_id: int = Depends(get_current_user_id),
    allocator: TicketAllocator = Depends(get_allocator),
    db: AsyncSession = Depends(get_db),
):
    return await cancel_order(db, allocator, order_id, user_id)


@router.post(
    "/{order_id}/payment",
    response_model=OrderResponse,
    dependencies=[Depends(require_payment_secret)],
)
async def payment_endpoint(
    order_id: int,
    data: PaymentCompletion,
    allocator: TicketAllocator = Depends(get_allocator),
    db: AsyncSession = Depends(get_db),
):
    """
    Payment completion signal from the checkout integration.
    Requires the X-Payment-Secret header.

    Success converts the reserved tickets to SOLD; a reservation that
    lapsed in the meantime answers 409 PAYMENT_CONFLICT for reconciliation.
    """
    if data.succeeded:
        return await complete_payment(db, allocator, order_id, payment_reference=data.payment_reference)
    return await fail_payment(db, allocator, order_id)


@router.post("/{order_id}/refund", response_model=OrderResponse)
async def refund_endpoint(
    order_id: int,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await refund_order(db, order_id)
