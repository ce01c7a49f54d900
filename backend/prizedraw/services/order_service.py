"""
Order service: checkout, payment completion and the order lifecycle.

An order freezes the ticket numbers of the customer's live reservation at
checkout. Payment status changes are compare-and-set on the expected prior
status so duplicate or out-of-order payment callbacks cannot both apply.

    PENDING -> PROCESSING -> SUCCEEDED / FAILED / CANCELLED
    SUCCEEDED -> REFUNDED
"""

import secrets
import string
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from prizedraw.core.config import get_settings
from prizedraw.core.exceptions import (
    BusinessRuleError,
    NotFoundError,
    PaymentConflictError,
    PermissionDeniedError,
)
from prizedraw.core.logging import get_logger
from prizedraw.models.audit_log import AuditAction
from prizedraw.models.competition import CompetitionStatus
from prizedraw.models.order import Order, PaymentStatus
from prizedraw.services.allocation_service import TicketAllocator
from prizedraw.services.audit_service import record_audit_event
from prizedraw.services.competition_service import get_competition

logger = get_logger(__name__)
settings = get_settings()

ORDER_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits
ORDER_SUFFIX_LENGTH = 4
MAX_ORDER_NUMBER_ATTEMPTS = 5


def generate_order_number(prefix: Optional[str] = None, now: Optional[datetime] = None) -> str:
    """``WTC-20260101-7QX2``: prefix, UTC date, random suffix."""
    now = now or datetime.now(timezone.utc)
    suffix = "".join(secrets.choice(ORDER_SUFFIX_ALPHABET) for _ in range(ORDER_SUFFIX_LENGTH))
    return f"{prefix or settings.ORDER_NUMBER_PREFIX}-{now:%Y%m%d}-{suffix}"


async def _unique_order_number(db: AsyncSession) -> str:
    for _ in range(MAX_ORDER_NUMBER_ATTEMPTS):
        candidate = generate_order_number()
        taken = await db.execute(select(Order.id).where(Order.order_number == candidate))
        if taken.scalar_one_or_none() is None:
            return candidate
    raise RuntimeError("Could not generate a unique order number")


async def get_order(db: AsyncSession, order_id: int) -> Order:
    order = await db.get(Order, order_id, populate_existing=True)
    if order is None:
        raise NotFoundError(f"Order {order_id} not found")
    return order


async def list_user_orders(db: AsyncSession, user_id: int) -> list[Order]:
    result = await db.execute(
        select(Order).where(Order.user_id == user_id).order_by(Order.created_at.desc(), Order.id.desc())
    )
    return list(result.scalars().all())


async def _transition(db: AsyncSession, order: Order, new_status: str, **values) -> None:
    """Guarded PENDING/PROCESSING/... move; raises if the order moved first."""
    current = order.payment_status
    if new_status not in PaymentStatus.TRANSITIONS[current]:
        raise BusinessRuleError(
            f"Cannot move order {order.order_number} from {current} to {new_status}",
            code="INVALID_STATUS_TRANSITION",
        )
    order_id = order.id
    result = await db.execute(
        update(Order)
        .where(Order.id == order_id, Order.payment_status == current)
        .values(payment_status=new_status, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        raise BusinessRuleError(
            f"Order {order_id} changed status concurrently",
            code="INVALID_STATUS_TRANSITION",
        )
    await db.commit()
    await db.refresh(order)
    logger.info("order_status_changed", order_id=order_id, old_status=current, new_status=new_status)


async def _cancel_overlapping_orders(
    db: AsyncSession, competition_id: int, ticket_numbers: set[int]
) -> list[int]:
    """Unpaid orders holding any of these numbers can no longer be paid for."""
    result = await db.execute(
        select(Order).where(
            Order.competition_id == competition_id,
            Order.payment_status.in_(PaymentStatus.OPEN),
        )
    )
    cancelled = []
    for other in result.scalars().all():
        if ticket_numbers.isdisjoint(other.all_ticket_numbers):
            continue
        moved = await db.execute(
            update(Order)
            .where(Order.id == other.id, Order.payment_status.in_(PaymentStatus.OPEN))
            .values(payment_status=PaymentStatus.CANCELLED)
            .execution_options(synchronize_session=False)
        )
        if moved.rowcount:
            cancelled.append(other.id)
    return cancelled


async def create_order(
    db: AsyncSession,
    allocator: TicketAllocator,
    competition_id: int,
    user_id: int,
) -> Order:
    """
    Start checkout for the user's live reservation.

    Raises:
        BusinessRuleError: COMPETITION_NOT_ACTIVE or NO_RESERVATION
    """
    competition = await get_competition(db, competition_id)
    if competition.status != CompetitionStatus.ACTIVE:
        raise BusinessRuleError(
            f"Competition is {competition.status}, not ACTIVE", code="COMPETITION_NOT_ACTIVE"
        )
    ticket_price = Decimal(competition.ticket_price)

    view = await allocator.get_status(db, competition_id, user_id=user_id)
    reservation = view.user_reservation
    if reservation is None or not reservation.ticket_numbers:
        raise BusinessRuleError("No active reservation to check out", code="NO_RESERVATION")

    paid = sorted(reservation.ticket_numbers)
    bonus = sorted(reservation.bonus_numbers)

    cancelled = await _cancel_overlapping_orders(db, competition_id, set(paid) | set(bonus))

    order = Order(
        order_number=await _unique_order_number(db),
        user_id=user_id,
        competition_id=competition_id,
        ticket_count=len(paid),
        bonus_ticket_count=len(bonus),
        ticket_numbers=paid,
        bonus_ticket_numbers=bonus,
        total_amount=ticket_price * len(paid),
        currency=settings.CURRENCY,
        payment_status=PaymentStatus.PENDING,
    )
    db.add(order)
    await db.commit()
    await db.refresh(order)

    logger.info(
        "order_created",
        order_id=order.id,
        order_number=order.order_number,
        competition_id=competition_id,
        user_id=user_id,
        ticket_count=order.ticket_count,
        bonus_ticket_count=order.bonus_ticket_count,
        total_amount=str(order.total_amount),
        superseded_orders=cancelled,
    )
    await record_audit_event(
        db,
        AuditAction.ORDER_CREATED,
        entity="order",
        entity_id=order.id,
        user_id=user_id,
        details={
            "order_number": order.order_number,
            "competition_id": competition_id,
            "ticket_numbers": paid,
            "bonus_numbers": bonus,
            "cancelled_orders": cancelled,
        },
    )
    await db.refresh(order)
    return order


async def mark_processing(db: AsyncSession, order_id: int, payment_reference: Optional[str] = None) -> Order:
    """Checkout session opened with the payment provider."""
    order = await get_order(db, order_id)
    values = {"payment_reference": payment_reference} if payment_reference else {}
    await _transition(db, order, PaymentStatus.PROCESSING, **values)
    return order


async def _payment_on_abandoned_order(
    db: AsyncSession, order: Order, payment_reference: Optional[str]
) -> None:
    """Keep the provider reference for the refund, audit, raise PaymentConflictError."""
    order_id, status = order.id, order.payment_status
    competition_id, user_id = order.competition_id, order.user_id
    ticket_numbers = list(order.ticket_numbers)
    if payment_reference:
        await db.execute(
            update(Order)
            .where(Order.id == order_id, Order.payment_status == status)
            .values(payment_reference=payment_reference)
            .execution_options(synchronize_session=False)
        )
        await db.commit()

    logger.error(
        "payment_on_abandoned_order",
        order_id=order_id,
        order_status=status,
        competition_id=competition_id,
        user_id=user_id,
        payment_reference=payment_reference,
    )
    await record_audit_event(
        db,
        AuditAction.PAYMENT_CONFLICT,
        entity="order",
        entity_id=order_id,
        user_id=user_id,
        details={
            "competition_id": competition_id,
            "ticket_numbers": ticket_numbers,
            "order_status": status,
            "payment_reference": payment_reference,
        },
    )
    raise PaymentConflictError(competition_id, user_id, ticket_numbers)


async def complete_payment(
    db: AsyncSession,
    allocator: TicketAllocator,
    order_id: int,
    payment_reference: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Order:
    """
    Payment succeeded: convert the order's reserved tickets to SOLD.

    Idempotent for an order that already SUCCEEDED. On PaymentConflictError
    the order stays PROCESSING with the payment reference recorded, so it
    can be reconciled (refunded) by hand. A payment landing on a FAILED or
    CANCELLED order is a conflict too: money moved for tickets it no
    longer holds.
    """
    order = await get_order(db, order_id)
    if order.payment_status == PaymentStatus.SUCCEEDED:
        logger.info("payment_already_completed", order_id=order_id)
        return order
    if order.payment_status in PaymentStatus.ABANDONED:
        await _payment_on_abandoned_order(db, order, payment_reference)
    if order.payment_status not in PaymentStatus.OPEN:
        raise BusinessRuleError(
            f"Order {order.order_number} is {order.payment_status}",
            code="INVALID_STATUS_TRANSITION",
        )

    if order.payment_status == PaymentStatus.PENDING:
        await _transition(db, order, PaymentStatus.PROCESSING, payment_reference=payment_reference)
    elif payment_reference:
        order.payment_reference = payment_reference
        await db.commit()

    competition_id = order.competition_id
    user_id = order.user_id
    try:
        result = await allocator.confirm_purchase(
            db,
            competition_id,
            user_id,
            order.ticket_numbers,
            bonus_numbers=order.bonus_ticket_numbers or [],
            order_id=order_id,
            now=now,
        )
    except PaymentConflictError:
        logger.error(
            "payment_conflict",
            order_id=order_id,
            competition_id=competition_id,
            user_id=user_id,
            payment_reference=payment_reference,
        )
        raise

    await db.refresh(order)
    await _transition(
        db,
        order,
        PaymentStatus.SUCCEEDED,
        bonus_ticket_numbers=result.bonus_numbers,
        bonus_ticket_count=len(result.bonus_numbers),
    )
    logger.info(
        "payment_completed",
        order_id=order_id,
        competition_id=competition_id,
        user_id=user_id,
        ticket_count=len(result.ticket_numbers),
        bonus_ticket_count=len(result.bonus_numbers),
    )
    return order


async def fail_payment(db: AsyncSession, allocator: TicketAllocator, order_id: int) -> Order:
    """Payment failed: FAILED and the order's tickets go back to the pool."""
    order = await get_order(db, order_id)
    competition_id, user_id = order.competition_id, order.user_id
    numbers = order.all_ticket_numbers
    await _transition(db, order, PaymentStatus.FAILED)
    await allocator.release(
        db, competition_id, user_id, reason="payment_failed", ticket_numbers=numbers
    )
    await db.refresh(order)
    return order


async def cancel_order(
    db: AsyncSession, allocator: TicketAllocator, order_id: int, user_id: int
) -> Order:
    order = await get_order(db, order_id)
    if order.user_id != user_id:
        raise PermissionDeniedError("Not your order")

    competition_id, order_number = order.competition_id, order.order_number
    numbers = order.all_ticket_numbers
    await _transition(db, order, PaymentStatus.CANCELLED)
    await allocator.release(db, competition_id, user_id, reason="order_cancelled", ticket_numbers=numbers)
    await record_audit_event(
        db,
        AuditAction.ORDER_CANCELLED,
        entity="order",
        entity_id=order_id,
        user_id=user_id,
        details={"order_number": order_number, "competition_id": competition_id},
    )
    await db.refresh(order)
    return order


async def refund_order(db: AsyncSession, order_id: int) -> Order:
    """SUCCEEDED -> REFUNDED. Money handling happens at the payment provider."""
    order = await get_order(db, order_id)
    await _transition(db, order, PaymentStatus.REFUNDED)
    return order
