"""
Allocation engine: the only writer path from "customer wants N tickets" to
a reserved set, and from a completed payment to SOLD tickets.

CONCURRENCY STRATEGY
====================

Two layers, each sufficient on its own for correctness of a different scope:

1. Ticket Pool compare-and-set (authoritative, cross-process).
   Every batch transition is one guarded UPDATE; a lost race raises
   ConflictError and nothing from the batch is applied.

2. Per-competition asyncio.Lock (in-process, throughput).
   Requests for the same competition inside one worker queue up instead of
   all selecting the same "lowest available" numbers and all but one
   losing the CAS. Without it a burst of N requests burns N-1 retries per
   round and a small retry bound turns into spurious CONTENTION errors.

Conflicts that still happen (other workers) are retried against a fresh
snapshot, RESERVE_MAX_ATTEMPTS times, with jittered exponential backoff.
On exhaustion the caller gets SOLD_OUT if the pool really is short,
CONTENTION otherwise.

Bonus tickets are allocated after the paid tickets are committed, through
the same path. A bonus failure is logged and never undoes the paid hold.
"""

import asyncio
import random
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Iterable, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from prizedraw.core.config import get_settings
from prizedraw.core.exceptions import (
    BusinessRuleError,
    ConflictError,
    NotFoundError,
    PaymentConflictError,
    ValidationError,
)
from prizedraw.core.logging import get_logger
from prizedraw.core.metrics import (
    record_purchase,
    record_release,
    record_reservation,
    record_reservation_conflict,
    reservation_latency,
)
from prizedraw.models.audit_log import AuditAction
from prizedraw.models.competition import Competition, CompetitionStatus
from prizedraw.services import ticket_pool
from prizedraw.services.audit_service import record_audit_event
from prizedraw.services.bonus import BonusTier, calculate_bonus_tickets, parse_tiers
from prizedraw.services.competition_service import mark_sold_out_if_exhausted
from prizedraw.services.interfaces.reservation_store import Reservation, ReservationStore
from prizedraw.services.store_factory import build_reservation_store

logger = get_logger(__name__)

Transition = Callable[[list[int]], Awaitable[list[int]]]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TicketStatusView:
    competition_id: int
    total_tickets: int
    available_count: int
    unavailable_count: int
    user_reservation: Optional[Reservation] = None


@dataclass(frozen=True)
class PurchaseResult:
    competition_id: int
    user_id: int
    ticket_numbers: list[int]
    bonus_numbers: list[int] = field(default_factory=list)
    missed_bonus_numbers: list[int] = field(default_factory=list)


class TicketAllocator:
    """
    Reserve / release / status / confirm-purchase over the Ticket Pool and
    a ReservationStore.

    One instance per process. Locks are per instance, so tests build their
    own allocator and never share locks across event loops.
    """

    def __init__(
        self,
        store: ReservationStore,
        reservation_ttl: float = 600,
        max_attempts: int = 3,
        retry_backoff: float = 0.005,
        bonus_tiers: Sequence[BonusTier] = (),
        max_tickets_per_request: int = 50,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.store = store
        self.reservation_ttl = reservation_ttl
        self.max_attempts = max_attempts
        self.retry_backoff = retry_backoff
        self.bonus_tiers = list(bonus_tiers)
        self.max_tickets_per_request = max_tickets_per_request
        self._locks: dict[int, asyncio.Lock] = {}

    def _lock_for(self, competition_id: int) -> asyncio.Lock:
        lock = self._locks.get(competition_id)
        if lock is None:
            lock = self._locks[competition_id] = asyncio.Lock()
        return lock

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _validate_request(
        self, quantity: Optional[int], ticket_numbers: Optional[Iterable[int]]
    ) -> tuple[int, Optional[list[int]]]:
        if (quantity is None) == (ticket_numbers is None):
            raise ValidationError("Provide either a quantity or explicit ticket numbers, not both")

        if ticket_numbers is not None:
            numbers = list(ticket_numbers)
            if not numbers:
                raise ValidationError("No ticket numbers given", code="INVALID_TICKET_NUMBERS")
            if len(set(numbers)) != len(numbers):
                raise ValidationError("Duplicate ticket numbers", code="INVALID_TICKET_NUMBERS")
            if any(n <= 0 for n in numbers):
                raise ValidationError("Ticket numbers must be positive", code="INVALID_TICKET_NUMBERS")
            quantity = len(numbers)
        else:
            numbers = None

        if quantity <= 0:
            raise ValidationError("Quantity must be greater than zero", code="INVALID_QUANTITY")
        if quantity > self.max_tickets_per_request:
            raise ValidationError(
                f"At most {self.max_tickets_per_request} tickets per request",
                code="INVALID_QUANTITY",
            )
        return quantity, sorted(numbers) if numbers is not None else None

    async def _get_active_competition(self, db: AsyncSession, competition_id: int) -> Competition:
        competition = await db.get(Competition, competition_id, populate_existing=True)
        if competition is None:
            raise NotFoundError(f"Competition {competition_id} not found")
        if competition.status != CompetitionStatus.ACTIVE:
            raise BusinessRuleError(
                f"Competition is {competition.status}, not ACTIVE",
                code="COMPETITION_NOT_ACTIVE",
            )
        return competition

    # ------------------------------------------------------------------
    # Selection + commit with bounded retry
    # ------------------------------------------------------------------

    async def _allocate(
        self,
        db: AsyncSession,
        competition_id: int,
        quantity: int,
        transition: Transition,
        now: datetime,
        *,
        ticket_numbers: Optional[list[int]] = None,
        user_id: Optional[int] = None,
        exclude: Iterable[int] = (),
    ) -> list[int]:
        """
        Pick numbers and apply `transition` to them; retry on lost races.

        `user_id` makes that user's own unexpired holds selectable.
        Explicit `ticket_numbers` are used verbatim and never retried.
        """
        exclude = list(exclude)

        for attempt in range(1, self.max_attempts + 1):
            if ticket_numbers is not None:
                candidate = ticket_numbers
            else:
                candidate = await ticket_pool.get_available_numbers(
                    db, competition_id, now, limit=quantity, user_id=user_id, exclude=exclude
                )
                if len(candidate) < quantity:
                    raise BusinessRuleError(
                        f"Only {len(candidate)} tickets left, {quantity} requested",
                        code="SOLD_OUT",
                    )

            try:
                return await transition(candidate)
            except ConflictError:
                record_reservation_conflict()
                if ticket_numbers is not None:
                    raise BusinessRuleError(
                        f"Tickets {ticket_numbers} are no longer available",
                        code="TICKETS_UNAVAILABLE",
                    )
                logger.info(
                    "reservation_retry",
                    competition_id=competition_id,
                    attempt=attempt,
                    max_attempts=self.max_attempts,
                )
                if attempt < self.max_attempts:
                    delay = self.retry_backoff * (2 ** (attempt - 1))
                    await asyncio.sleep(delay * random.uniform(0.5, 1.5))

        remaining = await ticket_pool.get_available_numbers(
            db, competition_id, now, limit=quantity, user_id=user_id, exclude=exclude
        )
        logger.warning(
            "reservation_retries_exhausted",
            competition_id=competition_id,
            quantity=quantity,
            remaining=len(remaining),
        )
        if len(remaining) < quantity:
            raise BusinessRuleError(
                f"Only {len(remaining)} tickets left, {quantity} requested", code="SOLD_OUT"
            )
        raise BusinessRuleError(
            "Too many concurrent requests for this competition, please retry", code="CONTENTION"
        )

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def reserve(
        self,
        db: AsyncSession,
        competition_id: int,
        user_id: int,
        quantity: Optional[int] = None,
        ticket_numbers: Optional[Iterable[int]] = None,
        now: Optional[datetime] = None,
    ) -> Reservation:
        """
        Reserve `quantity` lowest-numbered tickets, or exactly `ticket_numbers`.

        Supersedes the user's previous reservation in this competition:
        numbers carried forward keep their row, the rest go back to the pool.

        Raises:
            ValidationError: Bad quantity or ticket numbers
            NotFoundError: Unknown competition
            BusinessRuleError: COMPETITION_NOT_ACTIVE, LIMIT_EXCEEDED,
                SOLD_OUT, TICKETS_UNAVAILABLE or CONTENTION
        """
        started = time.perf_counter()
        try:
            reservation = await self._reserve(db, competition_id, user_id, quantity, ticket_numbers, now)
        except (ValidationError, BusinessRuleError, NotFoundError) as e:
            record_reservation(False)
            logger.info(
                "reservation_rejected",
                competition_id=competition_id,
                user_id=user_id,
                code=e.code,
                reason=e.message,
            )
            raise
        finally:
            reservation_latency.observe(time.perf_counter() - started)

        record_reservation(True)
        await record_audit_event(
            db,
            AuditAction.TICKET_RESERVED,
            entity="competition",
            entity_id=competition_id,
            user_id=user_id,
            details={
                "ticket_numbers": list(reservation.ticket_numbers),
                "bonus_numbers": list(reservation.bonus_numbers),
                "expires_at": reservation.expires_at.isoformat(),
            },
        )
        return reservation

    async def _reserve(
        self,
        db: AsyncSession,
        competition_id: int,
        user_id: int,
        quantity: Optional[int],
        ticket_numbers: Optional[Iterable[int]],
        now: Optional[datetime],
    ) -> Reservation:
        quantity, numbers = self._validate_request(quantity, ticket_numbers)
        competition = await self._get_active_competition(db, competition_id)

        if numbers is not None and numbers[-1] > competition.total_tickets:
            raise ValidationError(
                f"Ticket numbers must be between 1 and {competition.total_tickets}",
                code="INVALID_TICKET_NUMBERS",
            )

        async with self._lock_for(competition_id):
            now = now or utcnow()
            until = now + timedelta(seconds=self.reservation_ttl)

            paid = await ticket_pool.count_user_paid_tickets(db, competition_id, user_id)
            if paid + quantity > competition.max_tickets_per_user:
                raise BusinessRuleError(
                    f"Limit is {competition.max_tickets_per_user} tickets per user; "
                    f"{paid} already bought, {quantity} requested",
                    code="LIMIT_EXCEEDED",
                )

            previous = await ticket_pool.get_user_reserved_numbers(db, competition_id, user_id, now)

            if numbers is not None:
                unavailable = await ticket_pool.find_unavailable(
                    db, competition_id, numbers, now, user_id=user_id
                )
                if unavailable:
                    raise BusinessRuleError(
                        f"Tickets {unavailable} are not available", code="TICKETS_UNAVAILABLE"
                    )
            else:
                available = await ticket_pool.get_available_count(db, competition_id, now)
                if available + len(previous) < quantity:
                    raise BusinessRuleError(
                        f"Only {available + len(previous)} tickets left, {quantity} requested",
                        code="SOLD_OUT",
                    )

            async def reserve_paid(candidate: list[int]) -> list[int]:
                return await ticket_pool.mark_reserved(
                    db, competition_id, candidate, user_id, until, now
                )

            paid_numbers = await self._allocate(
                db, competition_id, quantity, reserve_paid, now,
                ticket_numbers=numbers, user_id=user_id,
            )
            dropped = sorted(set(previous) - set(paid_numbers))
            if dropped:
                await ticket_pool.release(db, competition_id, dropped, user_id=user_id)
            await db.commit()
            if dropped:
                record_release("superseded", len(dropped))

            logger.info(
                "tickets_reserved",
                competition_id=competition_id,
                user_id=user_id,
                ticket_numbers=paid_numbers,
                superseded=dropped,
                expires_at=until.isoformat(),
            )

            bonus_numbers = await self._reserve_bonus(
                db, competition_id, user_id, quantity, paid_numbers, until, now
            )

        expires_at = await self.store.put(
            competition_id,
            user_id,
            paid_numbers,
            self.reservation_ttl,
            bonus_numbers=bonus_numbers,
            now=now,
        )
        return Reservation(
            competition_id=competition_id,
            user_id=user_id,
            ticket_numbers=tuple(paid_numbers),
            bonus_numbers=tuple(bonus_numbers),
            reserved_at=now,
            expires_at=expires_at,
        )

    async def _reserve_bonus(
        self,
        db: AsyncSession,
        competition_id: int,
        user_id: int,
        quantity: int,
        paid_numbers: list[int],
        until: datetime,
        now: datetime,
    ) -> list[int]:
        bonus = calculate_bonus_tickets(quantity, self.bonus_tiers)
        if bonus == 0:
            return []

        async def reserve_bonus(candidate: list[int]) -> list[int]:
            return await ticket_pool.mark_reserved(
                db, competition_id, candidate, user_id, until, now, bonus=True
            )

        try:
            bonus_numbers = await self._allocate(
                db, competition_id, bonus, reserve_bonus, now, exclude=paid_numbers
            )
            await db.commit()
        except BusinessRuleError as e:
            logger.warning(
                "bonus_allocation_failed",
                competition_id=competition_id,
                user_id=user_id,
                bonus=bonus,
                code=e.code,
            )
            return []

        logger.info(
            "bonus_tickets_reserved",
            competition_id=competition_id,
            user_id=user_id,
            ticket_numbers=bonus_numbers,
        )
        return bonus_numbers

    async def release(
        self,
        db: AsyncSession,
        competition_id: int,
        user_id: int,
        now: Optional[datetime] = None,
        reason: str = "user",
        ticket_numbers: Optional[Iterable[int]] = None,
    ) -> int:
        """
        Drop the user's reservation. Idempotent: releasing nothing is fine.
        Only rows still RESERVED by this user are touched, so a concurrent
        payment or sweep wins without error.

        With `ticket_numbers` only those tickets are released, and the store
        entry is dropped only if it still points at them. Orders use this so
        a stale order never releases a newer reservation.

        Returns:
            Number of tickets returned to the pool
        """
        now = now or utcnow()
        reservation = await self.store.get(competition_id, user_id, now=now)
        if ticket_numbers is not None:
            numbers = set(ticket_numbers)
            drop_entry = reservation is not None and not numbers.isdisjoint(reservation.all_numbers)
        else:
            numbers = set(reservation.all_numbers) if reservation else set()
            numbers.update(await ticket_pool.get_user_reserved_numbers(db, competition_id, user_id, now))
            drop_entry = True

        released = await ticket_pool.release_numbers(db, competition_id, numbers, user_id=user_id)
        await db.commit()
        if drop_entry:
            await self.store.remove(competition_id, user_id)

        logger.info(
            "reservation_released",
            competition_id=competition_id,
            user_id=user_id,
            released=len(released),
            reason=reason,
        )
        if released:
            record_release(reason, len(released))
            await record_audit_event(
                db,
                AuditAction.TICKET_RELEASED,
                entity="competition",
                entity_id=competition_id,
                user_id=user_id,
                details={"ticket_numbers": released, "released": len(released), "reason": reason},
            )
        return len(released)

    async def get_status(
        self,
        db: AsyncSession,
        competition_id: int,
        user_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> TicketStatusView:
        """
        Availability of a competition plus the caller's current reservation.

        The reservation comes from the store; the Ticket Pool has the last
        word, so a store entry whose rows were sold, released or expired
        is trimmed, and rows the store lost are reported from the pool.
        """
        competition = await db.get(Competition, competition_id, populate_existing=True)
        if competition is None:
            raise NotFoundError(f"Competition {competition_id} not found")

        now = now or utcnow()
        available = await ticket_pool.get_available_count(db, competition_id, now)

        user_reservation = None
        if user_id is not None:
            user_reservation = await self._current_reservation(db, competition_id, user_id, now)

        return TicketStatusView(
            competition_id=competition_id,
            total_tickets=competition.total_tickets,
            available_count=available,
            unavailable_count=competition.total_tickets - available,
            user_reservation=user_reservation,
        )

    async def _current_reservation(
        self, db: AsyncSession, competition_id: int, user_id: int, now: datetime
    ) -> Optional[Reservation]:
        held = await ticket_pool.get_user_holds(db, competition_id, user_id, now)
        reservation = await self.store.get(competition_id, user_id, now=now)
        if not held:
            return None

        held_numbers = {hold.ticket_number for hold in held}
        if reservation is not None and set(reservation.all_numbers) == held_numbers:
            return reservation

        logger.info(
            "reservation_store_out_of_sync",
            competition_id=competition_id,
            user_id=user_id,
            store_numbers=reservation.all_numbers if reservation else [],
            pool_numbers=sorted(held_numbers),
        )
        expires_at = min(hold.reserved_until for hold in held)
        return Reservation(
            competition_id=competition_id,
            user_id=user_id,
            ticket_numbers=tuple(h.ticket_number for h in held if not h.is_bonus),
            bonus_numbers=tuple(h.ticket_number for h in held if h.is_bonus),
            reserved_at=reservation.reserved_at if reservation else now,
            expires_at=expires_at,
        )

    async def confirm_purchase(
        self,
        db: AsyncSession,
        competition_id: int,
        user_id: int,
        ticket_numbers: Iterable[int],
        bonus_numbers: Iterable[int] = (),
        order_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> PurchaseResult:
        """
        Payment succeeded: RESERVED -> SOLD for the user's own live hold.

        Paid tickets are all or nothing. Bonus tickets are converted after
        the paid ones are committed; any that lapsed in between are skipped.

        Raises:
            PaymentConflictError: A paid ticket expired, was released or
                belongs to someone else. Money has moved; the caller must
                reconcile.
        """
        now = now or utcnow()
        numbers = sorted(ticket_numbers)
        bonus = sorted(bonus_numbers)

        try:
            await ticket_pool.mark_sold(db, competition_id, numbers, user_id, now, order_id=order_id)
            await db.commit()
        except ConflictError as e:
            record_purchase(False)
            logger.error(
                "purchase_conflict",
                competition_id=competition_id,
                user_id=user_id,
                order_id=order_id,
                ticket_numbers=numbers,
            )
            await record_audit_event(
                db,
                AuditAction.PAYMENT_CONFLICT,
                entity="order" if order_id is not None else "competition",
                entity_id=order_id if order_id is not None else competition_id,
                user_id=user_id,
                details={"competition_id": competition_id, "ticket_numbers": numbers},
            )
            raise PaymentConflictError(competition_id, user_id, numbers) from e

        bonus_sold = await self._confirm_bonus(db, competition_id, user_id, bonus, order_id, now)
        missed = sorted(set(bonus) - set(bonus_sold))

        await self.store.remove(competition_id, user_id)
        record_purchase(True)
        logger.info(
            "tickets_purchased",
            competition_id=competition_id,
            user_id=user_id,
            order_id=order_id,
            ticket_numbers=numbers,
            bonus_numbers=bonus_sold,
            missed_bonus=missed,
        )
        await record_audit_event(
            db,
            AuditAction.TICKET_PURCHASED,
            entity="order" if order_id is not None else "competition",
            entity_id=order_id if order_id is not None else competition_id,
            user_id=user_id,
            details={
                "competition_id": competition_id,
                "ticket_numbers": numbers,
                "bonus_numbers": bonus_sold,
            },
        )
        await mark_sold_out_if_exhausted(db, competition_id, now=now)

        return PurchaseResult(
            competition_id=competition_id,
            user_id=user_id,
            ticket_numbers=numbers,
            bonus_numbers=bonus_sold,
            missed_bonus_numbers=missed,
        )

    async def _confirm_bonus(
        self,
        db: AsyncSession,
        competition_id: int,
        user_id: int,
        bonus: list[int],
        order_id: Optional[int],
        now: datetime,
    ) -> list[int]:
        if not bonus:
            return []
        try:
            sold = await ticket_pool.mark_sold(db, competition_id, bonus, user_id, now, order_id=order_id)
            await db.commit()
            return sold
        except ConflictError:
            pass

        still_held = set(await ticket_pool.get_user_reserved_numbers(db, competition_id, user_id, now))
        remaining = [n for n in bonus if n in still_held]
        logger.warning(
            "bonus_purchase_partial",
            competition_id=competition_id,
            user_id=user_id,
            requested=bonus,
            still_held=remaining,
        )
        if not remaining:
            return []
        try:
            sold = await ticket_pool.mark_sold(db, competition_id, remaining, user_id, now, order_id=order_id)
            await db.commit()
            return sold
        except ConflictError:
            return []

    async def grant_free_entry(
        self,
        db: AsyncSession,
        competition_id: int,
        user_id: int,
        quantity: int = 1,
        now: Optional[datetime] = None,
    ) -> list[int]:
        """Allocate the lowest available numbers straight to FREE_ENTRY."""
        quantity, _ = self._validate_request(quantity, None)
        await self._get_active_competition(db, competition_id)

        async with self._lock_for(competition_id):
            now = now or utcnow()

            async def to_free_entry(candidate: list[int]) -> list[int]:
                return await ticket_pool.mark_free_entry(db, competition_id, candidate, user_id, now)

            numbers = await self._allocate(db, competition_id, quantity, to_free_entry, now)
            await db.commit()

        logger.info(
            "free_entry_granted",
            competition_id=competition_id,
            user_id=user_id,
            ticket_numbers=numbers,
        )
        await record_audit_event(
            db,
            AuditAction.FREE_ENTRY_GRANTED,
            entity="competition",
            entity_id=competition_id,
            user_id=user_id,
            details={"ticket_numbers": numbers},
        )
        await mark_sold_out_if_exhausted(db, competition_id, now=now)
        return numbers


_allocator: Optional[TicketAllocator] = None


def build_allocator(store: Optional[ReservationStore] = None) -> TicketAllocator:
    settings = get_settings()
    return TicketAllocator(
        store=store or build_reservation_store(),
        reservation_ttl=settings.RESERVATION_TTL_SECONDS,
        max_attempts=settings.RESERVE_MAX_ATTEMPTS,
        retry_backoff=settings.RESERVE_RETRY_BACKOFF_SECONDS,
        bonus_tiers=parse_tiers(settings.BONUS_TIERS),
        max_tickets_per_request=settings.MAX_TICKETS_PER_REQUEST,
    )


def get_allocator() -> TicketAllocator:
    """Process-wide allocator (FastAPI dependency)."""
    global _allocator
    if _allocator is None:
        _allocator = build_allocator()
    return _allocator
