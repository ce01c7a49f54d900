"""
Ticket Pool: the authoritative per-number ticket state of every competition.

CONCURRENCY STRATEGY: Compare-and-set per batch
===============================================

Problem:
  Two customers select the same free ticket numbers at the same time.
  Both see them AVAILABLE, both write RESERVED, the later one silently
  steals the earlier one's hold.

Solution:
  Every transition is a single guarded UPDATE that names the expected
  prior state in its WHERE clause:

    UPDATE tickets SET status = 'RESERVED', user_id = :u, reserved_until = :until
    WHERE competition_id = :c AND ticket_number IN (:numbers)
      AND (status = 'AVAILABLE' OR (status = 'RESERVED' AND reserved_until <= :now))

  If rows_affected differs from the batch size, another transaction got
  there first for at least one number: the session is rolled back and
  ConflictError raised, so a batch is never left half-applied.

  The row lock taken by the UPDATE serializes writers per ticket number;
  the losing writer re-evaluates the WHERE clause after the winner commits
  and matches fewer rows. No SELECT FOR UPDATE, no table locks.

  A RESERVED row past its `reserved_until` is treated as AVAILABLE by every
  read and every guard here, so correctness never depends on the expiry
  sweep having run.

Functions here never commit. Callers own the transaction boundary; the
one thing done on their behalf is the rollback that undoes a lost race.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Optional

from sqlalchemy import and_, func, insert, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from prizedraw.core.exceptions import ConflictError
from prizedraw.core.logging import get_logger
from prizedraw.models.ticket import Ticket, TicketStatus

logger = get_logger(__name__)

INSERT_BATCH_SIZE = 5000


@dataclass(frozen=True)
class TicketCounts:
    total: int
    available: int  # includes expired reservations
    reserved: int  # unexpired only
    sold: int
    free_entry: int

    @property
    def unavailable(self) -> int:
        return self.total - self.available


@dataclass(frozen=True)
class ExpiredHold:
    competition_id: int
    user_id: Optional[int]
    ticket_numbers: tuple
    released: int


@dataclass(frozen=True)
class UserHold:
    ticket_number: int
    is_bonus: bool
    reserved_until: datetime


@dataclass(frozen=True)
class DrawEntry:
    ticket_number: int
    user_id: Optional[int]
    status: str


def _normalize(ticket_numbers: Iterable[int]) -> list[int]:
    return sorted(set(int(n) for n in ticket_numbers))


def _as_utc(value: datetime) -> datetime:
    # Some drivers (SQLite) hand back naive datetimes; everything stored is UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _available_clause(now: datetime, user_id: Optional[int] = None):
    """AVAILABLE, or RESERVED but expired; optionally also `user_id`'s own holds."""
    conditions = [
        Ticket.status == TicketStatus.AVAILABLE,
        and_(Ticket.status == TicketStatus.RESERVED, Ticket.reserved_until <= now),
    ]
    if user_id is not None:
        conditions.append(and_(Ticket.status == TicketStatus.RESERVED, Ticket.user_id == user_id))
    return or_(*conditions)


async def _compare_and_set(
    db: AsyncSession,
    competition_id: int,
    ticket_numbers: list[int],
    condition,
    values: dict,
) -> None:
    result = await db.execute(
        update(Ticket)
        .where(
            Ticket.competition_id == competition_id,
            Ticket.ticket_number.in_(ticket_numbers),
            condition,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != len(ticket_numbers):
        logger.info(
            "ticket_cas_conflict",
            competition_id=competition_id,
            requested=len(ticket_numbers),
            matched=result.rowcount,
        )
        await db.rollback()
        raise ConflictError(competition_id, ticket_numbers)


async def create_ticket_pool(db: AsyncSession, competition_id: int, total_tickets: int) -> None:
    """Insert tickets 1..total_tickets, all AVAILABLE."""
    for start in range(1, total_tickets + 1, INSERT_BATCH_SIZE):
        stop = min(start + INSERT_BATCH_SIZE, total_tickets + 1)
        await db.execute(
            insert(Ticket),
            [
                {
                    "competition_id": competition_id,
                    "ticket_number": number,
                    "status": TicketStatus.AVAILABLE,
                    "is_bonus": False,
                }
                for number in range(start, stop)
            ],
        )
    logger.info("ticket_pool_created", competition_id=competition_id, total_tickets=total_tickets)


async def get_available_count(db: AsyncSession, competition_id: int, now: datetime) -> int:
    result = await db.execute(
        select(func.count())
        .select_from(Ticket)
        .where(Ticket.competition_id == competition_id, _available_clause(now))
    )
    return result.scalar_one()


async def get_available_numbers(
    db: AsyncSession,
    competition_id: int,
    now: datetime,
    limit: Optional[int] = None,
    user_id: Optional[int] = None,
    exclude: Iterable[int] = (),
) -> list[int]:
    """
    Lowest-first snapshot of biddable numbers.
    With `user_id`, that user's own unexpired holds count as biddable too.
    """
    query = (
        select(Ticket.ticket_number)
        .where(Ticket.competition_id == competition_id, _available_clause(now, user_id))
        .order_by(Ticket.ticket_number.asc())
    )
    excluded = _normalize(exclude)
    if excluded:
        query = query.where(Ticket.ticket_number.not_in(excluded))
    if limit is not None:
        query = query.limit(limit)
    result = await db.execute(query)
    return list(result.scalars().all())


async def find_unavailable(
    db: AsyncSession,
    competition_id: int,
    ticket_numbers: Iterable[int],
    now: datetime,
    user_id: Optional[int] = None,
) -> list[int]:
    """Numbers from `ticket_numbers` that cannot be reserved by `user_id` right now."""
    wanted = _normalize(ticket_numbers)
    result = await db.execute(
        select(Ticket.ticket_number).where(
            Ticket.competition_id == competition_id,
            Ticket.ticket_number.in_(wanted),
            _available_clause(now, user_id),
        )
    )
    biddable = set(result.scalars().all())
    return [n for n in wanted if n not in biddable]


async def get_user_reserved_numbers(
    db: AsyncSession, competition_id: int, user_id: int, now: datetime
) -> list[int]:
    result = await db.execute(
        select(Ticket.ticket_number)
        .where(
            Ticket.competition_id == competition_id,
            Ticket.user_id == user_id,
            Ticket.status == TicketStatus.RESERVED,
            Ticket.reserved_until > now,
        )
        .order_by(Ticket.ticket_number.asc())
    )
    return list(result.scalars().all())


async def get_user_holds(
    db: AsyncSession, competition_id: int, user_id: int, now: datetime
) -> list[UserHold]:
    result = await db.execute(
        select(Ticket.ticket_number, Ticket.is_bonus, Ticket.reserved_until)
        .where(
            Ticket.competition_id == competition_id,
            Ticket.user_id == user_id,
            Ticket.status == TicketStatus.RESERVED,
            Ticket.reserved_until > now,
        )
        .order_by(Ticket.ticket_number.asc())
    )
    return [
        UserHold(ticket_number=n, is_bonus=bool(b), reserved_until=_as_utc(until))
        for n, b, until in result.all()
    ]


async def count_user_paid_tickets(db: AsyncSession, competition_id: int, user_id: int) -> int:
    """Non-bonus SOLD tickets, the ones that count against the per-user limit."""
    result = await db.execute(
        select(func.count())
        .select_from(Ticket)
        .where(
            Ticket.competition_id == competition_id,
            Ticket.user_id == user_id,
            Ticket.status == TicketStatus.SOLD,
            Ticket.is_bonus.is_(False),
        )
    )
    return result.scalar_one()


async def count_by_status(db: AsyncSession, competition_id: int, now: datetime) -> TicketCounts:
    rows = await db.execute(
        select(Ticket.status, func.count())
        .where(Ticket.competition_id == competition_id)
        .group_by(Ticket.status)
    )
    by_status = {status: count for status, count in rows.all()}

    expired = (
        await db.execute(
            select(func.count())
            .select_from(Ticket)
            .where(
                Ticket.competition_id == competition_id,
                Ticket.status == TicketStatus.RESERVED,
                Ticket.reserved_until <= now,
            )
        )
    ).scalar_one()

    reserved_rows = by_status.get(TicketStatus.RESERVED, 0)
    return TicketCounts(
        total=sum(by_status.values()),
        available=by_status.get(TicketStatus.AVAILABLE, 0) + expired,
        reserved=reserved_rows - expired,
        sold=by_status.get(TicketStatus.SOLD, 0),
        free_entry=by_status.get(TicketStatus.FREE_ENTRY, 0),
    )


async def mark_reserved(
    db: AsyncSession,
    competition_id: int,
    ticket_numbers: Iterable[int],
    user_id: int,
    until: datetime,
    now: datetime,
    bonus: bool = False,
) -> list[int]:
    """
    AVAILABLE (or expired RESERVED, or already held by `user_id`) -> RESERVED.
    All or nothing: raises ConflictError if any number is held by someone else.
    """
    numbers = _normalize(ticket_numbers)
    if not numbers:
        return numbers
    await _compare_and_set(
        db,
        competition_id,
        numbers,
        _available_clause(now, user_id),
        {
            "status": TicketStatus.RESERVED,
            "user_id": user_id,
            "reserved_until": until,
            "order_id": None,
            "is_bonus": bonus,
        },
    )
    return numbers


async def mark_sold(
    db: AsyncSession,
    competition_id: int,
    ticket_numbers: Iterable[int],
    user_id: int,
    now: datetime,
    order_id: Optional[int] = None,
) -> list[int]:
    """
    RESERVED -> SOLD, only for `user_id`'s own unexpired hold.
    Raises ConflictError if any number expired, was released or belongs to
    someone else; the caller decides what that means for the payment.
    """
    numbers = _normalize(ticket_numbers)
    if not numbers:
        return numbers
    await _compare_and_set(
        db,
        competition_id,
        numbers,
        and_(
            Ticket.status == TicketStatus.RESERVED,
            Ticket.user_id == user_id,
            Ticket.reserved_until > now,
        ),
        {
            "status": TicketStatus.SOLD,
            "reserved_until": None,
            "order_id": order_id,
        },
    )
    return numbers


async def mark_free_entry(
    db: AsyncSession,
    competition_id: int,
    ticket_numbers: Iterable[int],
    user_id: int,
    now: datetime,
) -> list[int]:
    """AVAILABLE (or expired RESERVED) -> FREE_ENTRY for `user_id`. All or nothing."""
    numbers = _normalize(ticket_numbers)
    if not numbers:
        return numbers
    await _compare_and_set(
        db,
        competition_id,
        numbers,
        _available_clause(now),
        {
            "status": TicketStatus.FREE_ENTRY,
            "user_id": user_id,
            "reserved_until": None,
            "order_id": None,
            "is_bonus": False,
        },
    )
    return numbers


async def release(
    db: AsyncSession,
    competition_id: int,
    ticket_numbers: Iterable[int],
    user_id: Optional[int] = None,
) -> int:
    """
    RESERVED -> AVAILABLE. Idempotent: numbers that are no longer RESERVED
    (or, with `user_id`, no longer held by that user) are skipped.
    Returns how many tickets actually went back to the pool.
    """
    return len(await release_numbers(db, competition_id, ticket_numbers, user_id=user_id))


async def release_numbers(
    db: AsyncSession,
    competition_id: int,
    ticket_numbers: Iterable[int],
    user_id: Optional[int] = None,
) -> list[int]:
    """Same as `release`, but returns the numbers that went back to the pool."""
    numbers = _normalize(ticket_numbers)
    if not numbers:
        return []
    query = update(Ticket).where(
        Ticket.competition_id == competition_id,
        Ticket.ticket_number.in_(numbers),
        Ticket.status == TicketStatus.RESERVED,
    )
    if user_id is not None:
        query = query.where(Ticket.user_id == user_id)
    result = await db.execute(
        query.values(
            status=TicketStatus.AVAILABLE,
            user_id=None,
            reserved_until=None,
            is_bonus=False,
        )
        .returning(Ticket.ticket_number)
        .execution_options(synchronize_session=False)
    )
    return sorted(result.scalars().all())


async def release_expired(
    db: AsyncSession,
    now: datetime,
    competition_id: Optional[int] = None,
) -> list[ExpiredHold]:
    """
    Return every expired RESERVED ticket to AVAILABLE, grouped by holder.
    The UPDATE re-checks expiry, so a hold renewed in the meantime survives.
    """
    query = select(Ticket.competition_id, Ticket.user_id, Ticket.ticket_number).where(
        Ticket.status == TicketStatus.RESERVED,
        Ticket.reserved_until <= now,
    )
    if competition_id is not None:
        query = query.where(Ticket.competition_id == competition_id)
    rows = (await db.execute(query.order_by(Ticket.competition_id, Ticket.ticket_number))).all()

    groups: dict[tuple, list[int]] = {}
    for cid, uid, number in rows:
        groups.setdefault((cid, uid), []).append(number)

    holds = []
    for (cid, uid), numbers in groups.items():
        result = await db.execute(
            update(Ticket)
            .where(
                Ticket.competition_id == cid,
                Ticket.ticket_number.in_(numbers),
                Ticket.status == TicketStatus.RESERVED,
                Ticket.reserved_until <= now,
            )
            .values(
                status=TicketStatus.AVAILABLE,
                user_id=None,
                reserved_until=None,
                is_bonus=False,
            )
            .execution_options(synchronize_session=False)
        )
        holds.append(
            ExpiredHold(
                competition_id=cid,
                user_id=uid,
                ticket_numbers=tuple(numbers),
                released=result.rowcount,
            )
        )
    return holds


async def list_draw_entries(db: AsyncSession, competition_id: int) -> list[DrawEntry]:
    """Every ticket eligible for the draw: SOLD or FREE_ENTRY."""
    result = await db.execute(
        select(Ticket.ticket_number, Ticket.user_id, Ticket.status)
        .where(
            Ticket.competition_id == competition_id,
            Ticket.status.in_([TicketStatus.SOLD, TicketStatus.FREE_ENTRY]),
        )
        .order_by(Ticket.ticket_number.asc())
    )
    return [DrawEntry(ticket_number=n, user_id=u, status=s) for n, u, s in result.all()]
