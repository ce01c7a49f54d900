"""
Competition service: creation with its ticket pool, listing, lifecycle
transitions and the draw.

Status changes are compare-and-set on the expected prior status, the same
way ticket transitions are, so two admins (or an admin and the automatic
SOLD_OUT check) cannot both move a competition from the same state.
"""

import secrets
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from prizedraw.core.exceptions import BusinessRuleError, NotFoundError, ValidationError
from prizedraw.core.logging import get_logger
from prizedraw.models.audit_log import AuditAction
from prizedraw.models.competition import Competition, CompetitionStatus
from prizedraw.schemas.competition import CompetitionCreate
from prizedraw.services import ticket_pool
from prizedraw.services.audit_service import record_audit_event
from prizedraw.services.cache_service import invalidate_competition_cache

logger = get_logger(__name__)


async def create_competition(
    db: AsyncSession, data: CompetitionCreate, created_by_id: Optional[int] = None
) -> Competition:
    """Create a competition and its full ticket pool, all AVAILABLE."""
    draw_date = data.draw_date
    if draw_date.tzinfo is None:
        draw_date = draw_date.replace(tzinfo=timezone.utc)
    if draw_date <= datetime.now(timezone.utc):
        raise ValidationError("Draw date must be in the future")

    competition = Competition(
        title=data.title,
        description=data.description,
        ticket_price=data.ticket_price,
        total_tickets=data.total_tickets,
        max_tickets_per_user=data.max_tickets_per_user,
        status=data.status,
        draw_date=draw_date,
        created_by_id=created_by_id,
    )
    db.add(competition)
    await db.flush()
    await ticket_pool.create_ticket_pool(db, competition.id, data.total_tickets)
    await db.commit()
    await db.refresh(competition)

    logger.info(
        "competition_created",
        competition_id=competition.id,
        title=competition.title,
        total_tickets=competition.total_tickets,
        status=competition.status,
    )
    await invalidate_competition_cache()
    return competition


async def get_competition(db: AsyncSession, competition_id: int) -> Competition:
    competition = await db.get(Competition, competition_id, populate_existing=True)
    if competition is None:
        raise NotFoundError(f"Competition {competition_id} not found")
    return competition


async def list_competitions(
    db: AsyncSession,
    page: int = 1,
    page_size: int = 20,
    status: Optional[str] = None,
) -> tuple[list[Competition], int]:
    """
    List competitions by draw date with pagination.
    Uses the ix_competitions_status_draw_date index when filtering by status.
    """
    query = select(Competition)
    if status is not None:
        query = query.where(Competition.status == status)

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar()

    result = await db.execute(
        query.order_by(Competition.draw_date.asc(), Competition.id.asc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return list(result.scalars().all()), total


async def _transition(
    db: AsyncSession, competition_id: int, expected: str, new_status: str, **values
) -> bool:
    result = await db.execute(
        update(Competition)
        .where(Competition.id == competition_id, Competition.status == expected)
        .values(status=new_status, **values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def change_status(
    db: AsyncSession,
    competition_id: int,
    new_status: str,
    user_id: Optional[int] = None,
) -> Competition:
    """
    Move a competition along its lifecycle.

    Raises:
        NotFoundError: Unknown competition
        BusinessRuleError: INVALID_STATUS_TRANSITION, including losing a
            race against another status change
    """
    if new_status not in CompetitionStatus.ALL:
        raise ValidationError(f"Unknown competition status {new_status!r}")

    competition = await get_competition(db, competition_id)
    current = competition.status
    if new_status not in CompetitionStatus.TRANSITIONS[current]:
        raise BusinessRuleError(
            f"Cannot move competition from {current} to {new_status}",
            code="INVALID_STATUS_TRANSITION",
        )

    if not await _transition(db, competition_id, current, new_status):
        await db.rollback()
        raise BusinessRuleError(
            f"Competition {competition_id} changed status concurrently",
            code="INVALID_STATUS_TRANSITION",
        )
    await db.commit()
    await db.refresh(competition)

    logger.info(
        "competition_status_changed",
        competition_id=competition_id,
        old_status=current,
        new_status=new_status,
    )
    await invalidate_competition_cache()
    await record_audit_event(
        db,
        AuditAction.COMPETITION_STATUS_CHANGED,
        entity="competition",
        entity_id=competition_id,
        user_id=user_id,
        details={"from": current, "to": new_status},
    )
    return competition


async def mark_sold_out_if_exhausted(
    db: AsyncSession, competition_id: int, now: Optional[datetime] = None
) -> bool:
    """ACTIVE -> SOLD_OUT once every ticket is SOLD or FREE_ENTRY."""
    counts = await ticket_pool.count_by_status(db, competition_id, now or datetime.now(timezone.utc))
    if counts.total == 0 or counts.sold + counts.free_entry < counts.total:
        return False

    if not await _transition(db, competition_id, CompetitionStatus.ACTIVE, CompetitionStatus.SOLD_OUT):
        await db.rollback()
        return False
    await db.commit()

    logger.info("competition_sold_out", competition_id=competition_id, total_tickets=counts.total)
    await invalidate_competition_cache()
    await record_audit_event(
        db,
        AuditAction.COMPETITION_STATUS_CHANGED,
        entity="competition",
        entity_id=competition_id,
        details={"from": CompetitionStatus.ACTIVE, "to": CompetitionStatus.SOLD_OUT},
    )
    return True


async def list_draw_entries(db: AsyncSession, competition_id: int) -> list[ticket_pool.DrawEntry]:
    await get_competition(db, competition_id)
    return await ticket_pool.list_draw_entries(db, competition_id)


async def execute_draw(
    db: AsyncSession, competition_id: int, user_id: Optional[int] = None
) -> Competition:
    """
    Pick the winning ticket among SOLD and FREE_ENTRY tickets.

    ACTIVE / SOLD_OUT -> DRAWING -> COMPLETED. A draw stuck in DRAWING
    (crash between the two steps) can be re-run.
    """
    competition = await get_competition(db, competition_id)
    if competition.status not in (
        CompetitionStatus.ACTIVE,
        CompetitionStatus.SOLD_OUT,
        CompetitionStatus.DRAWING,
    ):
        raise BusinessRuleError(
            f"Cannot draw a competition that is {competition.status}",
            code="INVALID_STATUS_TRANSITION",
        )

    entries = await ticket_pool.list_draw_entries(db, competition_id)
    if not entries:
        raise BusinessRuleError("Competition has no entries to draw from", code="NO_ENTRIES")

    if competition.status != CompetitionStatus.DRAWING:
        competition = await change_status(db, competition_id, CompetitionStatus.DRAWING, user_id=user_id)

    winner = secrets.choice(entries)
    drawn_at = datetime.now(timezone.utc)
    if not await _transition(
        db,
        competition_id,
        CompetitionStatus.DRAWING,
        CompetitionStatus.COMPLETED,
        winning_ticket_number=winner.ticket_number,
        winner_user_id=winner.user_id,
        actual_draw_date=drawn_at,
    ):
        await db.rollback()
        raise BusinessRuleError(
            f"Competition {competition_id} changed status during the draw",
            code="INVALID_STATUS_TRANSITION",
        )
    await db.commit()
    await db.refresh(competition)

    logger.info(
        "draw_completed",
        competition_id=competition_id,
        entries=len(entries),
        winning_ticket_number=winner.ticket_number,
        winner_user_id=winner.user_id,
    )
    await invalidate_competition_cache()
    await record_audit_event(
        db,
        AuditAction.DRAW_COMPLETED,
        entity="competition",
        entity_id=competition_id,
        user_id=user_id,
        details={
            "winning_ticket_number": winner.ticket_number,
            "winner_user_id": winner.user_id,
            "entries": len(entries),
        },
    )
    return competition
