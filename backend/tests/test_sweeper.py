"""
Expiry sweep tests: one run_once() cycle at a time, with an explicit clock.
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from prizedraw.models.audit_log import AuditAction, AuditLog
from prizedraw.services import ticket_pool
from prizedraw.services.expiry_sweeper import ReservationSweeper


@pytest.mark.asyncio
async def test_sweep_releases_expired_holds(session_factory, db_session, allocator, store, make_competition, make_user):
    competition = await make_competition(total_tickets=10)
    alice, bob = await make_user(), await make_user()
    now = datetime.now(timezone.utc)
    await allocator.reserve(db_session, competition.id, alice.id, quantity=3, now=now - timedelta(minutes=11))
    await allocator.reserve(db_session, competition.id, bob.id, ticket_numbers=[7, 8], now=now)

    sweeper = ReservationSweeper(session_factory, store)
    result = await sweeper.run_once(now)

    assert result.success
    assert result.released == 3
    assert [(h.user_id, h.ticket_numbers) for h in result.holds] == [(alice.id, (1, 2, 3))]
    assert result.store_entries_removed == 1
    assert await store.get(competition.id, alice.id, now=now - timedelta(minutes=11)) is None
    assert await store.get(competition.id, bob.id, now=now) is not None

    async with session_factory() as db:
        counts = await ticket_pool.count_by_status(db, competition.id, now)
        audit = (
            await db.execute(select(AuditLog).where(AuditLog.action == AuditAction.RESERVATION_EXPIRED))
        ).scalars().all()
    assert counts.available == 8
    assert counts.reserved == 2
    assert [(a.user_id, a.details["ticket_numbers"]) for a in audit] == [(alice.id, [1, 2, 3])]


@pytest.mark.asyncio
async def test_sweep_with_nothing_expired(session_factory, db_session, allocator, store, competition, test_user):
    await allocator.reserve(db_session, competition.id, test_user.id, quantity=2)

    result = await ReservationSweeper(session_factory, store).run_once()

    assert result.success
    assert result.released == 0
    assert result.holds == []
    assert result.to_dict()["success"] is True


@pytest.mark.asyncio
async def test_sweep_keeps_store_entry_of_newer_reservation(session_factory, db_session, allocator, store, make_competition, make_user):
    competition = await make_competition(total_tickets=10)
    user = await make_user()
    now = datetime.now(timezone.utc)
    await allocator.reserve(db_session, competition.id, user.id, ticket_numbers=[1], now=now - timedelta(minutes=11))
    await store.put(competition.id, user.id, [5], 600, now=now)

    result = await ReservationSweeper(session_factory, store).run_once(now)

    assert result.released == 1
    assert result.store_entries_removed == 0
    assert await store.get(competition.id, user.id, now=now) is not None


@pytest.mark.asyncio
async def test_sweeper_start_stop(session_factory, store):
    sweeper = ReservationSweeper(session_factory, store, interval=60)
    assert not sweeper.running

    sweeper.start()
    assert sweeper.running
    await sweeper.stop()
    assert not sweeper.running
    await sweeper.stop()
