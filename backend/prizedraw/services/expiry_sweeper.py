"""
Reservation expiry sweep: periodically returns lapsed holds to the pool.

Every read and every guard already treats an expired RESERVED row as
AVAILABLE, so a skipped or delayed sweep never breaks correctness. The
sweep reclaims rows proactively, clears stale store entries and leaves an
audit trail of what expired.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from prizedraw.core.logging import get_logger
from prizedraw.core.metrics import record_release, record_sweep
from prizedraw.models.audit_log import AuditAction
from prizedraw.services import ticket_pool
from prizedraw.services.audit_service import record_audit_event
from prizedraw.services.interfaces import InMemoryReservationStore, ReservationStore

logger = get_logger(__name__)


@dataclass
class SweepResult:
    released: int = 0
    holds: list[ticket_pool.ExpiredHold] = field(default_factory=list)
    store_entries_removed: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict:
        return {
            "released": self.released,
            "holds": len(self.holds),
            "store_entries_removed": self.store_entries_removed,
            "errors": self.errors,
            "success": self.success,
        }


class ReservationSweeper:
    """
    Background task that releases expired reservations.

    run_once() does a single cycle and can be called directly (tests,
    cron); start()/stop() manage the asyncio loop inside the app lifespan.
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        store: ReservationStore,
        interval: float = 30,
    ):
        self.session_factory = session_factory
        self.store = store
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    async def run_once(self, now: Optional[datetime] = None) -> SweepResult:
        now = now or datetime.now(timezone.utc)
        result = SweepResult()

        async with self.session_factory() as db:
            try:
                holds = await ticket_pool.release_expired(db, now)
                await db.commit()
            except SQLAlchemyError as e:
                await db.rollback()
                result.errors.append(f"release_expired failed: {e}")
                logger.error("expiry_sweep_failed", error=str(e))
                record_sweep(False)
                return result

            result.holds = holds
            result.released = sum(h.released for h in holds)

            for hold in holds:
                if hold.user_id is not None and await self._clear_store_entry(hold, now):
                    result.store_entries_removed += 1
                if hold.released:
                    await record_audit_event(
                        db,
                        AuditAction.RESERVATION_EXPIRED,
                        entity="competition",
                        entity_id=hold.competition_id,
                        user_id=hold.user_id,
                        details={"ticket_numbers": list(hold.ticket_numbers), "released": hold.released},
                    )

        if isinstance(self.store, InMemoryReservationStore):
            result.store_entries_removed += self.store.purge_expired(now)

        record_release("expired", result.released)
        record_sweep(True)
        if result.released or result.store_entries_removed:
            logger.info("expiry_sweep_completed", **result.to_dict())
        else:
            logger.debug("expiry_sweep_completed", **result.to_dict())
        return result

    async def _clear_store_entry(self, hold: ticket_pool.ExpiredHold, now: datetime) -> bool:
        # A live entry means the user re-reserved after this hold lapsed
        if await self.store.get(hold.competition_id, hold.user_id, now=now) is not None:
            return False
        await self.store.remove(hold.competition_id, hold.user_id)
        return True

    async def _loop(self) -> None:
        logger.info("expiry_sweeper_started", interval=self.interval)
        while True:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                record_sweep(False)
                logger.exception("expiry_sweep_crashed", error=str(e))
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._loop(), name="reservation-expiry-sweeper")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("expiry_sweeper_stopped")

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()
