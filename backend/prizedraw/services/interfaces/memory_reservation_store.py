"""
In-process reservation store - no external dependency.
Single-process only; every API worker would see its own copy.
"""

from datetime import datetime, timezone
from typing import Iterable, Optional

from prizedraw.services.interfaces.reservation_store import Reservation, ReservationStore


class InMemoryReservationStore(ReservationStore):
    """
    Dict keyed by (competition_id, user_id).

    Use when:
    - Running tests or a single development worker
    - Redis is disabled
    """

    def __init__(self):
        self._reservations: dict[tuple, Reservation] = {}

    async def put(
        self,
        competition_id: int,
        user_id: int,
        ticket_numbers: Iterable[int],
        ttl: float,
        *,
        bonus_numbers: Iterable[int] = (),
        now: Optional[datetime] = None,
    ) -> datetime:
        reservation = Reservation.build(
            competition_id, user_id, ticket_numbers, ttl, bonus_numbers=bonus_numbers, now=now
        )
        self._reservations[(competition_id, user_id)] = reservation
        return reservation.expires_at

    async def get(
        self, competition_id: int, user_id: int, now: Optional[datetime] = None
    ) -> Optional[Reservation]:
        reservation = self._reservations.get((competition_id, user_id))
        if reservation is None:
            return None
        # Lazy expiry: stale entries read as absent; purge_expired() reclaims them
        if reservation.is_expired(now or datetime.now(timezone.utc)):
            return None
        return reservation

    async def remove(self, competition_id: int, user_id: int) -> None:
        self._reservations.pop((competition_id, user_id), None)

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.now(timezone.utc)
        expired = [key for key, r in self._reservations.items() if r.is_expired(now)]
        for key in expired:
            del self._reservations[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._reservations)
