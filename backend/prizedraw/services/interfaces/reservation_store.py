"""
Reservation store interface.
Allows swapping between a Redis-backed index and an in-process one.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional


@dataclass(frozen=True)
class Reservation:
    """A user's current hold on ticket numbers in one competition."""

    competition_id: int
    user_id: int
    ticket_numbers: tuple
    expires_at: datetime
    reserved_at: datetime
    bonus_numbers: tuple = field(default=())

    @property
    def all_numbers(self) -> list[int]:
        return sorted([*self.ticket_numbers, *self.bonus_numbers])

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    def to_dict(self) -> dict:
        return {
            "competition_id": self.competition_id,
            "user_id": self.user_id,
            "ticket_numbers": list(self.ticket_numbers),
            "bonus_numbers": list(self.bonus_numbers),
            "reserved_at": self.reserved_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Reservation":
        return cls(
            competition_id=int(data["competition_id"]),
            user_id=int(data["user_id"]),
            ticket_numbers=tuple(data["ticket_numbers"]),
            bonus_numbers=tuple(data.get("bonus_numbers", ())),
            reserved_at=datetime.fromisoformat(data["reserved_at"]),
            expires_at=datetime.fromisoformat(data["expires_at"]),
        )

    @classmethod
    def build(
        cls,
        competition_id: int,
        user_id: int,
        ticket_numbers: Iterable[int],
        ttl: float,
        bonus_numbers: Iterable[int] = (),
        now: Optional[datetime] = None,
    ) -> "Reservation":
        reserved_at = now or datetime.now(timezone.utc)
        return cls(
            competition_id=competition_id,
            user_id=user_id,
            ticket_numbers=tuple(sorted(ticket_numbers)),
            bonus_numbers=tuple(sorted(bonus_numbers)),
            reserved_at=reserved_at,
            expires_at=reserved_at + timedelta(seconds=ttl),
        )


class ReservationStore(ABC):
    """
    Time-boxed index of who holds which ticket numbers.

    Advisory only: answers status queries and drives checkout countdowns.
    The Ticket Pool stays authoritative, so implementations may lose data
    (restart, Redis outage) without breaking ticket invariants.

    Implementations:
    - InMemoryReservationStore: single process, development and tests
    - RedisReservationStore: shared across API workers, TTL enforced by Redis
    """

    @abstractmethod
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
        """
        Create or replace the single reservation for (competition, user).

        Returns:
            The reservation's expiry timestamp
        """
        pass

    @abstractmethod
    async def get(
        self, competition_id: int, user_id: int, now: Optional[datetime] = None
    ) -> Optional[Reservation]:
        """Current reservation, or None if absent or expired."""
        pass

    @abstractmethod
    async def remove(self, competition_id: int, user_id: int) -> None:
        """Delete the reservation; no-op if there is none."""
        pass
