"""
Redis-backed reservation store.
Implements ReservationStore so every API worker sees the same holds.

Fail-open policy:
  Redis errors are logged and counted, never raised. A failed `put` still
  returns the expiry the Ticket Pool was given; a failed `get` reads as
  "no reservation". The Ticket Pool holds the authoritative RESERVED rows,
  so an outage degrades status answers, never ticket correctness.
"""

import json
import math
from datetime import datetime, timezone
from typing import Awaitable, Callable, Iterable, Optional

import redis.asyncio as redis

from prizedraw.core.logging import get_logger
from prizedraw.core.metrics import record_store_error
from prizedraw.services.interfaces.reservation_store import Reservation, ReservationStore

logger = get_logger(__name__)

ClientFactory = Callable[[], Awaitable[Optional[redis.Redis]]]


def reservation_key(competition_id: int, user_id: int) -> str:
    return f"reservation:{competition_id}:{user_id}"


class RedisReservationStore(ReservationStore):
    """
    One JSON value per (competition, user) with a native Redis TTL.

    Expiry is enforced twice: Redis drops the key when PX elapses, and
    `get` compares `expires_at` so a clock-skewed or just-expired key still
    reads as absent.
    """

    def __init__(self, client_factory: ClientFactory):
        self._client_factory = client_factory

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
        key = reservation_key(competition_id, user_id)
        client = await self._client_factory()
        if client is None:
            record_store_error("put")
            logger.warning("reservation_store_unavailable", operation="put", key=key)
            return reservation.expires_at
        try:
            await client.set(
                key,
                json.dumps(reservation.to_dict()),
                px=max(1, math.ceil(ttl * 1000)),
            )
        except redis.RedisError as e:
            record_store_error("put")
            logger.error("reservation_store_error", operation="put", key=key, error=str(e))
        return reservation.expires_at

    async def get(
        self, competition_id: int, user_id: int, now: Optional[datetime] = None
    ) -> Optional[Reservation]:
        key = reservation_key(competition_id, user_id)
        client = await self._client_factory()
        if client is None:
            return None
        try:
            data = await client.get(key)
        except redis.RedisError as e:
            record_store_error("get")
            logger.error("reservation_store_error", operation="get", key=key, error=str(e))
            return None
        if not data:
            return None
        try:
            reservation = Reservation.from_dict(json.loads(data))
        except (ValueError, KeyError, TypeError) as e:
            logger.error("reservation_store_corrupt_entry", key=key, error=str(e))
            return None
        if reservation.is_expired(now or datetime.now(timezone.utc)):
            return None
        return reservation

    async def remove(self, competition_id: int, user_id: int) -> None:
        key = reservation_key(competition_id, user_id)
        client = await self._client_factory()
        if client is None:
            return
        try:
            await client.delete(key)
        except redis.RedisError as e:
            record_store_error("remove")
            logger.error("reservation_store_error", operation="remove", key=key, error=str(e))
