"""
Reservation store factory.
Configures which reservation store backs the allocation engine.
"""

from prizedraw.services.interfaces.reservation_store import ReservationStore
from prizedraw.services.interfaces.memory_reservation_store import InMemoryReservationStore
from prizedraw.services.reservation_store import RedisReservationStore
from prizedraw.services.cache_service import get_redis
from prizedraw.core.config import get_settings


def build_reservation_store() -> ReservationStore:
    """
    Build the configured reservation store.

    - RESERVATION_STORE=redis with REDIS_ENABLED: RedisReservationStore
    - anything else: InMemoryReservationStore (single worker only)
    """
    settings = get_settings()

    if settings.RESERVATION_STORE == "redis" and settings.REDIS_ENABLED:
        return RedisReservationStore(get_redis)
    return InMemoryReservationStore()
