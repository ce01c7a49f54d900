"""
Service interfaces for dependency inversion.
Allows swapping implementations without changing business logic.
"""

from .reservation_store import Reservation, ReservationStore
from .memory_reservation_store import InMemoryReservationStore

__all__ = ['Reservation', 'ReservationStore', 'InMemoryReservationStore']
