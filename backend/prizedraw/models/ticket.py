"""
Ticket model: one row per ticket number per competition.

Key design decisions:
- Unique (competition_id, ticket_number); numbers run 1..total_tickets
- A RESERVED row whose `reserved_until` has passed counts as available;
  nothing needs to rewrite it before it can be reserved again
- Rows are only ever changed by the guarded UPDATEs in services/ticket_pool.py
"""

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, ForeignKey, Index, UniqueConstraint, CheckConstraint,
)
from sqlalchemy.orm import relationship

from prizedraw.db.base import Base, TimestampMixin


class TicketStatus:
    AVAILABLE = "AVAILABLE"
    RESERVED = "RESERVED"
    SOLD = "SOLD"
    FREE_ENTRY = "FREE_ENTRY"

    ALL = (AVAILABLE, RESERVED, SOLD, FREE_ENTRY)


class Ticket(Base, TimestampMixin):
    __tablename__ = "tickets"

    id = Column(Integer, primary_key=True)
    competition_id = Column(Integer, ForeignKey("competitions.id"), nullable=False)
    ticket_number = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default=TicketStatus.AVAILABLE)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True)
    reserved_until = Column(DateTime(timezone=True), nullable=True)
    is_bonus = Column(Boolean, nullable=False, default=False)

    competition = relationship("Competition", back_populates="tickets")

    __table_args__ = (
        UniqueConstraint("competition_id", "ticket_number", name="uq_competition_ticket_number"),
        CheckConstraint("ticket_number > 0", name="check_ticket_number_positive"),
        CheckConstraint(
            "status IN ('AVAILABLE', 'RESERVED', 'SOLD', 'FREE_ENTRY')",
            name="check_ticket_status",
        ),
        # Availability counts and lowest-number selection
        Index("ix_tickets_competition_status_number", "competition_id", "status", "ticket_number"),
        # Expiry sweep
        Index("ix_tickets_status_reserved_until", "status", "reserved_until"),
        Index("ix_tickets_competition_user", "competition_id", "user_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<Ticket(competition={self.competition_id}, number={self.ticket_number}, "
            f"status={self.status}, user={self.user_id})>"
        )
