"""
Competition model: a prize draw with a fixed pool of numbered tickets.

Key design decisions:
- `total_tickets` is fixed at creation; the ticket rows are created with it
- Status is a plain string guarded by a CHECK constraint; transitions go
  through competition_service.change_status (compare-and-set on the old status)
- Index on (status, draw_date) for the storefront listing
"""

from sqlalchemy import Column, Integer, String, DateTime, Numeric, ForeignKey, Index, CheckConstraint
from sqlalchemy.orm import relationship

from prizedraw.db.base import Base, TimestampMixin


class CompetitionStatus:
    DRAFT = "DRAFT"
    UPCOMING = "UPCOMING"
    ACTIVE = "ACTIVE"
    SOLD_OUT = "SOLD_OUT"
    DRAWING = "DRAWING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"

    ALL = (DRAFT, UPCOMING, ACTIVE, SOLD_OUT, DRAWING, COMPLETED, CANCELLED)

    # Forward-only lifecycle; CANCELLED is reachable from anything but COMPLETED
    TRANSITIONS = {
        DRAFT: {UPCOMING, ACTIVE, CANCELLED},
        UPCOMING: {ACTIVE, CANCELLED},
        ACTIVE: {SOLD_OUT, DRAWING, CANCELLED},
        SOLD_OUT: {DRAWING, CANCELLED},
        DRAWING: {COMPLETED, CANCELLED},
        COMPLETED: set(),
        CANCELLED: set(),
    }


class Competition(Base, TimestampMixin):
    __tablename__ = "competitions"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    description = Column(String(2000), nullable=True)
    ticket_price = Column(Numeric(10, 2), nullable=False)
    total_tickets = Column(Integer, nullable=False)
    max_tickets_per_user = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default=CompetitionStatus.DRAFT)
    draw_date = Column(DateTime(timezone=True), nullable=False)
    actual_draw_date = Column(DateTime(timezone=True), nullable=True)
    winning_ticket_number = Column(Integer, nullable=True)
    winner_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    tickets = relationship("Ticket", back_populates="competition", lazy="raise")
    orders = relationship("Order", back_populates="competition", lazy="raise")

    __table_args__ = (
        CheckConstraint("total_tickets > 0", name="check_total_tickets_positive"),
        CheckConstraint("max_tickets_per_user > 0", name="check_max_tickets_per_user_positive"),
        CheckConstraint("ticket_price >= 0", name="check_ticket_price_non_negative"),
        CheckConstraint(
            "status IN ('DRAFT', 'UPCOMING', 'ACTIVE', 'SOLD_OUT', 'DRAWING', 'COMPLETED', 'CANCELLED')",
            name="check_competition_status",
        ),
        Index("ix_competitions_status_draw_date", "status", "draw_date"),
    )

    def __repr__(self) -> str:
        return f"<Competition(id={self.id}, title={self.title}, status={self.status}, tickets={self.total_tickets})>"
