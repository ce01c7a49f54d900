"""
Order model created when a customer starts checkout.

Key design decisions:
- Ticket numbers are frozen on the order at checkout (JSON lists), paid and
  bonus kept apart so totals never include free tickets
- payment_status moves PENDING -> PROCESSING -> SUCCEEDED/FAILED/CANCELLED,
  and SUCCEEDED -> REFUNDED; see order_service for the guard
- No uniqueness on (user, competition): a customer can buy more than once
"""

from sqlalchemy import Column, Integer, String, Numeric, JSON, ForeignKey, Index, CheckConstraint
from sqlalchemy.orm import relationship

from prizedraw.db.base import Base, TimestampMixin


class PaymentStatus:
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"

    ALL = (PENDING, PROCESSING, SUCCEEDED, FAILED, CANCELLED, REFUNDED)
    OPEN = (PENDING, PROCESSING)
    # Closed without a sale; a late payment on these needs reconciliation
    ABANDONED = (FAILED, CANCELLED)

    TRANSITIONS = {
        PENDING: {PROCESSING, SUCCEEDED, FAILED, CANCELLED},
        PROCESSING: {SUCCEEDED, FAILED, CANCELLED},
        SUCCEEDED: {REFUNDED},
        FAILED: set(),
        CANCELLED: set(),
        REFUNDED: set(),
    }


class Order(Base, TimestampMixin):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String(32), nullable=False, unique=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    competition_id = Column(Integer, ForeignKey("competitions.id"), nullable=False, index=True)
    ticket_count = Column(Integer, nullable=False)
    bonus_ticket_count = Column(Integer, nullable=False, default=0)
    ticket_numbers = Column(JSON, nullable=False, default=list)
    bonus_ticket_numbers = Column(JSON, nullable=False, default=list)
    total_amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="GBP")
    payment_status = Column(String(20), nullable=False, default=PaymentStatus.PENDING)
    payment_reference = Column(String(255), nullable=True)

    user = relationship("User", back_populates="orders")
    competition = relationship("Competition", back_populates="orders")

    __table_args__ = (
        CheckConstraint("ticket_count > 0", name="check_order_ticket_count_positive"),
        CheckConstraint("bonus_ticket_count >= 0", name="check_order_bonus_count_non_negative"),
        CheckConstraint(
            "payment_status IN ('PENDING', 'PROCESSING', 'SUCCEEDED', 'FAILED', 'CANCELLED', 'REFUNDED')",
            name="check_order_payment_status",
        ),
        Index("ix_orders_competition_status", "competition_id", "payment_status"),
    )

    @property
    def all_ticket_numbers(self) -> list[int]:
        return sorted([*(self.ticket_numbers or []), *(self.bonus_ticket_numbers or [])])

    def __repr__(self) -> str:
        return f"<Order(id={self.id}, number={self.order_number}, user={self.user_id}, status={self.payment_status})>"
