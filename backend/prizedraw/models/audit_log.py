"""
Audit trail of ticket and order transitions. Append-only.
"""

from sqlalchemy import Column, Integer, String, JSON, DateTime, ForeignKey, Index, func

from prizedraw.db.base import Base


class AuditAction:
    TICKET_RESERVED = "TICKET_RESERVED"
    TICKET_RELEASED = "TICKET_RELEASED"
    RESERVATION_EXPIRED = "RESERVATION_EXPIRED"
    TICKET_PURCHASED = "TICKET_PURCHASED"
    PAYMENT_CONFLICT = "PAYMENT_CONFLICT"
    FREE_ENTRY_GRANTED = "FREE_ENTRY_GRANTED"
    ORDER_CREATED = "ORDER_CREATED"
    ORDER_CANCELLED = "ORDER_CANCELLED"
    COMPETITION_STATUS_CHANGED = "COMPETITION_STATUS_CHANGED"
    DRAW_COMPLETED = "DRAW_COMPLETED"


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    action = Column(String(50), nullable=False)
    entity = Column(String(50), nullable=False)
    entity_id = Column(Integer, nullable=True)
    # "metadata" is reserved on declarative classes
    details = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        Index("ix_audit_logs_entity", "entity", "entity_id"),
        Index("ix_audit_logs_action_created", "action", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<AuditLog(action={self.action}, entity={self.entity}:{self.entity_id}, user={self.user_id})>"
