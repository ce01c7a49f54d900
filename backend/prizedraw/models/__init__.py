from prizedraw.models.user import User
from prizedraw.models.competition import Competition, CompetitionStatus
from prizedraw.models.ticket import Ticket, TicketStatus
from prizedraw.models.order import Order, PaymentStatus
from prizedraw.models.audit_log import AuditLog, AuditAction

__all__ = [
    "User",
    "Competition", "CompetitionStatus",
    "Ticket", "TicketStatus",
    "Order", "PaymentStatus",
    "AuditLog", "AuditAction",
]
