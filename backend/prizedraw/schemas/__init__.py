from prizedraw.schemas.user import UserCreate, UserResponse, UserLogin, Token
from prizedraw.schemas.competition import (
    CompetitionCreate, CompetitionResponse, CompetitionListResponse, CompetitionStatusUpdate,
)
from prizedraw.schemas.reservation import (
    ReserveRequest, ReservationResponse, TicketStatusResponse, FreeEntryRequest,
)
from prizedraw.schemas.order import OrderCreate, OrderResponse, PaymentCompletion

__all__ = [
    "UserCreate", "UserResponse", "UserLogin", "Token",
    "CompetitionCreate", "CompetitionResponse", "CompetitionListResponse", "CompetitionStatusUpdate",
    "ReserveRequest", "ReservationResponse", "TicketStatusResponse", "FreeEntryRequest",
    "OrderCreate", "OrderResponse", "PaymentCompletion",
]
