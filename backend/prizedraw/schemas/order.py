"""
Pydantic schemas for order-related request/response validation.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field


class OrderCreate(BaseModel):
    competition_id: int


class PaymentCompletion(BaseModel):
    """Payment provider callback, relayed by the checkout integration."""

    succeeded: bool = True
    payment_reference: Optional[str] = Field(None, max_length=255)


class OrderResponse(BaseModel):
    id: int
    order_number: str
    user_id: int
    competition_id: int
    ticket_count: int
    bonus_ticket_count: int
    ticket_numbers: list[int]
    bonus_ticket_numbers: list[int]
    total_amount: Decimal
    currency: str
    payment_status: str
    payment_reference: Optional[str]
    created_at: datetime

    model_config = {"from_attributes": True}
