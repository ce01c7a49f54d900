"""
Pydantic schemas for competition-related request/response validation.
"""

from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional
from pydantic import BaseModel, Field

CompetitionStatusLiteral = Literal[
    "DRAFT", "UPCOMING", "ACTIVE", "SOLD_OUT", "DRAWING", "COMPLETED", "CANCELLED"
]


class CompetitionCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=2000)
    ticket_price: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2)
    total_tickets: int = Field(..., gt=0, le=1_000_000)
    max_tickets_per_user: int = Field(..., gt=0)
    draw_date: datetime
    status: Literal["DRAFT", "UPCOMING", "ACTIVE"] = "DRAFT"


class CompetitionStatusUpdate(BaseModel):
    status: CompetitionStatusLiteral


class CompetitionResponse(BaseModel):
    id: int
    title: str
    description: Optional[str]
    ticket_price: Decimal
    total_tickets: int
    max_tickets_per_user: int
    status: str
    draw_date: datetime
    actual_draw_date: Optional[datetime]
    winning_ticket_number: Optional[int]
    winner_user_id: Optional[int]
    created_at: datetime

    model_config = {"from_attributes": True}


class CompetitionListResponse(BaseModel):
    competitions: list[CompetitionResponse]
    total: int
    page: int
    page_size: int
    cached: bool = False


class DrawEntryResponse(BaseModel):
    ticket_number: int
    user_id: Optional[int]
    status: str

    model_config = {"from_attributes": True}


class DrawEntriesResponse(BaseModel):
    competition_id: int
    entries: list[DrawEntryResponse]
    total: int
