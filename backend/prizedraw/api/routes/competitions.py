"""
Competition endpoints with Redis caching on list operations.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from prizedraw.api.deps import require_admin
from prizedraw.db.session import get_db
from prizedraw.models.user import User
from prizedraw.schemas.competition import (
    CompetitionCreate,
    CompetitionListResponse,
    CompetitionResponse,
    CompetitionStatusLiteral,
    CompetitionStatusUpdate,
    DrawEntriesResponse,
    DrawEntryResponse,
)
from prizedraw.services.cache_service import get_cached_competitions, set_cached_competitions
from prizedraw.services.competition_service import (
    change_status,
    create_competition,
    execute_draw,
    get_competition,
    list_competitions,
    list_draw_entries,
)
from prizedraw.core.logging import get_logger, bind_reservation_context

logger = get_logger(__name__)
router = APIRouter(prefix="/competitions", tags=["Competitions"])


@router.post("/", response_model=CompetitionResponse, status_code=status.HTTP_201_CREATED)
async def create_competition_endpoint(
    data: CompetitionCreate,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Create a competition and its ticket pool. Admin only."""
    return await create_competition(db, data, created_by_id=admin.id)


@router.get("/", response_model=CompetitionListResponse)
async def list_competitions_endpoint(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    status_filter: Optional[CompetitionStatusLiteral] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db),
):
    """
    List competitions with pagination.
    Cached in Redis; invalidated on create and on every status change.
    Availability is not part of the listing, see /tickets/status.
    """
    cached = await get_cached_competitions(page, page_size, status_filter)
    if cached:
        logger.info("competitions_list_cache_hit", page=page)
        cached["cached"] = True
        return CompetitionListResponse(**cached)

    competitions, total = await list_competitions(db, page, page_size, status_filter)

    response_data = {
        "competitions": [CompetitionResponse.model_validate(c).model_dump(mode="json") for c in competitions],
        "total": total,
        "page": page,
        "page_size": page_size,
        "cached": False,
    }
    await set_cached_competitions(page, page_size, status_filter, response_data)

    return CompetitionListResponse(**response_data)


@router.get("/{competition_id}", response_model=CompetitionResponse)
async def get_competition_endpoint(competition_id: int, db: AsyncSession = Depends(get_db)):
    return await get_competition(db, competition_id)


@router.post("/{competition_id}/status", response_model=CompetitionResponse)
async def change_status_endpoint(
    competition_id: int,
    data: CompetitionStatusUpdate,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    bind_reservation_context(competition_id, admin.id)
    return await change_status(db, competition_id, data.status, user_id=admin.id)


@router.post("/{competition_id}/draw", response_model=CompetitionResponse)
async def draw_endpoint(
    competition_id: int,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Draw the winner among sold and free-entry tickets. Admin only."""
    bind_reservation_context(competition_id, admin.id)
    return await execute_draw(db, competition_id, user_id=admin.id)


@router.get("/{competition_id}/entries", response_model=DrawEntriesResponse)
async def draw_entries_endpoint(
    competition_id: int,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    entries = await list_draw_entries(db, competition_id)
    return DrawEntriesResponse(
        competition_id=competition_id,
        entries=[DrawEntryResponse.model_validate(e) for e in entries],
        total=len(entries),
    )
