"""
Authentication endpoints: register, login and the caller's own account.

Admin accounts are never created here; `is_admin` is set out of band.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from prizedraw.api.deps import get_current_user
from prizedraw.db.session import get_db
from prizedraw.models.user import User
from prizedraw.schemas.user import UserCreate, UserResponse, UserLogin, Token
from prizedraw.services.auth_service import register_user, authenticate_user

router = APIRouter(prefix="/auth", tags=["Authentication"])


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def register(user_data: UserCreate, db: AsyncSession = Depends(get_db)):
    return await register_user(db, user_data)


@router.post("/login", response_model=Token)
async def login(login_data: UserLogin, db: AsyncSession = Depends(get_db)):
    """Exchange email and password for a bearer token. Deactivated accounts get 403."""
    return Token(access_token=await authenticate_user(db, login_data))


@router.get("/me", response_model=UserResponse)
async def me(user: User = Depends(get_current_user)):
    return user
