"""
Authentication service handling user registration and login.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from prizedraw.models.user import User
from prizedraw.schemas.user import UserCreate, UserLogin
from prizedraw.core.exceptions import AlreadyExistsError, AuthenticationError, PermissionDeniedError
from prizedraw.core.security import hash_password, verify_password, create_access_token
from prizedraw.core.logging import get_logger

logger = get_logger(__name__)


async def register_user(db: AsyncSession, user_data: UserCreate) -> User:
    """
    Register a new user with hashed password.
    Raises AlreadyExistsError if email or username is taken.
    """
    result = await db.execute(select(User).where(User.email == user_data.email))
    if result.scalar_one_or_none():
        logger.warning("registration_failed", reason="email_exists", email=user_data.email)
        raise AlreadyExistsError("Email already registered")

    result = await db.execute(select(User).where(User.username == user_data.username))
    if result.scalar_one_or_none():
        logger.warning("registration_failed", reason="username_exists", username=user_data.username)
        raise AlreadyExistsError("Username already taken")

    user = User(
        email=user_data.email,
        username=user_data.username,
        hashed_password=hash_password(user_data.password),
    )
    db.add(user)
    await db.flush()
    await db.refresh(user)

    logger.info("user_registered", user_id=user.id, email=user.email)
    return user


async def authenticate_user(db: AsyncSession, login_data: UserLogin) -> str:
    """
    Authenticate user and return JWT access token.
    Raises AuthenticationError if credentials are invalid.
    """
    result = await db.execute(select(User).where(User.email == login_data.email))
    user = result.scalar_one_or_none()

    if not user or not verify_password(login_data.password, user.hashed_password):
        logger.warning("login_failed", email=login_data.email)
        raise AuthenticationError("Invalid email or password")

    if not user.is_active:
        raise PermissionDeniedError("Account is deactivated")

    token = create_access_token(data={"sub": str(user.id)})
    logger.info("user_logged_in", user_id=user.id)
    return token


async def get_active_user(db: AsyncSession, user_id: int) -> User:
    user = await db.get(User, user_id)
    if user is None or not user.is_active:
        raise AuthenticationError("User not found or inactive")
    return user


async def require_admin_user(db: AsyncSession, user_id: int) -> User:
    user = await get_active_user(db, user_id)
    if not user.is_admin:
        logger.warning("admin_required", user_id=user_id)
        raise PermissionDeniedError("Admin privileges required")
    return user
