"""
Shared route dependencies.
"""

import hmac
from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from prizedraw.core.config import get_settings
from prizedraw.core.exceptions import AuthenticationError
from prizedraw.core.security import get_current_user_id
from prizedraw.db.session import get_db
from prizedraw.models.user import User
from prizedraw.services.allocation_service import get_allocator
from prizedraw.services.auth_service import get_active_user, require_admin_user

__all__ = ["get_allocator", "get_current_user", "require_admin", "require_payment_secret"]


async def get_current_user(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> User:
    return await get_active_user(db, user_id)


async def require_admin(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> User:
    return await require_admin_user(db, user_id)


async def require_payment_secret(x_payment_secret: Optional[str] = Header(None)) -> None:
    """Payment completion comes from the checkout integration, not from browsers."""
    expected = get_settings().PAYMENT_WEBHOOK_SECRET
    if x_payment_secret is None or not hmac.compare_digest(x_payment_secret, expected):
        raise AuthenticationError("Invalid payment secret", code="INVALID_PAYMENT_SECRET")
