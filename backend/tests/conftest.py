"""
Pytest fixtures for test database, client, allocator, and authentication.

Each test gets a fresh schema. TEST_DATABASE_URL points the suite at a
real PostgreSQL; by default it runs on a per-test SQLite file (aiosqlite)
so no external services are needed. Redis is disabled and every test
gets its own allocator over an in-process reservation store.
"""

import os

os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("RESERVATION_STORE", "memory")
os.environ.setdefault("EXPIRY_SWEEP_ENABLED", "false")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./prizedraw-import.db")

from datetime import datetime, timezone, timedelta
from decimal import Decimal
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from prizedraw.main import app
from prizedraw.db.base import Base
from prizedraw.db.session import build_engine, get_db
from prizedraw.core.config import get_settings
from prizedraw.core.security import create_access_token, hash_password
from prizedraw.models.competition import Competition, CompetitionStatus
from prizedraw.models.user import User
from prizedraw.schemas.competition import CompetitionCreate
from prizedraw.services.allocation_service import TicketAllocator, get_allocator
from prizedraw.services.bonus import parse_tiers
from prizedraw.services.competition_service import create_competition
from prizedraw.services.interfaces import InMemoryReservationStore


@pytest_asyncio.fixture(scope="function")
async def engine(tmp_path):
    url = os.environ.get("TEST_DATABASE_URL") or f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"
    test_engine = build_engine(url)
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def store() -> InMemoryReservationStore:
    return InMemoryReservationStore()


@pytest.fixture
def allocator(store) -> TicketAllocator:
    """Production settings, fresh locks and store."""
    settings = get_settings()
    return TicketAllocator(
        store=store,
        reservation_ttl=600,
        max_attempts=settings.RESERVE_MAX_ATTEMPTS,
        retry_backoff=settings.RESERVE_RETRY_BACKOFF_SECONDS,
        bonus_tiers=parse_tiers([(10, 1), (15, 2), (20, 3), (50, 5)]),
        max_tickets_per_request=50,
    )


@pytest_asyncio.fixture(scope="function")
async def client(session_factory, allocator) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client with a session per request and the test allocator."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_allocator] = lambda: allocator

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db_session: AsyncSession):
    counter = {"n": 0}

    async def _make_user(is_admin: bool = False, email: str = None, username: str = None) -> User:
        counter["n"] += 1
        n = counter["n"]
        user = User(
            email=email or f"user{n}@example.com",
            username=username or f"user{n}",
            hashed_password=hash_password("testpassword123"),
            is_admin=is_admin,
        )
        db_session.add(user)
        await db_session.commit()
        await db_session.refresh(user)
        return user

    return _make_user


@pytest_asyncio.fixture
async def test_user(make_user) -> User:
    return await make_user(email="test@example.com", username="testuser")


@pytest_asyncio.fixture
async def admin_user(make_user) -> User:
    return await make_user(is_admin=True, email="admin@example.com", username="admin")


def bearer_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(data={'sub': str(user.id)})}"}


@pytest.fixture
def headers_for():
    """Bearer headers for any user."""
    return bearer_headers


@pytest_asyncio.fixture
async def auth_headers(test_user: User) -> dict:
    return bearer_headers(test_user)


@pytest_asyncio.fixture
async def admin_headers(admin_user: User) -> dict:
    return bearer_headers(admin_user)


@pytest.fixture
def make_competition(db_session: AsyncSession):
    async def _make_competition(
        total_tickets: int = 100,
        max_tickets_per_user: int = 50,
        status: str = CompetitionStatus.ACTIVE,
        ticket_price: str = "2.50",
    ) -> Competition:
        return await create_competition(
            db_session,
            CompetitionCreate(
                title=f"Win {total_tickets} things",
                ticket_price=Decimal(ticket_price),
                total_tickets=total_tickets,
                max_tickets_per_user=max_tickets_per_user,
                draw_date=datetime.now(timezone.utc) + timedelta(days=30),
                status=status,
            ),
        )

    return _make_competition


@pytest_asyncio.fixture
async def competition(make_competition) -> Competition:
    """ACTIVE competition with 100 tickets, 50 per user."""
    return await make_competition()
