"""
Shared test fixtures for the accreditation test suite.

Every test gets a fresh in-memory SQLite database (aiosqlite + StaticPool)
wired into the app through a ``get_db`` dependency override.
"""

import os
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import AsyncGenerator

import pytest

# Ensure project root is importable
ROOT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

# Override environment BEFORE importing application modules
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["CORS_ORIGINS"] = '["*"]'
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["CACHE_ENABLED"] = "false"
os.environ["QR_SECRET_KEY"] = "test-qr-secret"

from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from accreditation.api.v1.deps import get_db
from accreditation.core.security import create_access_token, get_password_hash
from accreditation.db.base import Base
from accreditation.main import app
from accreditation.models.access import AccessAssignment, AccessLevel, Area
from accreditation.models.user import User

TEST_PASSWORD = "password123"
TEST_PASSWORD_HASH = get_password_hash(TEST_PASSWORD)
PAST = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker, None]:
    """Create all tables on a private in-memory engine and drop it afterwards."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture(autouse=True)
def override_get_db(session_factory):
    async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db
    yield
    app.dependency_overrides.clear()


@pytest.fixture
async def async_client() -> AsyncGenerator[AsyncClient, None]:
    """Return a httpx AsyncClient wired to the app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Return a raw database session for direct queries in tests."""
    async with session_factory() as session:
        yield session


# ── Helpers ─────────────────────────────────────────────────────────
def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id, role=user.role)}"}


async def create_user(
    db: AsyncSession,
    email: str,
    name: str = "Test User",
    role: str = "user",
    is_active: bool = True,
) -> User:
    user = User(
        email=email,
        name=name,
        phone="5551234567",
        hashed_password=TEST_PASSWORD_HASH,
        role=role,
        is_active=is_active,
        updated_at=PAST,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


@dataclass
class EventData:
    """A small event: one accredited attendee plus the usual levels and areas."""

    alice: User
    scanner: User
    admin: User
    general: AccessLevel
    staff: AccessLevel
    vip: AccessLevel
    main_arena: Area
    staff_area: Area
    vip_lounge: Area
    staff_area_assignment: AccessAssignment


@pytest.fixture
async def event(db_session: AsyncSession) -> EventData:
    """Alice holds Staff access to Main Arena and Staff Area, nothing else."""
    alice = await create_user(db_session, "alice@example.com", name="Alice")
    scanner = await create_user(db_session, "gate@example.com", name="Gate 1", role="scanner")
    admin = await create_user(db_session, "admin@example.com", name="Admin", role="admin")

    general = AccessLevel(name="General", priority=1, updated_at=PAST)
    staff = AccessLevel(name="Staff", priority=3, updated_at=PAST)
    vip = AccessLevel(name="VIP", priority=5, updated_at=PAST)
    main_arena = Area(name="Main Arena", updated_at=PAST)
    staff_area = Area(name="Staff Area", updated_at=PAST)
    vip_lounge = Area(name="VIP Lounge", updated_at=PAST)
    db_session.add_all([general, staff, vip, main_arena, staff_area, vip_lounge])
    await db_session.commit()

    arena_assignment = AccessAssignment(
        user_id=alice.id, access_level_id=staff.id, area_id=main_arena.id, updated_at=PAST
    )
    staff_area_assignment = AccessAssignment(
        user_id=alice.id, access_level_id=staff.id, area_id=staff_area.id, updated_at=PAST
    )
    db_session.add_all([arena_assignment, staff_area_assignment])
    await db_session.commit()

    return EventData(
        alice=alice,
        scanner=scanner,
        admin=admin,
        general=general,
        staff=staff,
        vip=vip,
        main_arena=main_arena,
        staff_area=staff_area,
        vip_lounge=vip_lounge,
        staff_area_assignment=staff_area_assignment,
    )
