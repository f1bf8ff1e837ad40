"""
Event accreditation backend — application entry point.

This is the **only** file that assembles the app.  All business logic
lives in the `api/`, `services/`, `models/`, and `core/` packages.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from accreditation.api.v1.api import api_router
from accreditation.api.v1.endpoints.auth import limiter
from accreditation.core.config import settings
from accreditation.core.exceptions import register_exception_handlers
from accreditation.core.security import get_password_hash
from accreditation.db.base import Base
from accreditation.db.session import async_session_factory, engine

# Ensure all models are imported so metadata.create_all can see them
from accreditation.models.access import AccessAssignment, AccessLevel, Area  # noqa: F401
from accreditation.models.scan_log import ScanLog  # noqa: F401
from accreditation.models.user import User
from accreditation.services.cache import SnapshotCache

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)

DEMO_ACCESS_LEVELS = [
    ("General", "General admission", 1),
    ("VIP", "VIP guests", 5),
    ("Staff", "Event staff", 3),
    ("Security", "Security personnel", 4),
    ("Management", "Event management", 6),
]

DEMO_AREAS = [
    ("Main Arena", "Main event space", True),
    ("VIP Lounge", "VIP hospitality area", True),
    ("Staff Area", "Back-of-house staff zone", True),
    ("Security Zone", "Security control room", True),
    ("General Entrance", "Public entrance gates", True),
    ("Parking", "Visitor parking", False),
    ("Food Court", "Food and beverage", False),
]


async def seed_admin(session: AsyncSession) -> None:
    result = await session.execute(select(User).where(User.email == settings.FIRST_ADMIN_EMAIL))
    if result.scalar_one_or_none() is not None:
        return
    session.add(
        User(
            email=settings.FIRST_ADMIN_EMAIL,
            hashed_password=get_password_hash(settings.FIRST_ADMIN_PASSWORD),
            name="System Administrator",
            role="admin",
        )
    )
    await session.commit()
    logger.info("Default admin created: %s (password: <redacted>)", settings.FIRST_ADMIN_EMAIL)


async def seed_demo_data(session: AsyncSession) -> None:
    """Insert the demo access levels and areas if the tables are empty."""
    if (await session.execute(select(AccessLevel.id).limit(1))).first() is None:
        session.add_all(
            AccessLevel(name=name, description=desc, priority=priority)
            for name, desc, priority in DEMO_ACCESS_LEVELS
        )
    if (await session.execute(select(Area.id).limit(1))).first() is None:
        session.add_all(
            Area(name=name, description=desc, requires_scan=requires_scan)
            for name, desc, requires_scan in DEMO_AREAS
        )
    await session.commit()
    logger.info("Demo access levels and areas seeded")


# ── Lifespan ────────────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialised")

    async with async_session_factory() as session:
        await seed_admin(session)
        if settings.SEED_DEMO_DATA:
            await seed_demo_data(session)

    if settings.CACHE_ENABLED:
        app.state.snapshot_cache = SnapshotCache.from_url(
            settings.REDIS_URL, default_ttl=settings.SNAPSHOT_CACHE_TTL_SECONDS
        )
        logger.info("Snapshot cache enabled")

    logger.info("Accreditation service v%s started", settings.VERSION)
    yield

    cache = getattr(app.state, "snapshot_cache", None)
    if cache is not None:
        await cache.close()
    await engine.dispose()
    logger.info("Shutdown complete")


# ── App factory ─────────────────────────────────────────────────────
def create_app() -> FastAPI:
    application = FastAPI(
        title=settings.PROJECT_NAME,
        description="Event accreditation and access-control backend",
        version=settings.VERSION,
        openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # Login rate limiting
    application.state.limiter = limiter

    # CORS
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Global exception handlers (prevent stack-trace leakage)
    register_exception_handlers(application)

    # Mount API v1
    application.include_router(api_router, prefix=settings.API_V1_PREFIX)

    return application


app = create_app()
