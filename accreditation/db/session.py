"""
Async SQLAlchemy engine & session factory.

PostgreSQL (asyncpg) in production; any async URL works, e.g.
``sqlite+aiosqlite`` for local runs. Pool checkout is bounded by the same
timeout the snapshot store applies to queries.
"""

from __future__ import annotations

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from accreditation.core.config import settings

database_url = make_url(settings.DATABASE_URL)

engine_args: dict = {
    "echo": False,
    "pool_pre_ping": True,
}

if database_url.get_backend_name() == "postgresql":
    engine_args.update(
        {
            "pool_size": 20,
            "max_overflow": 10,
            "pool_recycle": 300,
            "pool_timeout": settings.STORE_TIMEOUT_SECONDS,
        }
    )
elif database_url.get_backend_name() == "sqlite":
    engine_args["connect_args"] = {"check_same_thread": False}

engine = create_async_engine(database_url, **engine_args)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)
