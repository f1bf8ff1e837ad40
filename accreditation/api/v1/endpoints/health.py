"""Liveness probe for the database and the optional Redis cache."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from accreditation.api.v1.deps import get_db, get_snapshot_cache
from accreditation.services.cache import SnapshotCache

router = APIRouter(tags=["health"])
logger = logging.getLogger(__name__)


class HealthResponse(BaseModel):
    db: bool
    redis: bool


@router.get("/health", response_model=HealthResponse)
async def health(
    db: AsyncSession = Depends(get_db),
    cache: SnapshotCache | None = Depends(get_snapshot_cache),
) -> HealthResponse:
    result = HealthResponse(db=False, redis=False)
    try:
        await db.execute(text("SELECT 1"))
        result.db = True
    except SQLAlchemyError as exc:
        logger.warning("Health check: database unreachable: %s", exc)
    if cache is not None:
        result.redis = await cache.ping()
    return result
