"""
Area endpoints.

- GET requires any authenticated user.
- POST / DELETE require admin role.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from accreditation.api.v1.deps import get_current_active_user, get_db, require_admin
from accreditation.core.exceptions import ConflictError, NotFoundError
from accreditation.models.access import Area
from accreditation.models.user import User
from accreditation.schemas.access import AreaCreate, AreaRead
from accreditation.schemas.common import MessageResponse

router = APIRouter(prefix="/areas", tags=["areas"])
logger = logging.getLogger(__name__)


@router.get("", response_model=list[AreaRead])
async def list_areas(
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(get_current_active_user),
) -> list[Area]:
    result = await db.execute(select(Area).where(Area.is_active.is_(True)).order_by(Area.name))
    return list(result.scalars().all())


@router.post("", response_model=AreaRead, status_code=201)
async def create_area(
    body: AreaCreate,
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(require_admin),
) -> Area:
    existing = await db.execute(select(Area.id).where(Area.name == body.name))
    if existing.scalar_one_or_none() is not None:
        raise ConflictError(f"Area '{body.name}' already exists")

    area = Area(**body.model_dump())
    db.add(area)
    await db.commit()
    await db.refresh(area)
    logger.info("Created area %s", area.name)
    return area


@router.delete("/{area_id}", response_model=MessageResponse)
async def deactivate_area(
    area_id: int,
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(require_admin),
) -> MessageResponse:
    """Soft-delete an area; scan history referencing it is preserved."""
    area = await db.get(Area, area_id)
    if area is None:
        raise NotFoundError("Area not found")
    area.is_active = False
    await db.commit()
    logger.info("Deactivated area %d (%s)", area_id, area.name)
    return MessageResponse(message=f"Area '{area.name}' deactivated")
