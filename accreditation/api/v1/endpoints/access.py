"""
Access levels and access assignments (admin only).

Assignments are never deleted: revoking one deactivates it, which both removes
it from live verification and advances the users snapshot version.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from accreditation.api.v1.deps import get_db, require_admin
from accreditation.core.exceptions import ConflictError, NotFoundError
from accreditation.models.access import AccessAssignment, AccessLevel, Area
from accreditation.models.user import User
from accreditation.schemas.access import (AccessLevelCreate, AccessLevelRead,
                                          AssignmentCreate, AssignmentRead)
from accreditation.schemas.common import MessageResponse

router = APIRouter(prefix="/access", tags=["access"])
logger = logging.getLogger(__name__)


# ── Access levels ───────────────────────────────────────────────────
@router.get("/levels", response_model=list[AccessLevelRead])
async def list_access_levels(
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(require_admin),
) -> list[AccessLevel]:
    result = await db.execute(
        select(AccessLevel).order_by(AccessLevel.priority.desc(), AccessLevel.id)
    )
    return list(result.scalars().all())


@router.post("/levels", response_model=AccessLevelRead, status_code=201)
async def create_access_level(
    body: AccessLevelCreate,
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(require_admin),
) -> AccessLevel:
    existing = await db.execute(select(AccessLevel.id).where(AccessLevel.name == body.name))
    if existing.scalar_one_or_none() is not None:
        raise ConflictError(f"Access level '{body.name}' already exists")

    level = AccessLevel(**body.model_dump())
    db.add(level)
    await db.commit()
    await db.refresh(level)
    logger.info("Created access level %s (priority %d)", level.name, level.priority)
    return level


# ── Assignments ─────────────────────────────────────────────────────
async def _require(db: AsyncSession, model, pk: int, label: str):
    obj = await db.get(model, pk)
    if obj is None:
        raise NotFoundError(f"{label} {pk} not found")
    return obj


@router.get("/assignments", response_model=list[AssignmentRead])
async def list_assignments(
    user_id: int | None = None,
    include_inactive: bool = False,
    skip: int = 0,
    limit: int = Query(default=100, le=1000),
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(require_admin),
) -> list[AccessAssignment]:
    query = select(AccessAssignment).order_by(AccessAssignment.id).offset(skip).limit(limit)
    if user_id is not None:
        query = query.where(AccessAssignment.user_id == user_id)
    if not include_inactive:
        query = query.where(AccessAssignment.is_active.is_(True))
    result = await db.execute(query)
    return list(result.scalars().all())


@router.post("/assignments", response_model=AssignmentRead, status_code=201)
async def create_assignment(
    body: AssignmentCreate,
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(require_admin),
) -> AccessAssignment:
    """Grant a level for one area; re-granting a revoked pair reactivates it."""
    await _require(db, User, body.user_id, "User")
    await _require(db, AccessLevel, body.access_level_id, "Access level")
    await _require(db, Area, body.area_id, "Area")

    result = await db.execute(
        select(AccessAssignment).where(
            AccessAssignment.user_id == body.user_id,
            AccessAssignment.area_id == body.area_id,
        )
    )
    assignment = result.scalar_one_or_none()
    if assignment is not None and assignment.is_active:
        raise ConflictError("User already has an active assignment for this area")

    if assignment is None:
        assignment = AccessAssignment(**body.model_dump())
        db.add(assignment)
    else:
        for field, value in body.model_dump().items():
            setattr(assignment, field, value)
        assignment.is_active = True

    await db.commit()
    await db.refresh(assignment)
    logger.info(
        "Assigned level %d for area %d to user %d",
        assignment.access_level_id,
        assignment.area_id,
        assignment.user_id,
    )
    return assignment


@router.delete("/assignments/{assignment_id}", response_model=MessageResponse)
async def revoke_assignment(
    assignment_id: int,
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(require_admin),
) -> MessageResponse:
    assignment = await _require(db, AccessAssignment, assignment_id, "Assignment")
    assignment.is_active = False
    await db.commit()
    logger.info(
        "Revoked assignment %d (user %d, area %d)",
        assignment_id,
        assignment.user_id,
        assignment.area_id,
    )
    return MessageResponse(message=f"Assignment {assignment_id} revoked")
