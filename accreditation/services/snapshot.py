"""
Authorization snapshot store — read-through projection of who may enter where.

A snapshot row is recomputed from the relational store on every call:
``users ⋈ access_assignments ⋈ access_levels ⋈ areas`` filtered to active
rows inside their validity window, then aggregated per user in Python.

Version markers are derived from stored ``updated_at`` values and from
validity-window boundaries that have already been crossed, never from the
wall clock, so an unchanged dataset always reports the same version.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Sequence

from sqlalchemy import and_, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from accreditation.core.exceptions import NotFoundError, StoreUnavailableError
from accreditation.models.access import AccessAssignment, AccessLevel, Area
from accreditation.models.user import User
from accreditation.schemas.access import (DEFAULT_ACCESS_LEVEL,
                                          DEFAULT_ACCESS_PRIORITY,
                                          AreaSnapshotRow,
                                          AuthorizationSnapshotRow)
from accreditation.services.cache import SnapshotCache

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
USERS_CACHE_KEY = "snapshot:users"
AREAS_CACHE_KEY = "snapshot:areas"


def ensure_utc(dt: datetime) -> datetime:
    """Normalise a potentially-naive timestamp to UTC-aware."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def version_marker(*stamps: datetime | None) -> int:
    """Latest of ``stamps`` as integer microseconds since the epoch (0 if none)."""
    present = [ensure_utc(s) for s in stamps if s is not None]
    if not present:
        return 0
    return (max(present) - _EPOCH) // timedelta(microseconds=1)


def content_checksum(rows: Iterable[Any]) -> str:
    """SHA-256 over the canonical JSON of a row set."""
    canonical = json.dumps(
        [row.model_dump(mode="json") for row in rows],
        sort_keys=True,
        separators=(",", ":"),
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def in_window(valid_from: datetime | None, valid_until: datetime | None, now: datetime) -> bool:
    if valid_from is not None and ensure_utc(valid_from) > now:
        return False
    if valid_until is not None and now >= ensure_utc(valid_until):
        return False
    return True


@dataclass(frozen=True)
class UsersSnapshot:
    rows: list[AuthorizationSnapshotRow]
    checksum: str
    version: int


@dataclass(frozen=True)
class AreasSnapshot:
    rows: list[AreaSnapshotRow]
    checksum: str
    version: int


def aggregate_user_rows(rows: Sequence[Any], now: datetime) -> list[AuthorizationSnapshotRow]:
    """Fold joined (user, assignment, level, area) rows into one row per user.

    The highest-priority level wins, ties going to the lowest level id; the
    area set is the union over every qualifying assignment.
    """
    users: dict[int, dict[str, Any]] = {}
    for row in rows:
        entry = users.setdefault(
            row.user_id,
            {
                "user": row,
                "best": None,
                "areas": {},
            },
        )
        if row.level_id is None or row.area_id is None:
            continue
        if not in_window(row.valid_from, row.valid_until, now):
            continue
        rank = (-row.level_priority, row.level_id)
        if entry["best"] is None or rank < entry["best"][0]:
            entry["best"] = (rank, row.level_name, row.level_priority)
        entry["areas"][row.area_id] = row.area_name

    snapshot: list[AuthorizationSnapshotRow] = []
    for user_id in sorted(users):
        entry = users[user_id]
        user = entry["user"]
        best = entry["best"]
        areas: dict[int, str] = entry["areas"]
        snapshot.append(
            AuthorizationSnapshotRow(
                user_id=user_id,
                email=user.email,
                name=user.name,
                phone=user.phone,
                access_level=best[1] if best else DEFAULT_ACCESS_LEVEL,
                access_priority=best[2] if best else DEFAULT_ACCESS_PRIORITY,
                allowed_areas=sorted(set(areas.values())),
                allowed_area_ids=sorted(areas),
                is_active=True,
            )
        )
    return snapshot


class AuthorizationSnapshotStore:
    """Computes snapshots from the relational store; the cache is optional."""

    def __init__(
        self,
        db: AsyncSession,
        cache: SnapshotCache | None = None,
        timeout: float = 5.0,
    ) -> None:
        self._db = db
        self._cache = cache
        self._timeout = timeout

    async def _execute(self, stmt: Any) -> Any:
        try:
            return await asyncio.wait_for(self._db.execute(stmt), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            logger.error("Authorization store query timed out after %.1fs", self._timeout)
            raise StoreUnavailableError("Authorization store timed out") from exc
        except SQLAlchemyError as exc:
            logger.error("Authorization store query failed: %s", exc)
            raise StoreUnavailableError("Authorization store unavailable") from exc

    @staticmethod
    def _assignment_query():
        return (
            select(
                User.id.label("user_id"),
                User.email,
                User.name,
                User.phone,
                AccessAssignment.valid_from,
                AccessAssignment.valid_until,
                AccessLevel.id.label("level_id"),
                AccessLevel.name.label("level_name"),
                AccessLevel.priority.label("level_priority"),
                Area.id.label("area_id"),
                Area.name.label("area_name"),
            )
            .outerjoin(
                AccessAssignment,
                and_(
                    AccessAssignment.user_id == User.id,
                    AccessAssignment.is_active.is_(True),
                ),
            )
            .outerjoin(
                AccessLevel,
                and_(
                    AccessLevel.id == AccessAssignment.access_level_id,
                    AccessLevel.is_active.is_(True),
                ),
            )
            .outerjoin(
                Area,
                and_(Area.id == AccessAssignment.area_id, Area.is_active.is_(True)),
            )
            .where(User.is_active.is_(True))
            .order_by(User.id, AccessAssignment.id)
        )

    # ── Per-user ────────────────────────────────────────────────────
    async def get_user_snapshot(
        self, user_id: int, now: datetime | None = None
    ) -> AuthorizationSnapshotRow:
        """Live snapshot for one user; raises NotFoundError if missing or inactive."""
        now = ensure_utc(now) if now else datetime.now(timezone.utc)
        result = await self._execute(self._assignment_query().where(User.id == user_id))
        rows = aggregate_user_rows(result.all(), now)
        if not rows:
            raise NotFoundError("User not found or inactive")
        return rows[0]

    # ── Versions ────────────────────────────────────────────────────
    async def get_users_version(self, now: datetime | None = None) -> int:
        now = ensure_utc(now) if now else datetime.now(timezone.utc)
        stmt = select(
            select(func.max(User.updated_at)).scalar_subquery(),
            select(func.max(AccessAssignment.updated_at)).scalar_subquery(),
            select(func.max(AccessLevel.updated_at)).scalar_subquery(),
            # Area names and activity flags are part of every user row.
            select(func.max(Area.updated_at)).scalar_subquery(),
            # Window boundaries already crossed change the projection too.
            select(func.max(AccessAssignment.valid_from))
            .where(AccessAssignment.valid_from <= now)
            .scalar_subquery(),
            select(func.max(AccessAssignment.valid_until))
            .where(AccessAssignment.valid_until <= now)
            .scalar_subquery(),
        )
        result = await self._execute(stmt)
        return version_marker(*result.one())

    async def get_areas_version(self) -> int:
        result = await self._execute(select(func.max(Area.updated_at)))
        return version_marker(result.scalar_one_or_none())

    # ── Full snapshots ──────────────────────────────────────────────
    async def get_full_snapshot(self, now: datetime | None = None) -> UsersSnapshot:
        now = ensure_utc(now) if now else datetime.now(timezone.utc)
        version = await self.get_users_version(now)

        cached = await self._cached(USERS_CACHE_KEY, version)
        if cached is not None:
            rows = [AuthorizationSnapshotRow.model_validate(r) for r in cached["rows"]]
            return UsersSnapshot(rows=rows, checksum=cached["checksum"], version=version)

        result = await self._execute(self._assignment_query())
        rows = aggregate_user_rows(result.all(), now)
        snapshot = UsersSnapshot(rows=rows, checksum=content_checksum(rows), version=version)
        await self._store(USERS_CACHE_KEY, snapshot)
        logger.info("Computed users snapshot v%d (%d rows)", version, len(rows))
        return snapshot

    async def get_area_snapshot(self) -> AreasSnapshot:
        version = await self.get_areas_version()

        cached = await self._cached(AREAS_CACHE_KEY, version)
        if cached is not None:
            rows = [AreaSnapshotRow.model_validate(r) for r in cached["rows"]]
            return AreasSnapshot(rows=rows, checksum=cached["checksum"], version=version)

        result = await self._execute(
            select(Area).where(Area.is_active.is_(True)).order_by(Area.id)
        )
        rows = [AreaSnapshotRow.model_validate(a) for a in result.scalars().all()]
        snapshot = AreasSnapshot(rows=rows, checksum=content_checksum(rows), version=version)
        await self._store(AREAS_CACHE_KEY, snapshot)
        return snapshot

    # ── Cache helpers ───────────────────────────────────────────────
    async def _cached(self, key: str, version: int) -> dict | None:
        if self._cache is None:
            return None
        cached = await self._cache.get_json(key)
        if not isinstance(cached, dict) or cached.get("version") != version:
            return None
        logger.debug("Serving %s v%d from cache", key, version)
        return cached

    async def _store(self, key: str, snapshot: UsersSnapshot | AreasSnapshot) -> None:
        if self._cache is None:
            return
        await self._cache.set_json(
            key,
            {
                "version": snapshot.version,
                "checksum": snapshot.checksum,
                "rows": [r.model_dump(mode="json") for r in snapshot.rows],
            },
        )
