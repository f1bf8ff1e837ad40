"""Pydantic schemas for access levels, areas, assignments and snapshots."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, Field, field_validator, model_validator

DEFAULT_ACCESS_LEVEL = "general"
DEFAULT_ACCESS_PRIORITY = 1


# ── Snapshot rows (computed, never persisted) ──────────────────────
class AuthorizationSnapshotRow(BaseModel):
    user_id: int
    email: str
    name: str
    phone: str | None = None
    access_level: str = DEFAULT_ACCESS_LEVEL
    access_priority: int = DEFAULT_ACCESS_PRIORITY
    allowed_areas: list[str] = Field(default_factory=list)
    allowed_area_ids: list[int] = Field(default_factory=list)
    is_active: bool = True

    model_config = {"frozen": True}


class AreaSnapshotRow(BaseModel):
    id: int
    name: str
    description: str | None = None
    requires_scan: bool
    is_active: bool

    model_config = {"from_attributes": True, "frozen": True}


# ── Access levels ───────────────────────────────────────────────────
class AccessLevelCreate(BaseModel):
    name: str
    description: str | None = None
    priority: int = 0

    @field_validator("name")
    @classmethod
    def _name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Name must not be empty")
        if len(v) > 100:
            raise ValueError("Name must not exceed 100 characters")
        return v


class AccessLevelRead(BaseModel):
    id: int
    name: str
    description: str | None
    priority: int
    is_active: bool

    model_config = {"from_attributes": True}


# ── Areas ───────────────────────────────────────────────────────────
class AreaCreate(BaseModel):
    name: str
    description: str | None = None
    requires_scan: bool = True

    @field_validator("name")
    @classmethod
    def _name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Name must not be empty")
        if len(v) > 100:
            raise ValueError("Name must not exceed 100 characters")
        return v


class AreaRead(BaseModel):
    id: int
    name: str
    description: str | None
    requires_scan: bool
    is_active: bool

    model_config = {"from_attributes": True}


# ── Assignments ─────────────────────────────────────────────────────
class AssignmentCreate(BaseModel):
    user_id: int
    access_level_id: int
    area_id: int
    valid_from: datetime | None = None
    valid_until: datetime | None = None

    @field_validator("valid_from", "valid_until")
    @classmethod
    def _utc(cls, v: datetime | None) -> datetime | None:
        if v is None:
            return None
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)

    @model_validator(mode="after")
    def _window(self) -> "AssignmentCreate":
        if (
            self.valid_from is not None
            and self.valid_until is not None
            and self.valid_until <= self.valid_from
        ):
            raise ValueError("valid_until must be after valid_from")
        return self


class AssignmentRead(BaseModel):
    id: int
    user_id: int
    access_level_id: int
    area_id: int
    valid_from: datetime | None
    valid_until: datetime | None
    is_active: bool

    model_config = {"from_attributes": True}
