"""Pydantic schemas for scanner-device synchronisation and scan-log upload."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field, field_validator

from accreditation.schemas.access import AreaSnapshotRow, AuthorizationSnapshotRow


class SnapshotMetadata(BaseModel):
    checksum: str
    timestamp: str
    count: int
    version: int


class UsersDatabase(BaseModel):
    users: list[AuthorizationSnapshotRow]
    metadata: SnapshotMetadata


class AreasDatabase(BaseModel):
    areas: list[AreaSnapshotRow]
    metadata: SnapshotMetadata


class UpdateCheck(BaseModel):
    users_update_available: bool
    areas_update_available: bool
    current_users_version: int
    current_areas_version: int


# ── Scan logs ───────────────────────────────────────────────────────
class ScanLogEntryIn(BaseModel):
    """One scan event as reported by a device; validated per entry."""

    user_id: int
    area_id: int
    access_granted: bool
    failure_reason: str | None = Field(default=None, max_length=500)
    scanned_at: datetime
    degraded: bool = False
    device_info: dict = Field(default_factory=dict)

    @field_validator("scanned_at")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)


class ScanLogBatch(BaseModel):
    logs: list[Any] = Field(max_length=5000)
    device_id: str | None = Field(default=None, max_length=255)


class IngestFailure(BaseModel):
    index: int
    user_id: Any = None
    scanned_at: Any = None
    error: str


class IngestResult(BaseModel):
    processed: int = 0
    duplicates: int = 0
    errors: int = 0
    total: int = 0
    failures: list[IngestFailure] = Field(default_factory=list)
