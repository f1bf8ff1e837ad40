"""
ScanLog model — append-only record of every access attempt.

``(user_id, scanned_at)`` is the natural dedup key: a scanner device that
re-uploads the same event hits the unique constraint and is ignored.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (JSON, Boolean, Column, DateTime, ForeignKey, Integer,
                        Text, UniqueConstraint)

from accreditation.db.base import Base
from accreditation.models.user import utcnow


class ScanLog(Base):
    __tablename__ = "scan_logs"
    __table_args__ = (
        UniqueConstraint("user_id", "scanned_at", name="uq_scan_log_user_scanned_at"),
    )

    id: int = Column(Integer, primary_key=True)  # type: ignore[assignment]
    user_id: int = Column(  # type: ignore[assignment]
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    area_id: int = Column(  # type: ignore[assignment]
        Integer, ForeignKey("areas.id", ondelete="CASCADE"), nullable=False
    )
    scanner_user_id: int | None = Column(  # type: ignore[assignment]
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    access_granted: bool = Column(Boolean, nullable=False)  # type: ignore[assignment]
    degraded: bool = Column(Boolean, nullable=False, default=False, server_default="false")  # type: ignore[assignment]
    failure_reason: str | None = Column(Text, nullable=True)  # type: ignore[assignment]
    scanned_at: datetime = Column(DateTime(timezone=True), nullable=False, index=True)  # type: ignore[assignment]
    device_info: dict | None = Column(JSON, nullable=True)  # type: ignore[assignment]
    created_at: datetime = Column(DateTime(timezone=True), default=utcnow)  # type: ignore[assignment]
