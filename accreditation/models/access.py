"""
Access levels, areas and the (user, level, area) assignment relation.

An assignment is only honoured while it is active and ``now`` falls inside
``[valid_from, valid_until)``; open bounds are stored as NULL.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (Boolean, Column, DateTime, ForeignKey, Index, Integer,
                        String, Text, UniqueConstraint)

from accreditation.db.base import Base
from accreditation.models.user import utcnow


class AccessLevel(Base):
    __tablename__ = "access_levels"

    id: int = Column(Integer, primary_key=True, index=True)  # type: ignore[assignment]
    name: str = Column(String(100), unique=True, nullable=False)  # type: ignore[assignment]
    description: str | None = Column(Text, nullable=True)  # type: ignore[assignment]
    priority: int = Column(Integer, nullable=False, default=0)  # type: ignore[assignment]
    is_active: bool = Column(Boolean, default=True, server_default="true")  # type: ignore[assignment]
    updated_at: datetime = Column(  # type: ignore[assignment]
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )


class Area(Base):
    __tablename__ = "areas"

    id: int = Column(Integer, primary_key=True, index=True)  # type: ignore[assignment]
    name: str = Column(String(100), unique=True, nullable=False)  # type: ignore[assignment]
    description: str | None = Column(Text, nullable=True)  # type: ignore[assignment]
    requires_scan: bool = Column(Boolean, default=True, server_default="true")  # type: ignore[assignment]
    is_active: bool = Column(Boolean, default=True, server_default="true")  # type: ignore[assignment]
    updated_at: datetime = Column(  # type: ignore[assignment]
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )


class AccessAssignment(Base):
    __tablename__ = "access_assignments"
    __table_args__ = (
        UniqueConstraint("user_id", "area_id", name="uq_assignment_user_area"),
        Index("ix_assignment_user_id", "user_id"),
        Index("ix_assignment_area_id", "area_id"),
    )

    id: int = Column(Integer, primary_key=True)  # type: ignore[assignment]
    user_id: int = Column(  # type: ignore[assignment]
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    access_level_id: int = Column(  # type: ignore[assignment]
        Integer, ForeignKey("access_levels.id", ondelete="CASCADE"), nullable=False
    )
    area_id: int = Column(  # type: ignore[assignment]
        Integer, ForeignKey("areas.id", ondelete="CASCADE"), nullable=False
    )
    valid_from: datetime | None = Column(DateTime(timezone=True), nullable=True)  # type: ignore[assignment]
    valid_until: datetime | None = Column(DateTime(timezone=True), nullable=True)  # type: ignore[assignment]
    is_active: bool = Column(Boolean, default=True, server_default="true")  # type: ignore[assignment]
    created_at: datetime = Column(DateTime(timezone=True), default=utcnow)  # type: ignore[assignment]
    updated_at: datetime = Column(  # type: ignore[assignment]
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )
