"""Plan snapshot ORM model."""
from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, func
from sqlalchemy.dialects.postgresql import UUID

from goalplanner.db.base import Base
from goalplanner.db.types import JSONBCompat


class Plan(Base):
    __tablename__ = "plans"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    goal_id = Column(
        UUID(as_uuid=True),
        ForeignKey("goals.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    generated_by = Column(String(length=50), nullable=False)
    # {"days": [{"date", "tasks": [...]}], "meta": {"total_days", "avg_daily_duration", ...}}
    content = Column(JSONBCompat, nullable=False, default=dict)
    snapshot_version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
