"""Task ORM model."""
from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Index, Integer, Text, func, text as sa_text
from sqlalchemy.dialects.postgresql import UUID

from goalplanner.db.base import Base
from goalplanner.db.types import string_enum


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class TaskStatus(str, Enum):
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    DONE = "done"


class TaskCreatedBy(str, Enum):
    AI = "ai"
    USER = "user"


class Task(Base):
    __tablename__ = "tasks"
    __table_args__ = (
        Index("ix_tasks_goal_id", "goal_id"),
        Index("ix_tasks_plan_id", "plan_id"),
        Index("ix_tasks_status", "status"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    goal_id = Column(UUID(as_uuid=True), ForeignKey("goals.id", ondelete="CASCADE"), nullable=False)
    plan_id = Column(UUID(as_uuid=True), ForeignKey("plans.id", ondelete="SET NULL"), nullable=True)
    date = Column(Date, nullable=True)
    # 1-based position in the plan; day 1 is the generation day.
    day_index = Column(Integer, nullable=True)
    title = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    priority = Column(string_enum(TaskPriority, 10), nullable=False, default=TaskPriority.MEDIUM)
    status = Column(string_enum(TaskStatus, 20), nullable=False, default=TaskStatus.TODO)
    created_by = Column(string_enum(TaskCreatedBy, 20), nullable=False, default=TaskCreatedBy.USER)
    manually_added = Column(Boolean, nullable=False, server_default=sa_text("false"), default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
