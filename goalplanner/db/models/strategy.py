"""Strategy item ORM model."""
from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Column, ForeignKey, Index, Integer, Text
from sqlalchemy.dialects.postgresql import UUID

from goalplanner.db.base import Base


class Strategy(Base):
    __tablename__ = "goal_strategy"
    __table_args__ = (Index("ix_goal_strategy_goal_id", "goal_id"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    goal_id = Column(UUID(as_uuid=True), ForeignKey("goals.id", ondelete="CASCADE"), nullable=False)
    title = Column(Text, nullable=False)
    description = Column(Text, nullable=False)
    order_index = Column(Integer, nullable=False, default=0)
