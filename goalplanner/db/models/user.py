"""User ORM model."""
from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import Column, DateTime, Text, func
from sqlalchemy.dialects.postgresql import UUID

from goalplanner.db.base import Base
from goalplanner.db.types import JSONBCompat, string_enum


class SubscriptionTier(str, Enum):
    FREE = "free"
    PRO = "pro"
    ENTERPRISE = "enterprise"


class User(Base):
    __tablename__ = "users"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    email = Column(Text, nullable=True, unique=True)
    lang = Column(Text, nullable=False, default="en")
    subscription_tier = Column(
        string_enum(SubscriptionTier, 32),
        nullable=False,
        default=SubscriptionTier.FREE,
    )
    # Free-form preferences: weekends (bool), dailyTimeLimitMins (int), notifyTime.
    settings = Column(JSONBCompat, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
