"""Helpers for working with users."""
from __future__ import annotations

from typing import Any, Dict, Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from goalplanner.db.models.user import SubscriptionTier, User


def get_or_create_user(db: Session, user_id: UUID) -> User:
    """Fetch an existing user or create a new row safely."""
    user = db.get(User, user_id)
    if user:
        return user

    user = User(id=user_id)
    db.add(user)
    try:
        db.flush()
        return user
    except IntegrityError:
        db.rollback()
        existing = db.get(User, user_id)
        if existing:
            return existing
        raise


def is_free_tier(user: Optional[User]) -> bool:
    """Unknown users are not gated."""
    return user is not None and user.subscription_tier == SubscriptionTier.FREE


def plan_constraints(user: Optional[User], default_daily_limit: int = 60) -> Dict[str, Any]:
    """Scheduling constraints derived from the user's stored preferences."""
    prefs = (user.settings if user else None) or {}
    return {
        "no_weekends": prefs.get("weekends") is False,
        "daily_time_limit_mins": prefs.get("dailyTimeLimitMins") or default_daily_limit,
    }
