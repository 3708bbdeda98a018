"""Shared FastAPI dependencies."""
from __future__ import annotations

from functools import lru_cache
from typing import Optional

from fastapi import Header, HTTPException, status

from goalplanner.core.config import get_settings
from goalplanner.core.middleware import USER_ID_HEADER
from goalplanner.db.session import SessionLocal
from goalplanner.services.plan_generator import PlanGenerationClient
from goalplanner.services.plan_jobs import PlanJobQueue


def get_current_user_id(user_id: Optional[str] = Header(default=None, alias=USER_ID_HEADER)) -> str:
    """Identity resolved by the upstream auth layer; required on private endpoints."""
    if not user_id or not user_id.strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User identity required")
    return user_id.strip()


def get_optional_user_id(user_id: Optional[str] = Header(default=None, alias=USER_ID_HEADER)) -> Optional[str]:
    return user_id.strip() if user_id and user_id.strip() else None


def resolve_actor(header_user_id: Optional[str], body_user_id: Optional[str]) -> str:
    """Header identity, then the body field, then the configured guest id."""
    return header_user_id or body_user_id or get_settings().default_user_id


@lru_cache
def get_plan_generator() -> PlanGenerationClient:
    return PlanGenerationClient(get_settings())


@lru_cache
def get_plan_job_queue() -> PlanJobQueue:
    return PlanJobQueue(SessionLocal, get_plan_generator, get_settings())
