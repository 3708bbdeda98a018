"""Schemas for plan creation and retrieval."""
from __future__ import annotations

from datetime import date
from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator

from goalplanner.services.date_scheduler import parse_target_date


class CreatePlanRequest(BaseModel):
    goal_id: str = Field(..., min_length=1)
    goal_description: str = Field(..., min_length=1)
    context_description: str = ""
    target_date: Optional[date] = None
    user_id: Optional[str] = None

    @field_validator("target_date", mode="before")
    @classmethod
    def _parse_target_date(cls, value: Any) -> Optional[date]:
        return parse_target_date(value)


class GoalPayload(BaseModel):
    id: str
    title: str
    context: str = ""
    status: Optional[str] = None


class StrategyPayload(BaseModel):
    id: str
    title: str
    description: str


class PlanTaskPayload(BaseModel):
    id: str
    title: str
    description: str = ""
    priority: str
    day_index: Optional[int] = None
    date: Optional[str] = None


class PlanBody(BaseModel):
    strategy: List[StrategyPayload]
    tasks: List[PlanTaskPayload]
    days_count: int = Field(..., serialization_alias="daysCount")


class CreatePlanData(BaseModel):
    goal: GoalPayload
    plan: PlanBody


class CreatePlanResponse(BaseModel):
    success: bool = True
    data: CreatePlanData


class GoalPlanData(BaseModel):
    goal: GoalPayload
    strategy: List[StrategyPayload]
    tasks: List[PlanTaskPayload]
    days_count: int = Field(..., serialization_alias="daysCount")


class GoalPlanResponse(BaseModel):
    success: bool = True
    data: GoalPlanData
