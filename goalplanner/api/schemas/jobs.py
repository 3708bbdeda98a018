"""Schemas for background plan generation jobs."""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class PlanConstraintsOverride(BaseModel):
    no_weekends: Optional[bool] = None
    daily_time_limit_mins: Optional[int] = Field(default=None, ge=1)


class GeneratePlanRequest(BaseModel):
    constraints: Optional[PlanConstraintsOverride] = None


class JobAccepted(BaseModel):
    jobId: str


class JobAcceptedResponse(BaseModel):
    success: bool = True
    data: JobAccepted


class JobStatusPayload(BaseModel):
    status: str
    progress: int
    estimated_seconds: Optional[int] = None
    error: Optional[str] = None


class JobStatusResponse(BaseModel):
    success: bool = True
    data: JobStatusPayload
