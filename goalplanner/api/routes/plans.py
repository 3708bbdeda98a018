"""Background plan generation endpoints."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from goalplanner.api.deps import get_current_user_id, get_plan_job_queue
from goalplanner.api.schemas.jobs import (
    GeneratePlanRequest,
    JobAccepted,
    JobAcceptedResponse,
    JobStatusPayload,
    JobStatusResponse,
)
from goalplanner.core.config import get_settings
from goalplanner.db.deps import get_db
from goalplanner.observability.tracing import trace
from goalplanner.services.errors import NotFoundError
from goalplanner.services.goal_refs import Durable, resolve_ref
from goalplanner.services.goal_store import GoalStore
from goalplanner.services.plan_jobs import PlanJobQueue
from goalplanner.services.users import plan_constraints

router = APIRouter()


@router.post(
    "/plans/goals/{goal_id}/generate",
    response_model=JobAcceptedResponse,
    tags=["plans"],
)
def generate_plan_endpoint(
    goal_id: str,
    http_request: Request,
    payload: GeneratePlanRequest | None = None,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    queue: PlanJobQueue = Depends(get_plan_job_queue),
) -> JobAcceptedResponse:
    """Queue plan generation for a stored goal and return the job id to poll."""
    goal_ref = resolve_ref(goal_id)
    user_ref = resolve_ref(user_id)
    if not isinstance(goal_ref, Durable) or not isinstance(user_ref, Durable):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Goal not found")

    store = GoalStore(db)
    goal = store.get_owned_goal(goal_ref.id, user_ref.id)
    if goal is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Goal not found")

    constraints = plan_constraints(store.get_user(user_ref.id), get_settings().default_daily_time_limit_mins)
    if payload and payload.constraints:
        constraints.update(payload.constraints.model_dump(exclude_none=True))

    request_id = getattr(http_request.state, "request_id", None)
    with trace("plans.enqueue", metadata={"goal_id": goal_id, **constraints}, user_id=user_id, request_id=request_id):
        job = queue.enqueue(
            goal_id=goal.id,
            user_id=user_ref.id,
            title=goal.title,
            context=goal.context or "",
            constraints=constraints,
        )
    return JobAcceptedResponse(data=JobAccepted(jobId=job.id))


@router.get(
    "/plans/{job_id}/status",
    response_model=JobStatusResponse,
    tags=["plans"],
)
def plan_job_status(
    job_id: str,
    user_id: str = Depends(get_current_user_id),
    queue: PlanJobQueue = Depends(get_plan_job_queue),
) -> JobStatusResponse:
    job = queue.get(job_id)
    if job is None or str(job.user_id) != user_id.lower():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    try:
        data = queue.status(job_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return JobStatusResponse(data=JobStatusPayload(**data))
