"""Plan creation and retrieval endpoints."""
from __future__ import annotations

import logging
from time import perf_counter
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from goalplanner.api.deps import get_current_user_id, get_optional_user_id, get_plan_generator, resolve_actor
from goalplanner.api.schemas.plan import CreatePlanRequest, CreatePlanResponse, GoalPlanResponse
from goalplanner.core.config import get_settings
from goalplanner.db.deps import get_db
from goalplanner.observability.metrics import log_metric
from goalplanner.observability.tracing import trace
from goalplanner.services.errors import GenerationFailedError, NotFoundError, RegionUnavailableError
from goalplanner.services.goal_refs import Durable, resolve_ref
from goalplanner.services.goal_store import GoalStore
from goalplanner.services.plan_generator import PlanGenerationClient
from goalplanner.services.plan_orchestrator import PlanOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/goals/create-plan",
    response_model=CreatePlanResponse,
    tags=["plans"],
)
def create_plan_endpoint(
    payload: CreatePlanRequest,
    http_request: Request,
    header_user_id: Optional[str] = Depends(get_optional_user_id),
    db: Session = Depends(get_db),
    generator: PlanGenerationClient = Depends(get_plan_generator),
) -> CreatePlanResponse:
    """Generate a plan for a goal, saving it when the goal and actor are durable."""
    request_id = getattr(http_request.state, "request_id", None)
    actor = resolve_actor(header_user_id, payload.user_id)
    goal_ref = resolve_ref(payload.goal_id)
    user_ref = resolve_ref(actor)
    orchestrator = PlanOrchestrator(GoalStore(db), generator, get_settings())

    metadata = {
        "route": "/goals/create-plan",
        "goal_id": payload.goal_id,
        "durable_goal": isinstance(goal_ref, Durable),
        "has_target_date": payload.target_date is not None,
    }
    start_time = perf_counter()
    success = False
    tasks_generated = 0

    try:
        with trace("plan.create", metadata=metadata, user_id=actor, request_id=request_id):
            data = orchestrator.create_plan(
                user_ref,
                goal_ref,
                payload.goal_description,
                payload.context_description,
                payload.target_date,
            )
            tasks_generated = len(data.plan.tasks)
            success = True
    except RegionUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except GenerationFailedError as exc:
        logger.error("Plan generation failed for goal %s: %s", payload.goal_id, exc)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    finally:
        latency_ms = (perf_counter() - start_time) * 1000
        metric_metadata = {"goal_id": payload.goal_id, "tasks_generated": tasks_generated}
        log_metric("plan.create.success", 1 if success else 0, metadata=metric_metadata)
        log_metric("plan.create.latency_ms", latency_ms, metadata=metric_metadata)

    return CreatePlanResponse(data=data)


@router.get(
    "/goals/{goal_id}/plan",
    response_model=GoalPlanResponse,
    tags=["plans"],
)
def get_plan_endpoint(
    goal_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    generator: PlanGenerationClient = Depends(get_plan_generator),
) -> GoalPlanResponse:
    """Return the stored strategy and tasks for a goal owned by the caller."""
    goal_ref = resolve_ref(goal_id)
    user_ref = resolve_ref(user_id)
    if not isinstance(goal_ref, Durable) or not isinstance(user_ref, Durable):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Goal not found")

    orchestrator = PlanOrchestrator(GoalStore(db), generator, get_settings())
    with trace("plan.get", metadata={"goal_id": goal_id}, user_id=user_id):
        try:
            data = orchestrator.get_plan(goal_ref.id, user_ref.id)
        except NotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return GoalPlanResponse(data=data)
