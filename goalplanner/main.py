"""Main FastAPI application for the goal planner backend."""
from fastapi import FastAPI, Request

from goalplanner.api.deps import get_plan_job_queue
from goalplanner.api.routes.chat import router as chat_router
from goalplanner.api.routes.goals_plan import router as goals_plan_router
from goalplanner.api.routes.plans import router as plans_router
from goalplanner.core.config import settings
from goalplanner.core.logging import configure_logging
from goalplanner.core.middleware import RequestContextMiddleware
from goalplanner.observability.client import init_opik
from goalplanner.observability.tracing import trace

configure_logging(log_level=settings.log_level)

app = FastAPI(title=settings.app_name, version="0.1.0")
app.add_middleware(RequestContextMiddleware)
app.include_router(goals_plan_router)
app.include_router(chat_router)
app.include_router(plans_router)


@app.on_event("startup")
async def startup_services() -> None:
    """Initialize observability and the plan job scheduler after the event loop starts."""
    init_opik()
    get_plan_job_queue().start()


@app.on_event("shutdown")
async def shutdown_services() -> None:
    get_plan_job_queue().shutdown()


@app.get("/health", tags=["health"], summary="Readiness probe")
async def health_check(request: Request) -> dict[str, str]:
    """Return a simple status payload so automation can probe the API."""
    with trace("http.health_check", metadata={"route": "/health"}, request_id=request.state.request_id):
        return {"status": "ok"}
