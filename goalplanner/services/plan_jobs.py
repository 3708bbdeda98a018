"""Background plan generation jobs."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from threading import Lock
from time import monotonic
from typing import Any, Callable, Dict, Optional
from uuid import UUID, uuid4

from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy.orm import Session

from goalplanner.core.config import Settings
from goalplanner.db.models.message import MessageRole
from goalplanner.observability.metrics import record_latency
from goalplanner.observability.tracing import trace
from goalplanner.services.date_scheduler import plan_start_date
from goalplanner.services.errors import NotFoundError
from goalplanner.services.goal_store import GoalStore
from goalplanner.services.plan_generator import PlanGenerationClient
from goalplanner.services.plan_orchestrator import PlanOrchestrator, summarize_plan

logger = logging.getLogger(__name__)

PROGRESS_STARTED = 10
PROGRESS_GENERATED = 80
PROGRESS_DONE = 100


class JobState(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class PlanJob:
    id: str
    goal_id: UUID
    user_id: UUID
    title: str
    context: str
    constraints: Dict[str, Any] = field(default_factory=dict)
    state: JobState = JobState.WAITING
    progress: int = 0
    error: Optional[str] = None
    plan_id: Optional[UUID] = None
    finished_at: Optional[float] = None


class PlanJobQueue:
    """In-process job registry executed by an APScheduler BackgroundScheduler.

    With ``inline=True`` jobs run synchronously inside ``enqueue``. Finished
    jobs stay readable for ``plan_job_retention_seconds`` and are then dropped.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        generator_factory: Callable[[], PlanGenerationClient],
        config: Settings,
        *,
        inline: bool = False,
        scheduler: Optional[BackgroundScheduler] = None,
        today: Optional[Callable[[], date]] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self._session_factory = session_factory
        self._generator_factory = generator_factory
        self._config = config
        self._inline = inline or not config.plan_jobs_enabled
        self._scheduler = scheduler
        self._today = today or (lambda: plan_start_date(config.planner_timezone))
        self._jobs: Dict[str, PlanJob] = {}
        self._lock = Lock()
        self._clock = clock or monotonic

    @property
    def inline(self) -> bool:
        return self._inline

    def start(self) -> None:
        if self._inline:
            logger.info("Plan jobs run inline; scheduler not started")
            return
        if self._scheduler is None:
            self._scheduler = BackgroundScheduler(timezone=self._config.planner_timezone)
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info("Plan job scheduler started")

    def shutdown(self) -> None:
        if self._scheduler is not None and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Plan job scheduler stopped")

    def enqueue(
        self,
        *,
        goal_id: UUID,
        user_id: UUID,
        title: str,
        context: str,
        constraints: Optional[Dict[str, Any]] = None,
    ) -> PlanJob:
        job = PlanJob(
            id=uuid4().hex,
            goal_id=goal_id,
            user_id=user_id,
            title=title,
            context=context,
            constraints=dict(constraints or {}),
        )
        with self._lock:
            self._evict_finished()
            self._jobs[job.id] = job
        logger.info("Enqueued plan job %s for goal %s", job.id, goal_id)

        if self._inline:
            self.run(job.id)
        else:
            self.start()
            self._scheduler.add_job(
                self.run,
                trigger="date",
                args=[job.id],
                id=f"plan-job-{job.id}",
                misfire_grace_time=None,
            )
        return job

    def get(self, job_id: str) -> Optional[PlanJob]:
        with self._lock:
            self._evict_finished()
            return self._jobs.get(job_id)

    def status(self, job_id: str) -> Dict[str, Any]:
        job = self.get(job_id)
        if job is None:
            raise NotFoundError("Job not found")
        return {
            "status": job.state.value,
            "progress": job.progress,
            "estimated_seconds": self._config.plan_job_estimated_seconds if job.state is JobState.ACTIVE else None,
            "error": job.error,
        }

    def _update(self, job: PlanJob, **changes: Any) -> None:
        with self._lock:
            for key, value in changes.items():
                setattr(job, key, value)

    def _evict_finished(self) -> None:
        """Drop completed and failed jobs older than the retention window. Caller holds the lock."""
        cutoff = self._clock() - self._config.plan_job_retention_seconds
        expired = [
            job_id
            for job_id, job in self._jobs.items()
            if job.finished_at is not None and job.finished_at <= cutoff
        ]
        for job_id in expired:
            del self._jobs[job_id]
        if expired:
            logger.debug("Evicted %s finished plan jobs", len(expired))

    def run(self, job_id: str) -> None:
        """Worker entry point: generate, persist and report progress for one job."""
        job = self.get(job_id)
        if job is None:
            logger.warning("Plan job %s vanished before it ran", job_id)
            return

        self._update(job, state=JobState.ACTIVE, progress=PROGRESS_STARTED)
        session = self._session_factory()
        store = GoalStore(session)
        metadata = {"job_id": job.id, "goal_id": str(job.goal_id), **job.constraints}
        try:
            with trace("plans.job", metadata=metadata, user_id=str(job.user_id)), record_latency(
                "plans.job", metadata=metadata
            ) as outcome:
                generator = self._generator_factory()
                start_date = self._today()
                plan = generator.generate_plan(job.title, job.context, None, today=start_date)
                self._update(job, progress=PROGRESS_GENERATED)

                goal = store.get_goal(job.goal_id)
                if goal is None:
                    raise NotFoundError("Goal not found")

                orchestrator = PlanOrchestrator(store, generator, self._config, today=lambda: start_date)
                _, tasks = orchestrator.persist_generated_plan(
                    goal.id,
                    plan,
                    start_date=start_date,
                    skip_weekends=bool(job.constraints.get("no_weekends")),
                    constraints=job.constraints,
                )
                store.add_message(
                    goal_id=goal.id,
                    user_id=goal.user_id,
                    role=MessageRole.ASSISTANT,
                    content=summarize_plan(plan),
                )
                snapshot = store.get_plan(goal.id)
                store.commit()
                outcome.mark_success(tasks_generated=len(tasks))
            self._update(
                job,
                state=JobState.COMPLETED,
                finished_at=self._clock(),
                progress=PROGRESS_DONE,
                plan_id=snapshot.id if snapshot else None,
            )
            logger.info("Plan job %s completed with %s tasks", job.id, len(tasks))
        except Exception as exc:
            store.rollback()
            self._update(job, state=JobState.FAILED, error=str(exc), finished_at=self._clock())
            logger.exception("Plan job %s failed", job.id)
        finally:
            session.close()
