"""Create, persist and read goal plans."""
from __future__ import annotations

import logging
from collections import OrderedDict
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError

from goalplanner.api.schemas.plan import (
    CreatePlanData,
    GoalPayload,
    GoalPlanData,
    PlanBody,
    PlanTaskPayload,
    StrategyPayload,
)
from goalplanner.core.config import Settings
from goalplanner.db.models.goal import Goal
from goalplanner.db.models.strategy import Strategy
from goalplanner.db.models.task import Task, TaskCreatedBy, TaskPriority, TaskStatus
from goalplanner.services.date_scheduler import calculate_task_date, plan_start_date
from goalplanner.services.errors import (
    REGION_UNAVAILABLE_MESSAGE,
    GenerationFailedError,
    NotFoundError,
    RegionUnavailableError,
    UpstreamFailureKind,
    UpstreamUnavailableError,
)
from goalplanner.services.goal_refs import Durable, GoalRef, UserRef
from goalplanner.services.goal_store import GoalStore
from goalplanner.services.plan_generator import PlanGenerationClient
from goalplanner.services.plan_validator import PlanResponse

logger = logging.getLogger(__name__)

PRIORITY_RANK = {"high": 3, "medium": 2, "low": 1}


def _value(field: Any) -> Any:
    return getattr(field, "value", field)


def task_sort_key(task: Task) -> Tuple[int, int]:
    """Day index ascending, then priority high > medium > low."""
    return (task.day_index or 0, -PRIORITY_RANK.get(_value(task.priority), 0))


def format_date(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value else None


def summarize_plan(plan: PlanResponse) -> str:
    """Chat-ready overview: numbered strategy and tasks grouped by day."""
    strategy_text = "\n\n".join(
        f"{index}. {item.title}\n   {item.description}" for index, item in enumerate(plan.strategy, start=1)
    )
    by_day: Dict[int, List[Any]] = OrderedDict()
    for task in sorted(plan.tasks, key=lambda t: (t.day_index, -PRIORITY_RANK[t.priority])):
        by_day.setdefault(task.day_index, []).append(task)
    days_text = "\n\n".join(
        f"Day {day}:\n" + "\n".join(f"  - {task.title} ({task.priority})" for task in tasks)
        for day, tasks in by_day.items()
    )
    return (
        "Your plan is ready!\n\n"
        f"Strategy:\n{strategy_text}\n\n"
        f"Tasks by day ({plan.days_count} days in total):\n{days_text}\n\n"
        f"Total tasks: {len(plan.tasks)}"
    )


def build_plan_content(
    plan: PlanResponse,
    tasks: Sequence[Task],
    constraints: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    days: Dict[str, List[Dict[str, Any]]] = {}
    for task in sorted(tasks, key=lambda t: (t.date or date.min, task_sort_key(t))):
        days.setdefault(format_date(task.date) or "", []).append(
            {
                "id": str(task.id),
                "title": task.title,
                "description": task.description,
                "priority": _value(task.priority),
                "created_by": _value(task.created_by),
            }
        )
    constraints = dict(constraints or {})
    return {
        "days": [{"date": day, "tasks": entries} for day, entries in days.items()],
        "meta": {
            "total_days": plan.days_count,
            "avg_daily_duration": constraints.get("daily_time_limit_mins", 0),
            "constraints": constraints,
            "milestones": [item.title for item in plan.strategy],
        },
    }


class PlanOrchestrator:
    """Runs plan generation and reconciles the result with storage."""

    def __init__(
        self,
        store: GoalStore,
        generator: PlanGenerationClient,
        config: Settings,
        *,
        today: Optional[Callable[[], date]] = None,
    ) -> None:
        self.store = store
        self.generator = generator
        self.config = config
        self._today = today or (lambda: plan_start_date(config.planner_timezone))

    def create_plan(
        self,
        user: UserRef,
        goal_ref: GoalRef,
        goal_description: str,
        context_description: str,
        target_date: Optional[date] = None,
    ) -> CreatePlanData:
        start_date = self._today()
        goal = self._resolve_goal(user, goal_ref, goal_description, context_description)
        if goal is None:
            goal_payload = GoalPayload(id=goal_ref.token, title=goal_description, context=context_description)
        else:
            goal_payload = _goal_payload(goal)
        logger.info("Creating plan for goal %s (durable=%s)", goal_ref.token, goal is not None)

        try:
            plan = self.generator.generate_plan(goal_description, context_description, target_date, today=start_date)
        except UpstreamUnavailableError as exc:
            if exc.kind is UpstreamFailureKind.REGION:
                raise RegionUnavailableError(REGION_UNAVAILABLE_MESSAGE) from exc
            raise GenerationFailedError(f"Failed to generate plan: {exc}") from exc

        if goal is None:
            strategy, tasks = _ephemeral_payloads(plan, start_date, target_date)
        else:
            try:
                strategies, task_rows = self.persist_generated_plan(
                    goal.id, plan, start_date=start_date, target_date=target_date
                )
                self.store.commit()
                strategy = [_strategy_payload(item) for item in strategies]
                tasks = [_task_payload(task) for task in task_rows]
            except SQLAlchemyError:
                logger.exception("Saving plan for goal %s failed; returning unsaved plan", goal_ref.token)
                self.store.rollback()
                strategy, tasks = _ephemeral_payloads(plan, start_date, target_date)

        return CreatePlanData(
            goal=goal_payload,
            plan=PlanBody(strategy=strategy, tasks=tasks, days_count=plan.days_count),
        )

    def _resolve_goal(
        self,
        user: UserRef,
        goal_ref: GoalRef,
        title: str,
        context: str,
    ) -> Optional[Goal]:
        """Find, update or create the durable goal; None means this call stays in memory."""
        if not isinstance(goal_ref, Durable):
            return None
        try:
            goal = self.store.get_goal(goal_ref.id)
            if goal is not None:
                goal = self.store.update_goal(goal, title=title, context=context)
            elif isinstance(user, Durable):
                goal = self.store.create_goal(goal_ref.id, user.id, title, context)
            else:
                logger.warning("Actor %s is not durable; goal %s will not be saved", user.token, goal_ref.token)
                return None
            self.store.commit()
            return goal
        except SQLAlchemyError:
            logger.exception("Goal %s could not be loaded or saved; continuing unsaved", goal_ref.token)
            self.store.rollback()
            return None

    def persist_generated_plan(
        self,
        goal_id: UUID,
        plan: PlanResponse,
        *,
        start_date: date,
        target_date: Optional[date] = None,
        skip_weekends: bool = False,
        constraints: Optional[Dict[str, Any]] = None,
    ) -> Tuple[List[Strategy], List[Task]]:
        """Replace strategy and disposable tasks, and refresh the plan snapshot. Does not commit."""
        strategies = self.store.replace_strategies(
            goal_id, [{"title": item.title, "description": item.description} for item in plan.strategy]
        )
        self.store.delete_disposable_tasks(goal_id)
        snapshot = self.store.upsert_plan(goal_id, generated_by=self.config.openai_model)
        tasks = [
            Task(
                goal_id=goal_id,
                plan_id=snapshot.id,
                date=calculate_task_date(item.day_index, start_date, target_date, skip_weekends),
                day_index=item.day_index,
                title=item.title,
                description=item.description,
                priority=TaskPriority(item.priority),
                status=TaskStatus.TODO,
                created_by=TaskCreatedBy.AI,
                manually_added=False,
            )
            for item in plan.tasks
        ]
        self.store.add_tasks(tasks)
        self.store.set_plan_content(snapshot, build_plan_content(plan, tasks, constraints))
        return strategies, tasks

    def get_plan(self, goal_id: UUID, user_id: UUID) -> GoalPlanData:
        goal = self.store.get_owned_goal(goal_id, user_id)
        if goal is None:
            raise NotFoundError("Goal not found")

        strategies = self.store.list_strategies(goal_id)
        tasks = [
            task
            for task in self.store.list_tasks(goal_id)
            if not (task.manually_added and task.day_index is None)
        ]
        tasks.sort(key=task_sort_key)
        days_count = max((task.day_index or 0 for task in tasks), default=0)
        return GoalPlanData(
            goal=_goal_payload(goal),
            strategy=[_strategy_payload(item) for item in sorted(strategies, key=lambda s: s.order_index)],
            tasks=[_task_payload(task) for task in tasks],
            days_count=days_count,
        )


def _ephemeral_payloads(
    plan: PlanResponse,
    start_date: date,
    target_date: Optional[date],
) -> Tuple[List[StrategyPayload], List[PlanTaskPayload]]:
    strategy = [
        StrategyPayload(id=f"temp-strategy-{index}", title=item.title, description=item.description)
        for index, item in enumerate(plan.strategy)
    ]
    tasks = [
        PlanTaskPayload(
            id=f"temp-task-{index}",
            title=item.title,
            description=item.description,
            priority=item.priority,
            day_index=item.day_index,
            date=format_date(calculate_task_date(item.day_index, start_date, target_date)),
        )
        for index, item in enumerate(plan.tasks)
    ]
    return strategy, tasks


def _goal_payload(goal: Goal) -> GoalPayload:
    return GoalPayload(
        id=str(goal.id),
        title=goal.title,
        context=goal.context or "",
        status=_value(goal.status),
    )


def _strategy_payload(item: Strategy) -> StrategyPayload:
    return StrategyPayload(id=str(item.id), title=item.title, description=item.description)


def _task_payload(task: Task) -> PlanTaskPayload:
    return PlanTaskPayload(
        id=str(task.id),
        title=task.title,
        description=task.description or "",
        priority=_value(task.priority),
        day_index=task.day_index,
        date=format_date(task.date),
    )
