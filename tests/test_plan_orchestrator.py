from __future__ import annotations

import json
from datetime import date
from uuid import uuid4

import openai
import pytest
from sqlalchemy.exc import OperationalError

from fakes import FakeOpenAI, plan_json, status_error
from goalplanner.db.models import Goal, Plan, Strategy, Task, TaskCreatedBy, TaskPriority, User
from goalplanner.services.errors import NotFoundError, RegionUnavailableError
from goalplanner.services.goal_refs import Durable, Ephemeral
from goalplanner.services.goal_store import GoalStore
from goalplanner.services.plan_generator import PlanGenerationClient
from goalplanner.services.plan_orchestrator import PlanOrchestrator, summarize_plan
from goalplanner.services.plan_validator import parse_plan_text

TODAY = date(2026, 10, 12)


class RecordingStore:
    """Fails the test on any storage access."""

    def __init__(self):
        self.calls = []

    def __getattr__(self, name):
        def _record(*args, **kwargs):
            self.calls.append(name)
            raise AssertionError(f"storage accessed: {name}")

        return _record


class FailingWriteStore(GoalStore):
    def replace_strategies(self, goal_id, items):
        raise OperationalError("INSERT INTO goal_strategy", {}, Exception("disk full"))


def _orchestrator(store, test_settings, responses):
    generator = PlanGenerationClient(test_settings, client=FakeOpenAI(responses))
    return PlanOrchestrator(store, generator, test_settings, today=lambda: TODAY)


def test_ephemeral_goal_never_touches_storage(test_settings) -> None:
    store = RecordingStore()
    orchestrator = _orchestrator(store, test_settings, [plan_json(3)])

    result = orchestrator.create_plan(Durable(uuid4()), Ephemeral("goal_abc"), "Run a 5k", "Evenings", date(2026, 10, 14))

    assert store.calls == []
    assert result.goal.id == "goal_abc"
    assert [item.id for item in result.plan.strategy] == ["temp-strategy-0", "temp-strategy-1"]
    assert [task.id for task in result.plan.tasks] == ["temp-task-0", "temp-task-1", "temp-task-2"]
    assert [task.date for task in result.plan.tasks] == ["2026-10-12", "2026-10-13", "2026-10-14"]
    assert result.plan.days_count == 3


def test_durable_goal_with_guest_actor_is_not_saved(session_factory, test_settings) -> None:
    goal_id = uuid4()
    with session_factory() as db:
        orchestrator = _orchestrator(GoalStore(db), test_settings, [plan_json(2)])
        result = orchestrator.create_plan(Ephemeral("default-user-id"), Durable(goal_id), "Run", "", None)
        assert result.plan.tasks[0].id == "temp-task-0"
        assert db.get(Goal, goal_id) is None
        assert db.query(Task).count() == 0


def test_regeneration_replaces_ai_tasks_and_keeps_manual_ones(session_factory, test_settings) -> None:
    user_id, goal_id = uuid4(), uuid4()
    with session_factory() as db:
        orchestrator = _orchestrator(GoalStore(db), test_settings, [plan_json(3), plan_json(2)])
        orchestrator.create_plan(Durable(user_id), Durable(goal_id), "Run a 5k", "Evenings", None)

        manual = Task(
            goal_id=goal_id,
            title="Buy shoes",
            priority=TaskPriority.LOW,
            created_by=TaskCreatedBy.USER,
            manually_added=True,
        )
        db.add(manual)
        db.commit()

        result = orchestrator.create_plan(Durable(user_id), Durable(goal_id), "Run a 10k", "Mornings", None)

        tasks = db.query(Task).filter(Task.goal_id == goal_id).all()
        ai_tasks = [task for task in tasks if task.created_by == TaskCreatedBy.AI]
        assert len(ai_tasks) == 2
        assert {str(task.id) for task in ai_tasks} == {task.id for task in result.plan.tasks}
        assert db.get(Task, manual.id) is not None
        assert db.query(Strategy).filter(Strategy.goal_id == goal_id).count() == 2

        goal = db.get(Goal, goal_id)
        assert goal.title == "Run a 10k"
        assert goal.context == "Mornings"
        assert db.get(User, user_id) is not None

        snapshot = db.query(Plan).filter(Plan.goal_id == goal_id).one()
        assert snapshot.snapshot_version == 2
        assert snapshot.generated_by == test_settings.openai_model
        assert all(task.plan_id == snapshot.id for task in ai_tasks)
        assert snapshot.content["meta"]["total_days"] == 2
        assert snapshot.content["meta"]["milestones"] == ["Build the habit", "Measure progress"]
        assert [day["date"] for day in snapshot.content["days"]] == ["2026-10-12", "2026-10-13"]


def test_storage_failure_falls_back_to_unsaved_plan(session_factory, test_settings) -> None:
    user_id, goal_id = uuid4(), uuid4()
    with session_factory() as db:
        orchestrator = _orchestrator(FailingWriteStore(db), test_settings, [plan_json(2)])
        result = orchestrator.create_plan(Durable(user_id), Durable(goal_id), "Run", "", None)

        assert [task.id for task in result.plan.tasks] == ["temp-task-0", "temp-task-1"]
        assert result.goal.id == str(goal_id)
        # the goal itself was committed before generation
        assert db.get(Goal, goal_id) is not None
        assert db.query(Task).count() == 0


def test_region_restriction_becomes_client_error(test_settings) -> None:
    error = status_error(openai.PermissionDeniedError, 403, "Country, region, or territory not supported")
    orchestrator = _orchestrator(RecordingStore(), test_settings, [error])

    with pytest.raises(RegionUnavailableError):
        orchestrator.create_plan(Ephemeral("guest"), Ephemeral("goal_x"), "Run", "", None)


def test_get_plan_sorts_by_day_then_priority(session_factory, test_settings) -> None:
    user_id, goal_id = uuid4(), uuid4()
    with session_factory() as db:
        db.add(User(id=user_id))
        db.add(Goal(id=goal_id, user_id=user_id, title="Read more", context=""))
        db.flush()
        db.add_all(
            [
                Task(goal_id=goal_id, title="d2-high", day_index=2, priority=TaskPriority.HIGH, created_by=TaskCreatedBy.AI),
                Task(goal_id=goal_id, title="d1-low", day_index=1, priority=TaskPriority.LOW, created_by=TaskCreatedBy.AI),
                Task(goal_id=goal_id, title="d1-high", day_index=1, priority=TaskPriority.HIGH, created_by=TaskCreatedBy.AI),
                Task(goal_id=goal_id, title="loose", day_index=None, manually_added=True),
            ]
        )
        db.add_all(
            [
                Strategy(goal_id=goal_id, title="second", description="b", order_index=1),
                Strategy(goal_id=goal_id, title="first", description="a", order_index=0),
            ]
        )
        db.commit()

        orchestrator = _orchestrator(GoalStore(db), test_settings, [])
        data = orchestrator.get_plan(goal_id, user_id)

    assert [task.title for task in data.tasks] == ["d1-high", "d1-low", "d2-high"]
    assert [item.title for item in data.strategy] == ["first", "second"]
    assert data.days_count == 2


def test_get_plan_requires_owner(session_factory, test_settings) -> None:
    user_id, goal_id = uuid4(), uuid4()
    with session_factory() as db:
        db.add(User(id=user_id))
        db.add(Goal(id=goal_id, user_id=user_id, title="Mine", context=""))
        db.commit()
        orchestrator = _orchestrator(GoalStore(db), test_settings, [])

        with pytest.raises(NotFoundError):
            orchestrator.get_plan(goal_id, uuid4())


def test_get_plan_without_tasks_has_zero_days(session_factory, test_settings) -> None:
    user_id, goal_id = uuid4(), uuid4()
    with session_factory() as db:
        db.add(User(id=user_id))
        db.add(Goal(id=goal_id, user_id=user_id, title="Empty", context=""))
        db.commit()
        data = _orchestrator(GoalStore(db), test_settings, []).get_plan(goal_id, user_id)

    assert data.days_count == 0
    assert data.tasks == []


def test_summarize_plan_groups_tasks_by_day() -> None:
    plan = parse_plan_text(
        json.dumps(
            {
                "strategy": [{"title": "Warm up", "description": "Easy runs"}],
                "tasks": [
                    {"title": "Long run", "description": "5k", "priority": "low", "day_index": 2},
                    {"title": "Stretch", "description": "10 min", "priority": "medium", "day_index": 1},
                    {"title": "Intervals", "description": "6x400", "priority": "high", "day_index": 2},
                ],
                "days_count": 2,
            }
        )
    )

    summary = summarize_plan(plan)

    assert "1. Warm up\n   Easy runs" in summary
    assert "Day 1:\n  - Stretch (medium)" in summary
    assert "Day 2:\n  - Intervals (high)\n  - Long run (low)" in summary
    assert "Total tasks: 3" in summary
    assert "(2 days in total)" in summary
