from __future__ import annotations

from datetime import date
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from fakes import FakeOpenAI, plan_json
from goalplanner.api.deps import get_plan_job_queue
from goalplanner.db.deps import get_db
from goalplanner.db.models import Goal, Message, Plan, SubscriptionTier, Task, User
from goalplanner.main import app
from goalplanner.services.errors import NotFoundError
from goalplanner.services.plan_generator import PlanGenerationClient
from goalplanner.services.plan_jobs import JobState, PlanJobQueue

TODAY = date(2026, 10, 12)


def _seed_goal(session_factory, *, settings=None):
    user_id, goal_id = uuid4(), uuid4()
    with session_factory() as db:
        db.add(User(id=user_id, subscription_tier=SubscriptionTier.PRO, settings=settings or {}))
        db.flush()
        db.add(Goal(id=goal_id, user_id=user_id, title="Learn Spanish", context="20 minutes a day"))
        db.commit()
    return user_id, goal_id


def _queue(session_factory, test_settings, fake_openai):
    return PlanJobQueue(
        session_factory,
        lambda: PlanGenerationClient(test_settings, client=fake_openai),
        test_settings,
        inline=True,
        today=lambda: TODAY,
    )


def test_inline_job_persists_plan_and_summary(session_factory, test_settings) -> None:
    user_id, goal_id = _seed_goal(session_factory)
    queue = _queue(session_factory, test_settings, FakeOpenAI([plan_json(4)]))

    job = queue.enqueue(goal_id=goal_id, user_id=user_id, title="Learn Spanish", context="", constraints={})

    assert job.state is JobState.COMPLETED
    assert queue.status(job.id) == {"status": "completed", "progress": 100, "estimated_seconds": None, "error": None}
    with session_factory() as db:
        snapshot = db.query(Plan).filter(Plan.goal_id == goal_id).one()
        assert job.plan_id == snapshot.id
        tasks = db.query(Task).filter(Task.goal_id == goal_id).all()
        assert len(tasks) == 4
        assert sorted(task.date for task in tasks) == [date(2026, 10, day) for day in (12, 13, 14, 15)]
        summary = db.query(Message).filter(Message.goal_id == goal_id).one()
        assert summary.content.startswith("Your plan is ready!")
        assert "Total tasks: 4" in summary.content


def test_job_records_constraints_in_snapshot(session_factory, test_settings) -> None:
    user_id, goal_id = _seed_goal(session_factory)
    queue = _queue(session_factory, test_settings, FakeOpenAI([plan_json(2)]))
    constraints = {"no_weekends": True, "daily_time_limit_mins": 45}

    queue.enqueue(goal_id=goal_id, user_id=user_id, title="Learn Spanish", context="", constraints=constraints)

    with session_factory() as db:
        meta = db.query(Plan).filter(Plan.goal_id == goal_id).one().content["meta"]
    assert meta["constraints"] == constraints
    assert meta["avg_daily_duration"] == 45


def test_failed_generation_marks_job_failed(session_factory, test_settings) -> None:
    user_id, goal_id = _seed_goal(session_factory)
    queue = _queue(session_factory, test_settings, FakeOpenAI(["nope"] * 5))

    job = queue.enqueue(goal_id=goal_id, user_id=user_id, title="Learn Spanish", context="")

    status = queue.status(job.id)
    assert status["status"] == "failed"
    assert "after 3 attempts" in status["error"]
    with session_factory() as db:
        assert db.query(Task).count() == 0
        assert db.query(Message).count() == 0


def test_missing_goal_fails_job(session_factory, test_settings) -> None:
    user_id, _ = _seed_goal(session_factory)
    queue = _queue(session_factory, test_settings, FakeOpenAI([plan_json(1)]))

    job = queue.enqueue(goal_id=uuid4(), user_id=user_id, title="Gone", context="")

    assert job.state is JobState.FAILED
    assert job.error == "Goal not found"


def test_unknown_job_status(session_factory, test_settings) -> None:
    queue = _queue(session_factory, test_settings, FakeOpenAI())
    with pytest.raises(NotFoundError):
        queue.status("missing")


class ManualClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_finished_jobs_are_evicted_after_retention(session_factory, test_settings) -> None:
    user_id, goal_id = _seed_goal(session_factory)
    clock = ManualClock()
    config = test_settings.model_copy(update={"plan_job_retention_seconds": 60})
    fake = FakeOpenAI([plan_json(1), "nope", "nope", "nope", "nope", "nope"])
    queue = PlanJobQueue(
        session_factory,
        lambda: PlanGenerationClient(config, client=fake),
        config,
        inline=True,
        today=lambda: TODAY,
        clock=clock,
    )

    done = queue.enqueue(goal_id=goal_id, user_id=user_id, title="Learn Spanish", context="")
    clock.now += 30
    failed = queue.enqueue(goal_id=goal_id, user_id=user_id, title="Learn Spanish", context="")
    assert failed.state is JobState.FAILED

    clock.now += 31
    assert queue.get(done.id) is None
    assert queue.get(failed.id) is failed

    clock.now += 30
    with pytest.raises(NotFoundError):
        queue.status(failed.id)


class DeferredScheduler:
    """Records add_job calls instead of running them."""

    running = True

    def __init__(self):
        self.jobs = []

    def add_job(self, func, **kwargs):
        self.jobs.append((func, kwargs))


def test_scheduled_job_waits_for_worker(session_factory, test_settings) -> None:
    user_id, goal_id = _seed_goal(session_factory)
    scheduler = DeferredScheduler()
    config = test_settings.model_copy(update={"plan_jobs_enabled": True})
    fake = FakeOpenAI([plan_json(1)])
    queue = PlanJobQueue(
        session_factory,
        lambda: PlanGenerationClient(config, client=fake),
        config,
        scheduler=scheduler,
        today=lambda: TODAY,
    )

    job = queue.enqueue(goal_id=goal_id, user_id=user_id, title="Learn Spanish", context="")

    assert queue.status(job.id)["status"] == "waiting"
    func, kwargs = scheduler.jobs[0]
    assert kwargs["trigger"] == "date"
    assert kwargs["args"] == [job.id]

    func(*kwargs["args"])
    assert queue.status(job.id)["status"] == "completed"


@pytest.fixture()
def client(session_factory, test_settings):
    fake = FakeOpenAI()
    queue = _queue(session_factory, test_settings, fake)

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_plan_job_queue] = lambda: queue
    with TestClient(app) as test_client:
        yield test_client, session_factory, fake
    app.dependency_overrides.clear()


def test_generate_endpoint_applies_user_preferences(client) -> None:
    test_client, session_factory, fake = client
    user_id, goal_id = _seed_goal(session_factory, settings={"weekends": False, "dailyTimeLimitMins": 90})
    fake.completions.responses.append(plan_json(2))
    headers = {"X-User-Id": str(user_id)}

    response = test_client.post(f"/plans/goals/{goal_id}/generate", headers=headers)

    assert response.status_code == 200
    job_id = response.json()["data"]["jobId"]
    status = test_client.get(f"/plans/{job_id}/status", headers=headers)
    assert status.status_code == 200
    assert status.json()["data"]["status"] == "completed"
    with session_factory() as db:
        meta = db.query(Plan).filter(Plan.goal_id == goal_id).one().content["meta"]
    assert meta["constraints"] == {"no_weekends": True, "daily_time_limit_mins": 90}


def test_generate_endpoint_body_overrides_preferences(client) -> None:
    test_client, session_factory, fake = client
    user_id, goal_id = _seed_goal(session_factory)
    fake.completions.responses.append(plan_json(1))

    response = test_client.post(
        f"/plans/goals/{goal_id}/generate",
        json={"constraints": {"daily_time_limit_mins": 15}},
        headers={"X-User-Id": str(user_id)},
    )

    assert response.status_code == 200
    with session_factory() as db:
        meta = db.query(Plan).filter(Plan.goal_id == goal_id).one().content["meta"]
    assert meta["constraints"] == {"no_weekends": False, "daily_time_limit_mins": 15}


def test_generate_endpoint_rejects_unknown_callers(client) -> None:
    test_client, session_factory, _ = client
    _, goal_id = _seed_goal(session_factory)

    assert test_client.post(f"/plans/goals/{goal_id}/generate").status_code == 401
    assert (
        test_client.post(f"/plans/goals/{goal_id}/generate", headers={"X-User-Id": str(uuid4())}).status_code == 404
    )
    assert test_client.post("/plans/goals/goal_abc/generate", headers={"X-User-Id": str(uuid4())}).status_code == 404


def test_job_status_is_private_to_owner(client) -> None:
    test_client, session_factory, fake = client
    user_id, goal_id = _seed_goal(session_factory)
    fake.completions.responses.append(plan_json(1))
    job_id = test_client.post(
        f"/plans/goals/{goal_id}/generate", headers={"X-User-Id": str(user_id)}
    ).json()["data"]["jobId"]

    assert test_client.get(f"/plans/{job_id}/status", headers={"X-User-Id": str(uuid4())}).status_code == 404
    assert test_client.get("/plans/unknown/status", headers={"X-User-Id": str(user_id)}).status_code == 404
    assert test_client.get(f"/plans/{job_id}/status").status_code == 401
