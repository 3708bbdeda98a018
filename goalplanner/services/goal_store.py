"""Storage access for goals, strategies, tasks, plans and messages."""
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from goalplanner.db.models.goal import Goal
from goalplanner.db.models.message import Message, MessageRole
from goalplanner.db.models.plan import Plan
from goalplanner.db.models.strategy import Strategy
from goalplanner.db.models.task import Task, TaskCreatedBy, TaskStatus
from goalplanner.db.models.user import User
from goalplanner.services.users import get_or_create_user


class GoalStore:
    """Repository over a request-scoped Session.

    Writes flush but never commit; callers own the transaction boundary.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    # Users and goals

    def get_user(self, user_id: UUID) -> Optional[User]:
        return self.db.get(User, user_id)

    def get_goal(self, goal_id: UUID) -> Optional[Goal]:
        return self.db.get(Goal, goal_id)

    def get_owned_goal(self, goal_id: UUID, user_id: UUID) -> Optional[Goal]:
        return (
            self.db.query(Goal)
            .filter(Goal.id == goal_id, Goal.user_id == user_id)
            .one_or_none()
        )

    def create_goal(self, goal_id: UUID, user_id: UUID, title: str, context: str) -> Goal:
        get_or_create_user(self.db, user_id)
        goal = Goal(id=goal_id, user_id=user_id, title=title, context=context)
        self.db.add(goal)
        self.db.flush()
        return goal

    def update_goal(self, goal: Goal, *, title: str, context: str) -> Goal:
        goal.title = title
        goal.context = context
        self.db.add(goal)
        self.db.flush()
        return goal

    # Strategy

    def list_strategies(self, goal_id: UUID) -> List[Strategy]:
        return (
            self.db.query(Strategy)
            .filter(Strategy.goal_id == goal_id)
            .order_by(Strategy.order_index.asc())
            .all()
        )

    def replace_strategies(self, goal_id: UUID, items: Iterable[Dict[str, str]]) -> List[Strategy]:
        """Drop the goal's whole strategy and insert the new items in order."""
        self.db.query(Strategy).filter(Strategy.goal_id == goal_id).delete(synchronize_session=False)
        strategies = [
            Strategy(goal_id=goal_id, title=item["title"], description=item["description"], order_index=index)
            for index, item in enumerate(items)
        ]
        self.db.add_all(strategies)
        self.db.flush()
        return strategies

    # Tasks

    def list_tasks(self, goal_id: UUID) -> List[Task]:
        return (
            self.db.query(Task)
            .filter(Task.goal_id == goal_id)
            .order_by(Task.created_at.asc())
            .all()
        )

    def get_task(self, task_id: UUID, goal_id: UUID) -> Optional[Task]:
        return (
            self.db.query(Task)
            .filter(Task.id == task_id, Task.goal_id == goal_id)
            .one_or_none()
        )

    def list_completed_tasks(self, goal_id: UUID, limit: int) -> List[Task]:
        return (
            self.db.query(Task)
            .filter(Task.goal_id == goal_id, Task.status == TaskStatus.DONE)
            .order_by(Task.updated_at.desc())
            .limit(limit)
            .all()
        )

    def delete_disposable_tasks(self, goal_id: UUID) -> int:
        """Remove AI-authored tasks that the user never added by hand."""
        return (
            self.db.query(Task)
            .filter(
                Task.goal_id == goal_id,
                Task.created_by == TaskCreatedBy.AI,
                Task.manually_added.is_(False),
            )
            .delete(synchronize_session=False)
        )

    def add_tasks(self, tasks: List[Task]) -> List[Task]:
        self.db.add_all(tasks)
        self.db.flush()
        return tasks

    # Plan snapshot

    def get_plan(self, goal_id: UUID) -> Optional[Plan]:
        return self.db.query(Plan).filter(Plan.goal_id == goal_id).one_or_none()

    def upsert_plan(self, goal_id: UUID, generated_by: str) -> Plan:
        """Fetch or create the goal's plan row, bumping the snapshot version on reuse."""
        plan = self.get_plan(goal_id)
        if plan is None:
            plan = Plan(goal_id=goal_id, generated_by=generated_by, content={}, snapshot_version=1)
        else:
            plan.generated_by = generated_by
            plan.snapshot_version = (plan.snapshot_version or 0) + 1
        self.db.add(plan)
        self.db.flush()
        return plan

    def set_plan_content(self, plan: Plan, content: Dict[str, Any]) -> Plan:
        plan.content = content
        self.db.add(plan)
        self.db.flush()
        return plan

    # Messages

    def recent_messages(self, goal_id: UUID, limit: int) -> List[Message]:
        """Last ``limit`` messages, oldest first."""
        newest_first = (
            self.db.query(Message)
            .filter(Message.goal_id == goal_id)
            .order_by(Message.created_at.desc())
            .limit(limit)
            .all()
        )
        return list(reversed(newest_first))

    def list_messages(self, goal_id: UUID) -> List[Message]:
        return (
            self.db.query(Message)
            .filter(Message.goal_id == goal_id)
            .order_by(Message.created_at.asc())
            .all()
        )

    def add_message(
        self,
        *,
        goal_id: UUID,
        user_id: UUID,
        role: MessageRole,
        content: str,
        task_id: Optional[UUID] = None,
    ) -> Message:
        message = Message(goal_id=goal_id, user_id=user_id, role=role, content=content, task_id=task_id)
        self.db.add(message)
        self.db.flush()
        return message

    # Transaction

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()
