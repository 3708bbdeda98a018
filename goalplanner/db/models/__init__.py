"""ORM models exposed for metadata discovery."""
from goalplanner.db.models.goal import Goal, GoalStatus
from goalplanner.db.models.message import Message, MessageRole
from goalplanner.db.models.plan import Plan
from goalplanner.db.models.strategy import Strategy
from goalplanner.db.models.task import Task, TaskCreatedBy, TaskPriority, TaskStatus
from goalplanner.db.models.user import SubscriptionTier, User

__all__ = [
    "Goal",
    "GoalStatus",
    "Message",
    "MessageRole",
    "Plan",
    "Strategy",
    "SubscriptionTier",
    "Task",
    "TaskCreatedBy",
    "TaskPriority",
    "TaskStatus",
    "User",
]
