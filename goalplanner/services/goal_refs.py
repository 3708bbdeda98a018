"""Durable vs. ephemeral identifiers.

Clients may address goals, tasks and themselves with tokens that never touch
storage (guest sessions, optimistic UI ids such as ``goal_abc`` or
``temp-task-3``). The token shape is classified once at the request boundary
and the typed result is threaded through the services.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Union
from uuid import UUID

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)
EPHEMERAL_GOAL_PREFIXES = ("temp-", "goal_")
EPHEMERAL_TASK_PREFIX = "temp-"


@dataclass(frozen=True)
class Durable:
    id: UUID

    @property
    def token(self) -> str:
        return str(self.id)


@dataclass(frozen=True)
class Ephemeral:
    token: str


GoalRef = Union[Durable, Ephemeral]
TaskRef = Union[Durable, Ephemeral]
UserRef = Union[Durable, Ephemeral]


def is_uuid(value: Optional[str]) -> bool:
    return bool(value) and UUID_PATTERN.match(value) is not None


def resolve_ref(raw: str) -> Union[Durable, Ephemeral]:
    """Classify any identifier: well-formed UUIDs are durable, everything else is not."""
    if is_uuid(raw):
        return Durable(UUID(raw))
    return Ephemeral(raw)


def resolve_chat_goal_ref(goal_id: str, user: UserRef) -> GoalRef:
    """Chat treats prefixed ids and anonymous actors as ephemeral even when the id is a UUID."""
    if isinstance(user, Ephemeral) or goal_id.startswith(EPHEMERAL_GOAL_PREFIXES):
        return Ephemeral(goal_id)
    return resolve_ref(goal_id)


def resolve_task_ref(task_id: str) -> TaskRef:
    if task_id.startswith(EPHEMERAL_TASK_PREFIX):
        return Ephemeral(task_id)
    return resolve_ref(task_id)
