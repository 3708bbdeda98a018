"""Goal chat: conversation assembly, buffered and streamed replies."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Dict, Iterator, List, Optional, Sequence
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError

from goalplanner.api.schemas.chat import ChatExchange, ChatMessagePayload
from goalplanner.core.config import Settings
from goalplanner.db.models.message import Message, MessageRole
from goalplanner.db.models.task import Task
from goalplanner.services.errors import (
    ForbiddenError,
    GenerationFailedError,
    NotFoundError,
    UpstreamFailureKind,
    UpstreamTimeoutError,
    UpstreamUnavailableError,
)
from goalplanner.services.goal_refs import (
    Durable,
    GoalRef,
    UserRef,
    resolve_chat_goal_ref,
    resolve_task_ref,
)
from goalplanner.services.goal_store import GoalStore
from goalplanner.services.plan_generator import ChatMessage, PlanGenerationClient
from goalplanner.services.users import is_free_tier

logger = logging.getLogger(__name__)

FEATURE_LOCKED = "FEATURE_LOCKED"
NOT_SPECIFIED = "Not specified"
EPHEMERAL_GOAL_TITLE = "Temporary goal"

CHAT_SYSTEM_PROMPT = """You are a friendly, practical assistant that helps the user reach their goal.

Answer questions about the plan, suggest next steps, help with motivation and adjust the approach when the user is stuck.
Keep answers short and concrete. Use the goal, the user's context and the completed tasks below.
Reply in the language the user writes in."""

TASK_DISCUSSION_SYSTEM_PROMPT = """You are an assistant helping the user with one specific task from their goal plan.

Explain how to approach the task, break it into small steps, suggest resources and point out common pitfalls.
Stay focused on the task below and relate it to the overall goal. Keep answers short and actionable.
Reply in the language the user writes in."""

APOLOGIES: Dict[UpstreamFailureKind, str] = {
    UpstreamFailureKind.REGION: "Sorry, the assistant is not available in your region. Please try again from a supported location or contact support.",
    UpstreamFailureKind.AUTH: "Sorry, the assistant could not authenticate with the language model provider. Please check the API key settings.",
    UpstreamFailureKind.RATE_LIMIT: "Sorry, the assistant has hit its request limit. Please try again in a little while.",
}
TIMEOUT_APOLOGY = "Sorry, the response took too long. Please try again later."
GENERIC_APOLOGY = "Sorry, something went wrong while generating a reply. Please try again later."


@dataclass
class TaskContext:
    title: str
    description: Optional[str] = None
    date: Optional[str] = None
    priority: Optional[str] = None
    stored_id: Optional[UUID] = None


@dataclass
class PreparedChat:
    """Everything needed to ask the model and record the exchange."""

    goal_ref: GoalRef
    user: UserRef
    content: str
    messages: List[ChatMessage]
    task: Optional[TaskContext] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def durable(self) -> bool:
        return isinstance(self.goal_ref, Durable) and isinstance(self.user, Durable)


def build_conversation(
    *,
    goal_title: Optional[str],
    goal_context: Optional[str],
    content: str,
    completed_tasks: Sequence[Task] = (),
    task: Optional[TaskContext] = None,
    history: Sequence[Message] = (),
) -> List[ChatMessage]:
    messages: List[ChatMessage] = [
        {"role": "system", "content": TASK_DISCUSSION_SYSTEM_PROMPT if task else CHAT_SYSTEM_PROMPT},
        {
            "role": "system",
            "content": f"User's goal: {goal_title or NOT_SPECIFIED}\nUser's context and environment: {goal_context or NOT_SPECIFIED}",
        },
    ]
    if completed_tasks:
        lines = "\n".join(
            f"- {item.title}: {item.description}" if item.description else f"- {item.title}"
            for item in completed_tasks
        )
        messages.append(
            {"role": "system", "content": f"Tasks the user has completed ({len(completed_tasks)}):\n{lines}"}
        )
    if task:
        messages.append(
            {
                "role": "system",
                "content": (
                    "The task the user is asking about:\n"
                    f"Title: {task.title or NOT_SPECIFIED}\n"
                    f"Description: {task.description or 'N/A'}\n"
                    f"Date: {task.date or 'N/A'}\n"
                    f"Priority: {task.priority or 'N/A'}"
                ),
            }
        )
    for message in history:
        role = "user" if _value(message.role) == MessageRole.USER.value else "assistant"
        messages.append({"role": role, "content": message.content})
    messages.append({"role": "user", "content": content})
    return messages


class ChatAssembler:
    def __init__(self, store: GoalStore, generator: PlanGenerationClient, config: Settings) -> None:
        self.store = store
        self.generator = generator
        self.config = config

    def prepare(
        self,
        goal_id: str,
        user: UserRef,
        content: str,
        *,
        task_id: Optional[str] = None,
        task_title: Optional[str] = None,
        task_description: Optional[str] = None,
    ) -> PreparedChat:
        goal_ref = resolve_chat_goal_ref(goal_id, user)
        goal = None
        if isinstance(goal_ref, Durable):
            goal = self.store.get_owned_goal(goal_ref.id, user.id)
            if goal is None:
                raise NotFoundError("Goal not found")

        if task_id and isinstance(user, Durable):
            if is_free_tier(self.store.get_user(user.id)):
                raise ForbiddenError("Task discussion is available only for Pro users", code=FEATURE_LOCKED)

        task = self._task_context(goal_ref, task_id, task_title, task_description) if task_id else None

        completed: List[Task] = []
        history: List[Message] = []
        if goal is not None:
            completed = self.store.list_completed_tasks(goal.id, self.config.completed_tasks_limit)
            history = self.store.recent_messages(goal.id, self.config.chat_history_limit)

        messages = build_conversation(
            goal_title=goal.title if goal is not None else EPHEMERAL_GOAL_TITLE,
            goal_context=goal.context if goal is not None else "",
            content=content,
            completed_tasks=completed,
            task=task,
            history=history,
        )
        return PreparedChat(goal_ref=goal_ref, user=user, content=content, messages=messages, task=task)

    def _task_context(
        self,
        goal_ref: GoalRef,
        task_id: str,
        task_title: Optional[str],
        task_description: Optional[str],
    ) -> Optional[TaskContext]:
        task_ref = resolve_task_ref(task_id)
        if isinstance(task_ref, Durable) and isinstance(goal_ref, Durable):
            row = self.store.get_task(task_ref.id, goal_ref.id)
            if row is not None:
                return TaskContext(
                    title=row.title,
                    description=row.description,
                    date=row.date.isoformat() if isinstance(row.date, date) else None,
                    priority=_value(row.priority),
                    stored_id=row.id,
                )
            return None
        if task_title:
            return TaskContext(title=task_title, description=task_description or "")
        return None

    # Buffered

    def send(self, prepared: PreparedChat) -> ChatExchange:
        persist = True
        try:
            reply = self.generator.generate_chat_response(prepared.messages)
        except UpstreamTimeoutError as exc:
            logger.warning("Chat reply timed out: %s", exc)
            reply = TIMEOUT_APOLOGY
            persist = False
        except UpstreamUnavailableError as exc:
            logger.warning("Chat backend unavailable (%s): %s", exc.kind.value, exc)
            reply = APOLOGIES[exc.kind]
        except GenerationFailedError as exc:
            logger.error("Chat reply failed: %s", exc)
            reply = GENERIC_APOLOGY

        if prepared.durable and persist:
            saved = self._persist_exchange(prepared, reply)
            if saved is not None:
                return saved
        return _unsaved_exchange(prepared, reply)

    # Streamed

    def stream(self, prepared: PreparedChat) -> "ChatReplyStream":
        return ChatReplyStream(self, prepared)

    def _persist_exchange(self, prepared: PreparedChat, reply: str) -> Optional[ChatExchange]:
        task_id = prepared.task.stored_id if prepared.task else None
        try:
            user_message = self.store.add_message(
                goal_id=prepared.goal_ref.id,
                user_id=prepared.user.id,
                role=MessageRole.USER,
                content=prepared.content,
                task_id=task_id,
            )
            assistant_message = self.store.add_message(
                goal_id=prepared.goal_ref.id,
                user_id=prepared.user.id,
                role=MessageRole.ASSISTANT,
                content=reply,
                task_id=task_id,
            )
            self.store.commit()
        except SQLAlchemyError:
            logger.exception("Saving chat messages for goal %s failed", prepared.goal_ref.token)
            self.store.rollback()
            return None
        return ChatExchange(
            userMessage=message_payload(user_message),
            assistantMessage=message_payload(assistant_message),
        )

    # History

    def list_messages(self, goal_id: UUID, user_id: UUID) -> List[ChatMessagePayload]:
        if self.store.get_owned_goal(goal_id, user_id) is None:
            raise NotFoundError("Goal not found")
        return [message_payload(message) for message in self.store.list_messages(goal_id)]


class ChatReplyStream:
    """Reply fragments as the backend produces them.

    Iterating to the end records the exchange (durable goals only). ``close()``
    stops the producer and closes the upstream stream; nothing is recorded.
    """

    def __init__(self, assembler: ChatAssembler, prepared: PreparedChat) -> None:
        self._assembler = assembler
        self._prepared = prepared
        self._iterator = self._run()
        self.full_text = ""
        self.completed = False

    def __iter__(self) -> Iterator[str]:
        return self._iterator

    def close(self) -> None:
        self._iterator.close()

    def _run(self) -> Iterator[str]:
        fragments = self._fragments()
        try:
            for fragment in fragments:
                self.full_text += fragment
                yield fragment
        finally:
            fragments.close()
        self.completed = True
        if self._prepared.durable:
            self._assembler._persist_exchange(self._prepared, self.full_text)

    def _fragments(self) -> Iterator[str]:
        source = self._assembler.generator.generate_chat_response_stream(self._prepared.messages)
        try:
            yield from source
        except UpstreamUnavailableError as exc:
            logger.warning("Chat stream unavailable (%s): %s", exc.kind.value, exc)
            yield APOLOGIES[exc.kind]
        except (GenerationFailedError, UpstreamTimeoutError) as exc:
            logger.error("Chat stream failed: %s", exc)
            yield GENERIC_APOLOGY
        finally:
            close = getattr(source, "close", None)
            if callable(close):
                close()


def message_payload(message: Message) -> ChatMessagePayload:
    return ChatMessagePayload(
        id=str(message.id),
        goal_id=str(message.goal_id),
        task_id=str(message.task_id) if message.task_id else None,
        role=_value(message.role),
        content=message.content,
        created_at=message.created_at,
    )


def _unsaved_exchange(prepared: PreparedChat, reply: str) -> ChatExchange:
    stamp = int(time.time() * 1000)
    task_id = prepared.task.stored_id if prepared.task else None
    common = {
        "goal_id": prepared.goal_ref.token,
        "task_id": str(task_id) if task_id else None,
        "created_at": prepared.created_at,
    }
    return ChatExchange(
        userMessage=ChatMessagePayload(id=f"temp-{stamp}", role=MessageRole.USER.value, content=prepared.content, **common),
        assistantMessage=ChatMessagePayload(
            id=f"temp-{stamp}-assistant", role=MessageRole.ASSISTANT.value, content=reply, **common
        ),
    )


def _value(field_value):
    return getattr(field_value, "value", field_value)
