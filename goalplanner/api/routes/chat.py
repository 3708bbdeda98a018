"""Goal chat endpoints (buffered and server-sent events)."""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Iterator, Optional, Union

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from goalplanner.api.deps import get_current_user_id, get_optional_user_id, get_plan_generator, resolve_actor
from goalplanner.api.schemas.chat import ChatHistoryResponse, ChatSendRequest, ChatSendResponse
from goalplanner.core.config import get_settings
from goalplanner.db.deps import get_db
from goalplanner.observability.metrics import record_latency
from goalplanner.observability.tracing import trace
from goalplanner.services.chat_assembler import ChatAssembler, ChatReplyStream
from goalplanner.services.errors import ForbiddenError, NotFoundError
from goalplanner.services.goal_refs import Durable, resolve_ref
from goalplanner.services.goal_store import GoalStore
from goalplanner.services.plan_generator import PlanGenerationClient

logger = logging.getLogger(__name__)

router = APIRouter()

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _sse(payload: Dict[str, Any]) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


def _event_source(reply: ChatReplyStream) -> Iterator[str]:
    try:
        for fragment in reply:
            yield _sse({"chunk": fragment, "done": False})
        yield _sse({"chunk": "", "done": True, "fullText": reply.full_text})
    finally:
        # Client went away or the stream finished; either way stop the producer.
        reply.close()


@router.post(
    "/goals/{goal_id}/chat/send",
    response_model=ChatSendResponse,
    tags=["chat"],
)
def send_chat_message(
    goal_id: str,
    payload: ChatSendRequest,
    http_request: Request,
    header_user_id: Optional[str] = Depends(get_optional_user_id),
    db: Session = Depends(get_db),
    generator: PlanGenerationClient = Depends(get_plan_generator),
) -> Union[ChatSendResponse, StreamingResponse]:
    """Ask the assistant about a goal or one of its tasks."""
    request_id = getattr(http_request.state, "request_id", None)
    actor = resolve_actor(header_user_id, payload.user_id)
    assembler = ChatAssembler(GoalStore(db), generator, get_settings())
    metadata = {
        "route": f"/goals/{goal_id}/chat/send",
        "goal_id": goal_id,
        "stream": payload.stream,
        "has_task": bool(payload.taskId),
    }

    with trace("chat.send", metadata=metadata, user_id=actor, request_id=request_id):
        try:
            prepared = assembler.prepare(
                goal_id,
                resolve_ref(actor),
                payload.content,
                task_id=payload.taskId,
                task_title=payload.taskTitle,
                task_description=payload.taskDescription,
            )
        except NotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
        except ForbiddenError as exc:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={"code": exc.code, "message": str(exc)},
            ) from exc

        if payload.stream:
            reply = assembler.stream(prepared)
            return StreamingResponse(_event_source(reply), media_type="text/event-stream", headers=SSE_HEADERS)

        with record_latency("chat.send", metadata=metadata) as outcome:
            exchange = assembler.send(prepared)
            outcome.mark_success(durable=prepared.durable)
    return ChatSendResponse(data=exchange)


@router.get(
    "/goals/{goal_id}/chat/messages",
    response_model=ChatHistoryResponse,
    tags=["chat"],
)
def list_chat_messages(
    goal_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    generator: PlanGenerationClient = Depends(get_plan_generator),
) -> ChatHistoryResponse:
    """Stored chat history for a goal, oldest first."""
    goal_ref = resolve_ref(goal_id)
    user_ref = resolve_ref(user_id)
    if not isinstance(goal_ref, Durable) or not isinstance(user_ref, Durable):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Goal not found")

    assembler = ChatAssembler(GoalStore(db), generator, get_settings())
    try:
        messages = assembler.list_messages(goal_ref.id, user_ref.id)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return ChatHistoryResponse(data=messages)
