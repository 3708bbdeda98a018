"""Schemas for goal chat endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class ChatSendRequest(BaseModel):
    content: str = Field(..., min_length=1)
    taskId: Optional[str] = None
    stream: bool = False
    taskTitle: Optional[str] = None
    taskDescription: Optional[str] = None
    user_id: Optional[str] = None


class ChatMessagePayload(BaseModel):
    id: str
    goal_id: str
    task_id: Optional[str] = None
    role: str
    content: str
    created_at: Optional[datetime] = None


class ChatExchange(BaseModel):
    userMessage: ChatMessagePayload
    assistantMessage: ChatMessagePayload


class ChatSendResponse(BaseModel):
    success: bool = True
    data: ChatExchange


class ChatHistoryResponse(BaseModel):
    success: bool = True
    data: List[ChatMessagePayload]
