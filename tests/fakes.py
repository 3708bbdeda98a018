"""Scripted stand-ins for the OpenAI SDK client."""
from __future__ import annotations

import json
from types import SimpleNamespace
from typing import Any, Iterable, List

import httpx
import openai

OPENAI_URL = "https://api.openai.com/v1/chat/completions"


class FakeStream:
    def __init__(self, pieces: Iterable[Any]):
        self.pieces = list(pieces)
        self.closed = False

    def __iter__(self):
        for piece in self.pieces:
            if isinstance(piece, BaseException):
                raise piece
            yield SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=piece))])

    def close(self) -> None:
        self.closed = True


class FakeCompletions:
    def __init__(self, responses: Iterable[Any]):
        self.responses: List[Any] = list(responses)
        self.calls: List[dict] = []
        self.streams: List[FakeStream] = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if not self.responses:
            raise AssertionError("Unexpected model call")
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        if kwargs.get("stream"):
            stream = FakeStream(item)
            self.streams.append(stream)
            return stream
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=item))])


class FakeOpenAI:
    """One queued item per create() call: a string, a list of stream pieces, or an exception."""

    def __init__(self, responses: Iterable[Any] = ()):
        self.completions = FakeCompletions(responses)
        self.chat = SimpleNamespace(completions=self.completions)
        self.options: List[dict] = []

    def with_options(self, **kwargs):
        self.options.append(kwargs)
        return self

    @property
    def calls(self) -> List[dict]:
        return self.completions.calls


def plan_json(days: int = 3, *, tasks: List[dict] | None = None, strategy: List[dict] | None = None) -> str:
    payload = {
        "strategy": strategy
        or [
            {"title": "Build the habit", "description": "Practice a little every day"},
            {"title": "Measure progress", "description": "Review results weekly"},
        ],
        "tasks": tasks
        if tasks is not None
        else [
            {
                "id": f"t{day}",
                "title": f"Task for day {day}",
                "description": f"Do the work planned for day {day}",
                "priority": "high" if day % 2 else "medium",
                "day_index": day,
            }
            for day in range(1, days + 1)
        ],
        "days_count": days,
    }
    return json.dumps(payload)


def status_error(cls, status_code: int, message: str):
    request = httpx.Request("POST", OPENAI_URL)
    return cls(message, response=httpx.Response(status_code, request=request), body=None)


def timeout_error():
    return openai.APITimeoutError(request=httpx.Request("POST", OPENAI_URL))
