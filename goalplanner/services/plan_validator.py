"""Normalize and validate model output into the strict plan schema."""
from __future__ import annotations

import json
import math
from numbers import Real
from typing import Any, List, Literal
from uuid import uuid4

from pydantic import BaseModel, Field

from goalplanner.services.errors import PlanValidationError

PRIORITIES = ("low", "medium", "high")
# Ten years of daily tasks; keeps dates and the integer column in range.
MAX_DAY_INDEX = 3650


class StrategyItem(BaseModel):
    title: str
    description: str


class PlanTask(BaseModel):
    id: str
    title: str
    description: str
    priority: Literal["low", "medium", "high"]
    day_index: int = Field(..., ge=1)


class PlanResponse(BaseModel):
    """Validated plan as returned by the generation client."""

    strategy: List[StrategyItem]
    tasks: List[PlanTask]
    days_count: int


def extract_json(text: str) -> str:
    """Strip code fences and slice from the first ``{`` to the last ``}``."""
    cleaned = text.replace("```json", "").replace("```", "").strip()
    first = cleaned.find("{")
    last = cleaned.rfind("}")
    if first != -1 and last > first:
        cleaned = cleaned[first : last + 1]
    return cleaned


def parse_plan_text(text: str | None) -> PlanResponse:
    """Extract, decode and validate a raw completion."""
    if not text or not text.strip():
        raise PlanValidationError("Empty response from model")
    try:
        payload = json.loads(extract_json(text))
    except json.JSONDecodeError as exc:
        raise PlanValidationError(f"Response is not valid JSON: {exc.msg}") from exc
    return validate_plan(payload)


def validate_plan(raw: Any) -> PlanResponse:
    """Check strategy, then tasks, then days_count; the first failure wins."""
    if not isinstance(raw, dict):
        raise PlanValidationError("Invalid plan structure: expected a JSON object")

    strategy_raw = raw.get("strategy")
    if not isinstance(strategy_raw, list):
        raise PlanValidationError("Invalid plan structure: missing strategy array")
    strategy = [_validate_strategy_item(item, index) for index, item in enumerate(strategy_raw)]

    tasks_raw = raw.get("tasks")
    if not isinstance(tasks_raw, list):
        raise PlanValidationError("Invalid plan structure: missing tasks array")
    tasks = [_validate_task(item, index) for index, item in enumerate(tasks_raw)]

    days_count = raw.get("days_count")
    if not _is_number(days_count):
        raise PlanValidationError("Invalid plan structure: missing or invalid days_count")

    return PlanResponse(strategy=strategy, tasks=tasks, days_count=int(days_count))


def _validate_strategy_item(item: Any, index: int) -> StrategyItem:
    entry = item if isinstance(item, dict) else {}
    title = _clean_text(entry.get("title"))
    description = _clean_text(entry.get("description"))
    if not title or not description:
        raise PlanValidationError(f"Invalid strategy item at index {index}: missing title or description")
    return StrategyItem(title=title, description=description)


def _validate_task(item: Any, index: int) -> PlanTask:
    entry = item if isinstance(item, dict) else {}
    title = _clean_text(entry.get("title"))
    if not title:
        raise PlanValidationError(f"Invalid task at index {index}: missing title")
    description = _clean_text(entry.get("description"))
    if not description:
        raise PlanValidationError(f"Invalid task at index {index}: missing description")

    priority = entry.get("priority")
    if priority is None:
        raise PlanValidationError(f"Invalid task at index {index}: missing priority")
    if isinstance(priority, str):
        priority = priority.strip()
    if priority not in PRIORITIES:
        raise PlanValidationError(f"Invalid task at index {index}: invalid priority")

    day_index = entry.get("day_index")
    if day_index is None:
        raise PlanValidationError(f"Invalid task at index {index}: missing day_index")
    if not _is_number(day_index) or day_index < 1 or day_index > MAX_DAY_INDEX:
        raise PlanValidationError(f"Invalid task at index {index}: invalid day_index")

    task_id = _clean_text(entry.get("id")) or f"task_{uuid4().hex[:12]}"
    return PlanTask(
        id=task_id,
        title=title,
        description=description,
        priority=priority,
        day_index=int(day_index),
    )


def _clean_text(value: Any) -> str:
    if value is None or isinstance(value, (dict, list)):
        return ""
    return str(value).strip()


def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool) and math.isfinite(value)
