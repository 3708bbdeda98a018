"""LLM-backed plan generation and goal chat client."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional

import openai

from goalplanner.core.config import Settings
from goalplanner.observability.metrics import log_metric
from goalplanner.observability.tracing import annotate, trace
from goalplanner.services.date_scheduler import DateLike, days_until, parse_target_date, plan_start_date
from goalplanner.services.errors import (
    GenerationFailedError,
    PlanValidationError,
    UpstreamFailureKind,
    UpstreamTimeoutError,
    UpstreamUnavailableError,
)
from goalplanner.services.plan_validator import PlanResponse, parse_plan_text

logger = logging.getLogger(__name__)

ChatMessage = Dict[str, str]

REGION_MARKER = "Country, region, or territory not supported"

PLAN_SYSTEM_PROMPT = """You are a professional planning assistant that turns goals into realistic, structured day-by-day plans.

YOUR JOB
From the goal description, the user's life context and the optional target date, write a short strategy and break it into concrete tasks distributed across days.

TASK DISTRIBUTION (MOST IMPORTANT)
- Tasks are DAILY by default: every day of the plan has 1-3 tasks.
- Spread tasks EVENLY over the whole period from today to the target date.
- Do not pile tasks up at the start or the end of the period.
- If the user asks to keep weekends free, skip Saturdays and Sundays.
- The number of days equals the days from today to the target date, inclusive.

PRIORITIES
- high: critical, blocking work
- medium: important but not blocking
- low: nice to have

QUALITY
- Respect the user's life context; the plan must be logical, sequential and achievable.
- If the goal is abstract, make it concrete in the strategy.

TECHNICAL RULES
- Days are numbered from 1 (day 1 = today); day_index is the day within the plan.
- Task ids are unique strings.
- days_count is the total number of days in the plan.

RESPONSE FORMAT
Answer with valid JSON only, no text outside it:
{
  "strategy": [{"title": "string", "description": "string"}],
  "tasks": [{"id": "string", "title": "string", "description": "string", "priority": "low|medium|high", "day_index": 1}],
  "days_count": 1
}"""

PLAN_RETRY_PROMPT = """Your previous answer was not valid.

Return STRICTLY VALID JSON matching this schema:
{
  "strategy": [{"title": "string", "description": "string"}],
  "tasks": [{"id": "string", "title": "string", "description": "string", "priority": "low|medium|high", "day_index": number}],
  "days_count": number
}

Produce the answer again with no extra text, only valid JSON."""


class RetryState(str, Enum):
    ATTEMPTING = "attempting"
    CORRECTING = "correcting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class PlanRetryPolicy:
    """Bounded attempt/correct cycle for plan generation.

    Each round sends the base conversation. A failed round, unless it is the
    last one, moves to CORRECTING: one follow-up turn that replays the bad
    output and asks for schema-valid JSON. A failed correction starts the next
    round. The policy never talks to the transport itself.
    """

    max_rounds: int = 3
    round: int = 0
    state: RetryState = RetryState.ATTEMPTING
    last_error: Optional[str] = None
    last_output: Optional[str] = None

    @property
    def finished(self) -> bool:
        return self.state in (RetryState.SUCCEEDED, RetryState.FAILED)

    def start_round(self) -> int:
        self.round += 1
        return self.round

    def record_output(self, text: Optional[str]) -> None:
        if text:
            self.last_output = text

    def attempt_failed(self, error: Exception) -> RetryState:
        self.last_error = str(error)
        self.state = RetryState.FAILED if self.round >= self.max_rounds else RetryState.CORRECTING
        return self.state

    def correction_failed(self, error: Exception) -> RetryState:
        self.last_error = str(error)
        self.state = RetryState.ATTEMPTING
        return self.state

    def succeed(self) -> RetryState:
        self.state = RetryState.SUCCEEDED
        return self.state


def classify_upstream_error(exc: BaseException) -> Optional[UpstreamUnavailableError]:
    """Map SDK errors with a known, user-explainable cause to UpstreamUnavailableError."""
    if isinstance(exc, UpstreamUnavailableError):
        return exc
    message = str(exc)
    lowered = message.lower()
    if isinstance(exc, openai.PermissionDeniedError) or REGION_MARKER.lower() in lowered:
        return UpstreamUnavailableError(UpstreamFailureKind.REGION, message)
    if isinstance(exc, openai.AuthenticationError) or "invalid api key" in lowered:
        return UpstreamUnavailableError(UpstreamFailureKind.AUTH, message)
    if isinstance(exc, openai.RateLimitError) or "rate limit" in lowered:
        return UpstreamUnavailableError(UpstreamFailureKind.RATE_LIMIT, message)
    return None


def build_plan_user_prompt(
    goal_description: str,
    context_description: str,
    target_date: Optional[DateLike],
    today: date,
) -> str:
    target = parse_target_date(target_date)
    if target is not None:
        days = days_until(target, today)
        date_info = (
            f"TARGET DATE: {target.isoformat()}\n"
            f"Days until the target: {days}\n"
            f"Today: {today.isoformat()}\n\n"
            f"IMPORTANT: Build the plan for ALL {days} days. Every day has 1-3 tasks, spread EVENLY over the period."
        )
    else:
        date_info = (
            "IMPORTANT: Choose a realistic duration for this goal (weeks, months or a year).\n"
            "Do not squeeze serious goals into 5-7 days; estimate the time the result really takes.\n"
            "Spread tasks evenly over the whole period. Every day has 1-3 tasks."
        )
    return (
        f"GOAL DESCRIPTION:\n{goal_description.strip()}\n\n"
        f"USER CONTEXT:\n{context_description.strip()}\n\n"
        f"{date_info}\n\n"
        "TASK:\nCreate a detailed plan with daily tasks, distributed evenly across the whole period.\n\n"
        "Return only valid JSON with no extra text."
    )


class PlanGenerationClient:
    """Talks to the chat-completions backend for plans and goal chat."""

    def __init__(self, config: Settings, client: Any | None = None) -> None:
        self._config = config
        self._client = client

    @property
    def model(self) -> str:
        return self._config.openai_model

    def _openai(self) -> Any:
        if self._client is None:
            if not self._config.openai_api_key:
                raise UpstreamUnavailableError(UpstreamFailureKind.AUTH, "Invalid API key: OPENAI_API_KEY is not configured")
            self._client = openai.OpenAI(api_key=self._config.openai_api_key)
        return self._client

    # Plans

    def generate_plan(
        self,
        goal_description: str,
        context_description: str,
        target_date: Optional[DateLike] = None,
        *,
        today: Optional[date] = None,
    ) -> PlanResponse:
        """Generate a validated plan, correcting malformed output up to the attempt budget."""
        today = today or plan_start_date(self._config.planner_timezone)
        base_messages: List[ChatMessage] = [
            {"role": "system", "content": PLAN_SYSTEM_PROMPT},
            {"role": "user", "content": build_plan_user_prompt(goal_description, context_description, target_date, today)},
        ]
        policy = PlanRetryPolicy(max_rounds=self._config.plan_max_attempts)
        plan: Optional[PlanResponse] = None

        while not policy.finished:
            if policy.state is RetryState.ATTEMPTING:
                attempt = policy.start_round()
                with trace("plan.generate.attempt", metadata={"round": attempt, "model": self.model}) as span:
                    try:
                        plan = self._request_plan(base_messages, self._config.plan_temperature, policy)
                        policy.succeed()
                    except (openai.OpenAIError, PlanValidationError, UpstreamUnavailableError) as exc:
                        self._raise_if_region_blocked(exc)
                        state = policy.attempt_failed(exc)
                        logger.warning("Plan generation attempt %s failed: %s", attempt, exc)
                        annotate(span, round=attempt, error=str(exc), next_state=state.value)
            else:
                correction = list(base_messages)
                if policy.last_output:
                    correction.append({"role": "assistant", "content": policy.last_output})
                correction.append({"role": "user", "content": PLAN_RETRY_PROMPT})
                with trace("plan.generate.correction", metadata={"round": policy.round, "model": self.model}):
                    try:
                        plan = self._request_plan(correction, self._config.plan_retry_temperature, policy)
                        policy.succeed()
                    except (openai.OpenAIError, PlanValidationError, UpstreamUnavailableError) as exc:
                        self._raise_if_region_blocked(exc)
                        policy.correction_failed(exc)
                        logger.warning("Plan correction in round %s failed: %s", policy.round, exc)

        log_metric("plan.generate.rounds", policy.round, metadata={"state": policy.state.value})
        if policy.state is RetryState.SUCCEEDED and plan is not None:
            return plan
        raise GenerationFailedError(
            f"Failed to generate valid plan after {policy.max_rounds} attempts: {policy.last_error}"
        )

    def _request_plan(self, messages: List[ChatMessage], temperature: float, policy: PlanRetryPolicy) -> PlanResponse:
        completion = self._openai().chat.completions.create(
            model=self.model,
            messages=messages,
            temperature=temperature,
            response_format={"type": "json_object"},
        )
        text = _first_message_content(completion)
        policy.record_output(text)
        return parse_plan_text(text)

    @staticmethod
    def _raise_if_region_blocked(exc: Exception) -> None:
        failure = classify_upstream_error(exc)
        if failure is not None and failure.kind is UpstreamFailureKind.REGION:
            raise failure from exc

    # Chat

    def generate_chat_response(self, messages: List[ChatMessage]) -> str:
        """Buffered reply bounded by ``chat_timeout_seconds``."""
        timeout = self._config.chat_timeout_seconds
        try:
            completion = (
                self._openai()
                .with_options(timeout=timeout, max_retries=0)
                .chat.completions.create(
                    model=self.model,
                    messages=messages,
                    temperature=self._config.chat_temperature,
                )
            )
        except openai.APITimeoutError as exc:
            raise UpstreamTimeoutError(f"Model call timed out after {timeout:g}s") from exc
        except openai.OpenAIError as exc:
            raise _translate_chat_error(exc) from exc
        return _first_message_content(completion) or ""

    def generate_chat_response_stream(self, messages: List[ChatMessage]) -> Iterator[str]:
        """Yield reply fragments as the backend produces them.

        Closing the generator closes the upstream stream.
        """
        try:
            stream = self._openai().chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=self._config.chat_temperature,
                stream=True,
            )
        except openai.OpenAIError as exc:
            raise _translate_chat_error(exc) from exc

        try:
            for chunk in stream:
                choices = getattr(chunk, "choices", None) or []
                if not choices:
                    continue
                content = getattr(choices[0].delta, "content", None)
                if content:
                    yield content
        except openai.OpenAIError as exc:
            raise _translate_chat_error(exc) from exc
        finally:
            close = getattr(stream, "close", None)
            if callable(close):
                close()


def _translate_chat_error(exc: Exception) -> Exception:
    failure = classify_upstream_error(exc)
    if failure is not None:
        return failure
    return GenerationFailedError(f"Failed to generate chat response: {exc}")


def _first_message_content(completion: Any) -> Optional[str]:
    choices = getattr(completion, "choices", None) or []
    if not choices:
        return None
    return choices[0].message.content
