"""Domain exceptions raised by the planning and chat services.

Routes translate these into HTTP responses; services never build
``HTTPException`` themselves. Storage failures are SQLAlchemy's own
``SQLAlchemyError`` and are not wrapped.
"""
from __future__ import annotations

from enum import Enum


class PlannerError(Exception):
    """Base class for planner domain errors."""


class NotFoundError(PlannerError):
    """Goal, plan, task or job is absent or not owned by the caller."""


class ForbiddenError(PlannerError):
    """Feature gated by subscription tier."""

    def __init__(self, message: str, *, code: str = "FORBIDDEN") -> None:
        super().__init__(message)
        self.code = code


class PlanValidationError(PlannerError, ValueError):
    """Model output does not match the plan schema."""


class UpstreamFailureKind(str, Enum):
    REGION = "region"
    AUTH = "auth"
    RATE_LIMIT = "rate_limit"


class UpstreamUnavailableError(PlannerError):
    """The text-generation backend refused the call for a known reason."""

    def __init__(self, kind: UpstreamFailureKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind


class UpstreamTimeoutError(PlannerError):
    """The text-generation backend did not answer within the configured bound."""


class GenerationFailedError(PlannerError):
    """Plan generation exhausted its attempts or hit an unexpected upstream error."""


class RegionUnavailableError(PlannerError):
    """Client-facing form of a regional restriction during plan creation."""


REGION_UNAVAILABLE_MESSAGE = (
    "The planning service is not available in your region. "
    "Please try again from a supported location or contact support."
)
