"""Core orchestration components of Mediabot."""

from .errors import ErrorCode, MediabotError
from .models import AggregateResult, MultiStepPlan, NormalizedRequest, PlanStep, Poll, ToolResult

__all__ = [
    "AggregateResult",
    "ErrorCode",
    "MediabotError",
    "MultiStepPlan",
    "NormalizedRequest",
    "PlanStep",
    "Poll",
    "ToolResult",
]
