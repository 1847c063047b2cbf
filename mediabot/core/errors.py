"""Error taxonomy shared by tools, the planner and the reply pipeline."""

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Machine-readable failure kinds carried on failed tool results."""

    REQUIRED_PARAMETER_MISSING = "required_parameter_missing"
    PROVIDER_MISMATCH = "provider_mismatch"
    ALL_PROVIDERS_FAILED = "all_providers_failed"
    UNKNOWN_TOOL = "unknown_tool"
    PLAN_PARSE_FAILURE = "plan_parse_failure"
    DOWNSTREAM_TRANSPORT_FAILURE = "downstream_transport_failure"
    PERMISSION_DENIED = "permission_denied"
    TOOL_FAILED = "tool_failed"


class MediabotError(Exception):
    """Base class for orchestration errors."""

    code: ErrorCode = ErrorCode.TOOL_FAILED

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class UnknownToolError(MediabotError):
    """A plan or model referenced a tool that is not registered."""

    code = ErrorCode.UNKNOWN_TOOL

    def __init__(self, tool_name: str) -> None:
        super().__init__(f"Unknown tool: {tool_name}")
        self.tool_name = tool_name


class RequiredParameterMissing(MediabotError):
    code = ErrorCode.REQUIRED_PARAMETER_MISSING

    def __init__(self, tool_name: str, parameter: str) -> None:
        super().__init__(f"Missing required parameter '{parameter}' for {tool_name}")
        self.tool_name = tool_name
        self.parameter = parameter


class ProviderMismatch(MediabotError):
    """A provider of the wrong media kind was requested."""

    code = ErrorCode.PROVIDER_MISMATCH

    def __init__(self, provider: str, expected_kind: str, message: str | None = None) -> None:
        super().__init__(message or f"{provider} cannot produce {expected_kind}")
        self.provider = provider
        self.expected_kind = expected_kind


class PlanParseFailure(MediabotError):
    """Planner output could not be recovered into a plan."""

    code = ErrorCode.PLAN_PARSE_FAILURE


class DownstreamTransportFailure(MediabotError):
    """
    Part of an assembled reply could not be sent.

    ``kinds`` names the emissions that failed; ``delivered`` holds the ones
    that reached the chat.
    """

    code = ErrorCode.DOWNSTREAM_TRANSPORT_FAILURE

    def __init__(
        self,
        kinds: list[str],
        chat_id: str,
        cause: BaseException | None = None,
        delivered: list[Any] | None = None,
    ) -> None:
        detail = f": {cause}" if cause else ""
        super().__init__(f"Failed to send {', '.join(kinds)} to {chat_id}{detail}")
        self.kinds = kinds
        self.chat_id = chat_id
        self.cause = cause
        self.delivered = delivered or []
