"""Data records passed between the planner, tools and the reply pipeline."""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any

from .errors import ErrorCode

MEDIA_KINDS = ("image", "video", "audio")


@dataclass
class NormalizedRequest:
    """One parsed inbound chat message."""

    chat_id: str
    user_text: str
    image_url: str | None = None
    video_url: str | None = None
    audio_url: str | None = None
    quoted_context: str | None = None
    chat_type: str = "private"  # private, group
    language: str = "en"
    sender_id: str = ""
    sender_name: str = ""
    message_id: str | None = None
    media_creation_allowed: bool = True
    voice_allowed: bool = True
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def has_media(self) -> bool:
        return bool(self.image_url or self.video_url or self.audio_url)

    @property
    def is_group(self) -> bool:
        return self.chat_type == "group"


@dataclass(frozen=True)
class Poll:
    question: str
    options: tuple[str, ...]


@dataclass(frozen=True)
class ToolResult:
    """
    Outcome of one tool invocation.

    Immutable once returned. Use ``with_updates`` to derive a tagged copy
    (for example when the fallback coordinator records the provider used).
    """

    success: bool
    data: str | None = None
    error: str | None = None
    error_code: ErrorCode | None = None
    image_url: str | None = None
    image_caption: str | None = None
    video_url: str | None = None
    video_caption: str | None = None
    audio_url: str | None = None
    poll: Poll | None = None
    latitude: float | None = None
    longitude: float | None = None
    location_info: str | None = None
    provider_key: str | None = None
    provider_used: str | None = None
    errors_already_sent: bool = False
    text_only: bool = False

    @classmethod
    def ok(cls, data: str | None = None, **payload: Any) -> "ToolResult":
        return cls(success=True, data=data, **payload)

    @classmethod
    def fail(
        cls,
        error: str,
        code: ErrorCode = ErrorCode.TOOL_FAILED,
        **payload: Any,
    ) -> "ToolResult":
        return cls(success=False, error=error, error_code=code, **payload)

    def with_updates(self, **changes: Any) -> "ToolResult":
        return replace(self, **changes)

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    def to_dict(self) -> dict[str, Any]:
        """Convert to a compact dictionary (None fields dropped)."""
        result: dict[str, Any] = {"success": self.success}
        for key in (
            "data", "error", "image_url", "image_caption", "video_url",
            "video_caption", "audio_url", "latitude", "longitude",
            "location_info", "provider_used",
        ):
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.error_code is not None:
            result["error_code"] = self.error_code.value
        if self.errors_already_sent:
            result["errors_already_sent"] = True
        if self.poll is not None:
            result["poll"] = {"question": self.poll.question, "options": list(self.poll.options)}
        return result


@dataclass
class PlanStep:
    """One element of a compiled plan."""

    step_number: int
    tool: str | None = None
    action: str = ""
    parameters: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "stepNumber": self.step_number,
            "tool": self.tool,
            "action": self.action,
            "parameters": self.parameters,
        }


@dataclass
class MultiStepPlan:
    """Planner verdict. Only ``is_multi_step`` plans carry steps."""

    is_multi_step: bool = False
    steps: list[PlanStep] = field(default_factory=list)
    reasoning: str = ""
    fallback: bool = False

    @classmethod
    def single(cls, fallback: bool = False) -> "MultiStepPlan":
        return cls(is_multi_step=False, fallback=fallback)


@dataclass
class AggregateResult:
    """
    Accumulated output of every step of one request.

    Each media slot holds at most one artifact. A later result of the same
    kind only replaces it when the producing tool chains that kind, i.e. it
    consumed the earlier artifact (``edit_image`` after ``create_image``).
    """

    tools_used: list[str] = field(default_factory=list)
    texts: list[str] = field(default_factory=list)
    image_url: str | None = None
    image_caption: str | None = None
    video_url: str | None = None
    video_caption: str | None = None
    audio_url: str | None = None
    poll: Poll | None = None
    latitude: float | None = None
    longitude: float | None = None
    location_info: str | None = None
    error: str | None = None
    errors_already_sent: bool = False
    any_success: bool = False
    failures: int = 0
    unsent_failures: int = 0

    @property
    def text(self) -> str:
        return "\n\n".join(t for t in self.texts if t.strip())

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    @property
    def has_media(self) -> bool:
        return bool(self.image_url or self.video_url or self.audio_url)

    @property
    def has_output(self) -> bool:
        return self.has_media or self.poll is not None or self.has_location

    @property
    def failures_all_sent(self) -> bool:
        """Every step failed and each failure was already pushed to the chat."""
        return not self.any_success and self.failures > 0 and self.unsent_failures == 0

    def add_text(self, text: str | None) -> None:
        if text and text.strip():
            self.texts.append(text.strip())

    def absorb(
        self,
        tool_name: str | None,
        result: ToolResult,
        chains: frozenset[str] = frozenset(),
    ) -> list[str]:
        """
        Merge one tool result into the aggregate.

        Returns the media kinds that were dropped because their slot was
        already taken and the tool does not chain them.
        """
        if tool_name:
            self.tools_used.append(tool_name)

        if not result.success:
            self.failures += 1
            if not result.errors_already_sent:
                self.unsent_failures += 1
            if result.error:
                self.error = result.error
            self.errors_already_sent = self.errors_already_sent or result.errors_already_sent
            return []

        self.any_success = True
        dropped: list[str] = []
        slots = (
            ("image", result.image_url, result.image_caption),
            ("video", result.video_url, result.video_caption),
            ("audio", result.audio_url, None),
        )
        for kind, url, caption in slots:
            if not url:
                continue
            if getattr(self, f"{kind}_url") and kind not in chains:
                dropped.append(kind)
                continue
            setattr(self, f"{kind}_url", url)
            if kind != "audio":
                setattr(self, f"{kind}_caption", caption)

        if result.poll is not None:
            self.poll = result.poll
        if result.has_location:
            self.latitude = result.latitude
            self.longitude = result.longitude
            self.location_info = result.location_info
        return dropped
