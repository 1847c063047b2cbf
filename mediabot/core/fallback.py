"""Provider fallback: try interchangeable backends in order until one succeeds."""

from dataclasses import dataclass
from typing import Awaitable, Callable

from ..tools.providers import format_provider_name
from ..utils.logging import get_logger
from .errors import ErrorCode
from .models import ToolResult

logger = get_logger(__name__)

ProviderInvoker = Callable[[str], Awaitable[ToolResult]]
AttemptHook = Callable[[str, int], Awaitable[None]]

# tool name -> (verb, noun) used in the exhaustion message
FALLBACK_SUBJECTS: dict[str, tuple[str, str]] = {
    "create_image": ("create", "image"),
    "edit_image": ("edit", "image"),
    "create_video": ("create", "video"),
    "image_to_video": ("create", "video"),
    "edit_video": ("edit", "video"),
    "create_music": ("create", "song"),
    "create_sound_effect": ("create", "sound effect"),
    "text_to_speech": ("create", "audio"),
}


@dataclass
class ProviderError:
    provider: str
    message: str


class ProviderFallback:
    """
    Sequential fallback across provider candidates for one tool call.

    The coordinator performs no I/O of its own: provider calls happen in
    ``invoke`` and acknowledgements, if any, in the ``on_attempt`` hook.
    """

    def __init__(
        self,
        tool_name: str,
        requested_provider: str | None = None,
        on_attempt: AttemptHook | None = None,
    ) -> None:
        self.tool_name = tool_name
        self.requested_provider = requested_provider
        self.on_attempt = on_attempt
        self.errors: list[ProviderError] = []
        self.attempted: list[str] = []

    async def try_with_fallback(
        self,
        candidates: list[str],
        invoke: ProviderInvoker,
        errors_already_sent: bool = False,
    ) -> ToolResult:
        """
        Invoke candidates in order and return the first success.

        An explicitly requested provider disables fallback: only that
        provider is tried, whatever the candidate list holds.
        """
        if self.requested_provider:
            candidates = [self.requested_provider]

        for candidate in candidates:
            if not candidate:
                continue

            if self.attempted and self.on_attempt is not None:
                await self.on_attempt(candidate, len(self.attempted))
            self.attempted.append(candidate)

            try:
                result = await invoke(candidate)
            except Exception as e:
                logger.warning("Provider raised", tool=self.tool_name, provider=candidate, error=str(e))
                self.errors.append(ProviderError(format_provider_name(candidate), str(e) or type(e).__name__))
                continue

            if result.success or result.text_only:
                logger.info("Provider succeeded", tool=self.tool_name, provider=candidate, attempts=len(self.attempted))
                return result.with_updates(provider_used=candidate, provider_key=result.provider_key or candidate)

            message = result.error or "Unknown error"
            logger.warning("Provider failed", tool=self.tool_name, provider=candidate, error=message)
            self.errors.append(ProviderError(format_provider_name(candidate), message))

        return ToolResult.fail(
            self.format_errors(),
            ErrorCode.ALL_PROVIDERS_FAILED,
            errors_already_sent=errors_already_sent,
        )

    def format_errors(self) -> str:
        """Concatenate per-provider errors, each attributed to its provider."""
        if not self.errors:
            return "No provider was available for this request"
        if self.requested_provider or len(self.errors) == 1:
            error = self.errors[0]
            return f"{error.provider} failed: {error.message}"

        verb, noun = FALLBACK_SUBJECTS.get(self.tool_name, ("complete", "request"))
        lines = [f"All providers failed to {verb} the {noun}:"]
        lines.extend(f"• {error.provider}: {error.message}" for error in self.errors)
        return "\n".join(lines)
