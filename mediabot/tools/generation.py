"""Shared paths for capabilities backed by generation providers or the LLM."""

from typing import Any, Callable

from ..core.fallback import ProviderFallback
from ..core.llm_router import LLMMessage
from ..core.models import ToolResult
from ..utils.logging import get_logger
from .base import ExecutionContext
from .providers import format_provider_name, normalize_provider

logger = get_logger(__name__)

# Turns a provider response body into a tool result
ResultBuilder = Callable[[dict[str, Any]], ToolResult]


def media_result(kind: str) -> ResultBuilder:
    """Builder for gateway bodies of the form ``{"url": ..., "caption": ...}``."""

    def build(body: dict[str, Any]) -> ToolResult:
        url = body.get("url")
        if not url:
            return ToolResult.fail(f"No {kind} was returned")
        caption = body.get("caption") or body.get("description")
        if kind == "audio":
            return ToolResult.ok(body.get("text"), audio_url=url)
        return ToolResult.ok(body.get("text"), **{f"{kind}_url": url, f"{kind}_caption": caption})

    return build


def text_result(body: dict[str, Any]) -> ToolResult:
    text = body.get("text") or body.get("answer")
    if not text:
        return ToolResult.fail("The provider returned no text")
    return ToolResult.ok(text)


async def notify(context: ExecutionContext, text: str) -> bool:
    """Send a side message to the chat. Returns whether it was delivered."""
    if context.transport is None:
        return False
    try:
        await context.transport.send_text(context.chat_id, text)
    except Exception as e:
        logger.warning("Failed to send notice", error=str(e))
        return False
    return True


async def generate_with_fallback(
    context: ExecutionContext,
    tool_name: str,
    kind: str,
    operation: str,
    payload: dict[str, Any],
    build: ResultBuilder,
    requested_provider: str | None = None,
) -> ToolResult:
    """
    Run one generation call across the provider candidates for ``kind``.

    When every candidate failed, the combined error is pushed to the chat
    here and the result is flagged ``errors_already_sent``.
    """
    hub = context.providers
    if hub is None:
        return ToolResult.fail("No generation providers are configured")

    requested = normalize_provider(requested_provider)
    # Raises ProviderMismatch for a provider of the wrong kind
    candidates = hub.candidates(kind, requested)

    async def announce(provider: str, attempt: int) -> None:
        if context.send_acks:
            await notify(context, f"Trying {format_provider_name(provider)}...")

    async def invoke(provider: str) -> ToolResult:
        body = await hub.generate(provider, operation, payload)
        return build(body)

    fallback = ProviderFallback(tool_name, requested_provider=requested, on_attempt=announce)
    result = await fallback.try_with_fallback(candidates, invoke)
    if result.success or result.text_only:
        return result

    if await notify(context, f"❌ {result.error}"):
        result = result.with_updates(errors_already_sent=True)
    return result


async def ask_llm(context: ExecutionContext, prompt: str, temperature: float = 0.3) -> str:
    """Single-turn LLM completion for tools that only need text back."""
    if context.llm is None:
        raise RuntimeError("No language model is available")
    response = await context.llm.generate([LLMMessage(role="user", content=prompt)], temperature=temperature)
    return (response.content or "").strip()
