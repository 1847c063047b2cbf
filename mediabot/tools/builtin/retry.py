"""Retry of the chat's last command and fallback after a failed generation."""

import re
from typing import Any

from ...core.errors import ErrorCode
from ...core.fallback import ProviderFallback
from ...core.models import ToolResult
from ...utils.logging import get_logger
from ..base import CATEGORY_OUTPUT, BaseToolset, ExecutionContext, HistoryPolicy, ParameterSpec
from ..generation import media_result, notify
from ..providers import format_provider_name, normalize_provider

logger = get_logger(__name__)

# task type -> (tool named in error messages, provider kind, gateway operation)
FALLBACK_TASKS: dict[str, tuple[str, str, str]] = {
    "image_creation": ("create_image", "image", "image"),
    "video_creation": ("create_video", "video", "video"),
    "audio_creation": ("text_to_speech", "speech", "speech"),
}

RETRY_TASKS: dict[str, tuple[str, str, str]] = {
    "image": ("create_image", "image", "image"),
    "image_edit": ("edit_image", "image", "edit-image"),
    "video": ("create_video", "video", "video"),
}

_ADJECTIVE_RUN_RE = re.compile(r"(\w+,\s*){2,}(\w+)\s+(\w+)", re.IGNORECASE)
_DETAIL_RES = (
    re.compile(r"\b(?:in the style of|like|בסגנון|כמו)\s+.+?(?:,|\.|$)", re.IGNORECASE),
    re.compile(r"\b(?:with (?:a |an )?background|ברקע|עם רקע)\s+.+?(?:,|\.|$)", re.IGNORECASE),
    re.compile(r"\b(?:lighting|atmosphere|תאורה|אווירה):?\s+.+?(?:,|\.|$)", re.IGNORECASE),
)
_NAME_RE = re.compile(r"\b(?:by|from|של|מבית)\s+[A-Z][a-z]+\b")
_YEAR_RE = re.compile(r"\b(?:from|in|מ?שנת)\s+(?:19|20)\d{2}\b", re.IGNORECASE)
_QUALITY_RE = re.compile(r"\b(?:resolution|quality|רזולוציה|איכות):\s*\d+[a-z]*", re.IGNORECASE)
_COLOR_CODE_RE = re.compile(r"#[0-9A-Fa-f]{6}\b")
_INTENSIFIER_RE = re.compile(r"\b(?:very|extremely|super|incredibly|מאוד|סופר|במיוחד)\s+", re.IGNORECASE)
_SPACES_RE = re.compile(r"\s+")


def simplify_prompt(prompt: str) -> str:
    """Drop adjective runs and style, background and lighting clauses."""
    simplified = _ADJECTIVE_RUN_RE.sub(r"\3", prompt)
    for pattern in _DETAIL_RES:
        simplified = pattern.sub("", simplified)
    simplified = _SPACES_RE.sub(" ", simplified).strip()
    if len(simplified) < 10:
        return prompt
    return simplified


def generic_prompt(prompt: str) -> str:
    """Drop names, years, quality settings and intensifiers."""
    generic = _NAME_RE.sub("", prompt)
    generic = _YEAR_RE.sub("", generic)
    generic = _QUALITY_RE.sub("", generic)
    generic = _COLOR_CODE_RE.sub("color", generic)
    generic = _INTENSIFIER_RE.sub("", generic)
    return _SPACES_RE.sub(" ", generic).strip()


def parse_providers(value: Any) -> list[str]:
    """Canonical provider ids from a list or a comma-separated string."""
    if not value:
        return []
    items = value if isinstance(value, (list, tuple)) else str(value).split(",")
    providers: list[str] = []
    for item in items:
        provider = normalize_provider(str(item))
        if provider and provider not in providers:
            providers.append(provider)
    return providers


def next_providers(order: list[str], tried: list[str]) -> list[str]:
    """Untried providers, starting after the last one tried and wrapping around."""
    if tried and tried[-1] in order:
        start = order.index(tried[-1]) + 1
        order = order[start:] + order[:start]
    return [provider for provider in order if provider not in tried]


class RetryToolset(BaseToolset):
    """Re-runs the last stored command, optionally with another provider."""

    name = "retry"
    description = "Retry the last command"

    def _register_tools(self) -> None:
        """Register retry tools."""
        self.declare(
            name="retry_last_command",
            description="Run the previous command again, optionally with a different provider or an adjusted prompt",
            handler=self._retry_last_command,
            parameters={
                "provider": ParameterSpec(description="Provider to use this time"),
                "modifications": ParameterSpec(description="Changes to apply to the previous prompt"),
            },
            history=HistoryPolicy(ignore=True, reason="Uses the stored last command"),
        )

        self.declare(
            name="smart_execute_with_fallback",
            description=(
                "After a creation tool failed, try other providers, then a simpler prompt. "
                "Use only after a failure"
            ),
            handler=self._smart_execute_with_fallback,
            parameters={
                "task_type": ParameterSpec(required=True, enum=tuple(FALLBACK_TASKS)),
                "original_prompt": ParameterSpec(required=True, description="The prompt that failed"),
                "failure_reason": ParameterSpec(required=True, description="Why the first attempt failed"),
                "providers_tried": ParameterSpec(description="Comma-separated providers that already failed"),
            },
            history=HistoryPolicy(ignore=True, reason="Prompt is passed explicitly"),
            category=CATEGORY_OUTPUT,
            creates_media=True,
        )

        self.declare(
            name="retry_with_different_provider",
            description="Create or edit media again with every provider except the one to avoid",
            handler=self._retry_with_different_provider,
            parameters={
                "task_type": ParameterSpec(required=True, enum=tuple(RETRY_TASKS)),
                "original_prompt": ParameterSpec(required=True, description="The prompt to run again"),
                "avoid_provider": ParameterSpec(description="Provider that should not be used"),
                "image_url": ParameterSpec(description="Image to edit, for image_edit"),
            },
            history=HistoryPolicy(ignore=True, reason="Prompt is passed explicitly"),
            category=CATEGORY_OUTPUT,
            creates_media=True,
        )

    async def _retry_last_command(self, args: dict[str, Any], context: ExecutionContext) -> ToolResult:
        if context.command_store is None or context.registry is None:
            return ToolResult.fail("Retry is not available")

        command = await context.command_store.get(context.chat_id)
        if command is None:
            return ToolResult.fail("There is no previous command to retry")

        retry_args = dict(command.args)
        if args.get("provider"):
            retry_args["provider"] = args["provider"]
        modifications = (args.get("modifications") or "").strip()
        if modifications:
            for field_name in ("prompt", "text", "description", "query"):
                if retry_args.get(field_name):
                    retry_args[field_name] = f"{retry_args[field_name]}, {modifications}"
                    break

        logger.info("Retrying last command", tool=command.tool, provider=retry_args.get("provider"))
        return await context.registry.execute(command.tool, retry_args, context)

    async def _smart_execute_with_fallback(self, args: dict[str, Any], context: ExecutionContext) -> ToolResult:
        """
        Work through fallback strategies until one produces the media.

        Providers not tried yet go first, in default order after the last one
        tried. After that the first default provider gets a simplified prompt
        and finally a generic one.
        """
        task_type = self.require(args, "smart_execute_with_fallback", "task_type")
        if task_type not in FALLBACK_TASKS:
            return ToolResult.fail(f"Unknown task type: {task_type}")
        tool_name, kind, operation = FALLBACK_TASKS[task_type]
        allowed = context.request.voice_allowed if kind == "speech" else context.request.media_creation_allowed
        if not allowed:
            return self.denied(tool_name)

        prompt = self.require(args, "smart_execute_with_fallback", "original_prompt")
        if context.providers is None:
            return ToolResult.fail("No generation providers are configured")

        tried = parse_providers(args.get("providers_tried") or args.get("provider_tried"))
        logger.info(
            "Smart fallback started",
            task_type=task_type,
            failure_reason=args.get("failure_reason"),
            providers_tried=tried,
        )

        defaults = context.providers.defaults(kind)
        strategies = [("different_provider", next_providers(defaults, tried), prompt)]
        simplified = simplify_prompt(prompt)
        if simplified != prompt:
            strategies.append(("simplified_prompt", defaults[:1], simplified))
        generic = generic_prompt(prompt)
        if generic and generic not in (prompt, simplified):
            strategies.append(("generic_prompt", defaults[:1], generic))

        return await self._run_strategies(context, tool_name, kind, operation, strategies)

    async def _retry_with_different_provider(self, args: dict[str, Any], context: ExecutionContext) -> ToolResult:
        task_type = args.get("task_type") or "image"
        if task_type not in RETRY_TASKS:
            return ToolResult.fail(f"Unknown task type: {task_type}")
        tool_name, kind, operation = RETRY_TASKS[task_type]
        if not context.request.media_creation_allowed:
            return self.denied(tool_name)

        prompt = self.require(args, "retry_with_different_provider", "original_prompt")
        if context.providers is None:
            return ToolResult.fail("No generation providers are configured")

        payload: dict[str, Any] = {}
        if task_type == "image_edit":
            image_url = args.get("image_url") or context.request.image_url or context.last_asset("image")
            if not image_url:
                return ToolResult.fail("There is no image to edit")
            payload["image_url"] = image_url

        avoid = normalize_provider(args.get("avoid_provider"))
        candidates = [p for p in context.providers.defaults(kind) if p != avoid]
        logger.info("Retrying with other providers", task_type=task_type, avoid=avoid, candidates=candidates)
        return await self._run_strategies(
            context, tool_name, kind, operation, [("different_provider", candidates, prompt)], payload
        )

    async def _run_strategies(
        self,
        context: ExecutionContext,
        tool_name: str,
        kind: str,
        operation: str,
        strategies: list[tuple[str, list[str], str]],
        extra_payload: dict[str, Any] | None = None,
    ) -> ToolResult:
        hub = context.providers
        build = media_result("audio" if kind == "speech" else kind)
        prompt_key = "text" if kind == "speech" else "prompt"
        fallback = ProviderFallback(tool_name)

        for strategy, candidates, text in strategies:
            if not candidates:
                continue

            async def invoke(provider: str, text: str = text) -> ToolResult:
                if context.send_acks:
                    await notify(context, f"🔄 Trying {format_provider_name(provider)}...")
                payload = {prompt_key: text, **(extra_payload or {})}
                return build(await hub.generate(provider, operation, payload))

            result = await fallback.try_with_fallback(candidates, invoke)
            if result.success or result.text_only:
                logger.info("Fallback succeeded", tool=tool_name, strategy=strategy, provider=result.provider_used)
                return result
            logger.info("Fallback strategy failed", tool=tool_name, strategy=strategy)

        result = ToolResult.fail(fallback.format_errors(), ErrorCode.ALL_PROVIDERS_FAILED)
        if await notify(context, f"❌ {result.error}"):
            result = result.with_updates(errors_already_sent=True)
        return result
