"""Translation tools."""

from typing import Any

from ...core.models import ToolResult
from ...utils.logging import get_logger
from ...utils.text import clean_json_wrapper
from ..base import CATEGORY_DATA, CATEGORY_OUTPUT, BaseToolset, ExecutionContext, HistoryPolicy, ParameterSpec
from ..generation import ask_llm
from .audio import speak

logger = get_logger(__name__)

TRANSLATE_PROMPT = """Translate the following text to {language}.
Return only the translation, without quotes or explanations.

Text:
{text}"""


class LanguageToolset(BaseToolset):
    """Toolset for translating text, optionally spoken aloud."""

    name = "language"
    description = "Translation"

    def _register_tools(self) -> None:
        """Register translation tools."""
        self.declare(
            name="translate_text",
            description="Translate text to another language",
            handler=self._translate_text,
            parameters={
                "text": ParameterSpec(required=True, description="Text to translate"),
                "target_language": ParameterSpec(required=True, description="Language to translate to"),
            },
            history=HistoryPolicy(ignore=True, reason="Text is given explicitly"),
            category=CATEGORY_DATA,
        )

        self.declare(
            name="translate_and_speak",
            description="Translate text and send the translation as a voice message",
            handler=self._translate_and_speak,
            parameters={
                "text": ParameterSpec(required=True, description="Text to translate"),
                "target_language": ParameterSpec(required=True, description="Language to translate to"),
                "voice": ParameterSpec(description="Voice name or id"),
            },
            history=HistoryPolicy(ignore=True, reason="Text is given explicitly"),
            category=CATEGORY_OUTPUT,
            creates_media=True,
        )

    async def _translate(self, tool_name: str, args: dict[str, Any], context: ExecutionContext) -> str:
        text = self.require(args, tool_name, "text")
        language = self.require(args, tool_name, "target_language")
        translated = clean_json_wrapper(await ask_llm(context, TRANSLATE_PROMPT.format(language=language, text=text)))
        if not translated:
            raise RuntimeError("The translation came back empty")
        return translated

    async def _translate_text(self, args: dict[str, Any], context: ExecutionContext) -> ToolResult:
        return ToolResult.ok(await self._translate("translate_text", args, context))

    async def _translate_and_speak(self, args: dict[str, Any], context: ExecutionContext) -> ToolResult:
        if not context.request.voice_allowed:
            return self.denied("translate_and_speak")

        translated = await self._translate("translate_and_speak", args, context)
        result = await speak(context, translated, args["target_language"], args, "translate_and_speak")
        if result.success:
            return result.with_updates(data=translated)

        # Fall back to the translated text alone
        logger.warning("Speech failed after translation", error=result.error)
        return ToolResult.ok(translated, text_only=True, errors_already_sent=result.errors_already_sent)
