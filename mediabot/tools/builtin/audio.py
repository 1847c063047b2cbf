"""Music, sound effect, speech and transcription tools."""

from typing import Any

from ...core.errors import RequiredParameterMissing
from ...core.models import ToolResult
from ..base import CATEGORY_DATA, CATEGORY_OUTPUT, BaseToolset, ExecutionContext, HistoryPolicy, ParameterSpec
from ..generation import generate_with_fallback, media_result, text_result
from .creation import PROVIDER_PARAM


class AudioToolset(BaseToolset):
    """Toolset for generated audio and speech-to-text."""

    name = "audio"
    description = "Music, sound effects, speech and transcription"

    def _register_tools(self) -> None:
        """Register audio tools."""
        self.declare(
            name="create_music",
            description="Compose and produce a song or instrumental track",
            handler=self._create_music,
            parameters={
                "prompt": ParameterSpec(required=True, description="Style, mood and topic of the music"),
                "instrumental": ParameterSpec(type="boolean", description="No vocals"),
                "provider": PROVIDER_PARAM,
            },
            history=HistoryPolicy(ignore=True, reason="Prompt is self-contained"),
            category=CATEGORY_OUTPUT,
            creates_media=True,
        )

        self.declare(
            name="create_sound_effect",
            description="Create a short sound effect",
            handler=self._create_sound_effect,
            parameters={
                "description": ParameterSpec(required=True, description="The sound to create"),
                "provider": PROVIDER_PARAM,
            },
            history=HistoryPolicy(ignore=True, reason="Prompt is self-contained"),
            category=CATEGORY_OUTPUT,
            creates_media=True,
        )

        self.declare(
            name="text_to_speech",
            description="Read text aloud as a voice message",
            handler=self._text_to_speech,
            parameters={
                "text": ParameterSpec(required=True, description="Text to speak"),
                "language": ParameterSpec(description="Language code of the text"),
                "voice": ParameterSpec(description="Voice name or id"),
                "provider": PROVIDER_PARAM,
            },
            history=HistoryPolicy(ignore=True, reason="Text is given explicitly"),
            category=CATEGORY_OUTPUT,
            creates_media=True,
        )

        self.declare(
            name="transcribe_audio",
            description="Transcribe the attached voice message or audio to text",
            handler=self._transcribe_audio,
            parameters={
                "audio_url": ParameterSpec(description="Audio to transcribe"),
            },
            history=HistoryPolicy(ignore=True, reason="Works on the attached audio"),
            category=CATEGORY_DATA,
        )

    async def _create_music(self, args: dict[str, Any], context: ExecutionContext) -> ToolResult:
        if not context.request.media_creation_allowed:
            return self.denied("create_music")

        prompt = self.require(args, "create_music", "prompt")
        return await generate_with_fallback(
            context,
            "create_music",
            kind="music",
            operation="music",
            payload={"prompt": prompt, "instrumental": bool(args.get("instrumental", False))},
            build=media_result("audio"),
            requested_provider=args.get("provider"),
        )

    async def _create_sound_effect(self, args: dict[str, Any], context: ExecutionContext) -> ToolResult:
        if not context.request.media_creation_allowed:
            return self.denied("create_sound_effect")

        description = self.require(args, "create_sound_effect", "description")
        return await generate_with_fallback(
            context,
            "create_sound_effect",
            kind="sound",
            operation="sound-effect",
            payload={"description": description},
            build=media_result("audio"),
            requested_provider=args.get("provider"),
        )

    async def _text_to_speech(self, args: dict[str, Any], context: ExecutionContext) -> ToolResult:
        if not context.request.voice_allowed:
            return self.denied("text_to_speech")

        text = self.require(args, "text_to_speech", "text")
        return await speak(context, text, args.get("language") or context.request.language, args)

    async def _transcribe_audio(self, args: dict[str, Any], context: ExecutionContext) -> ToolResult:
        audio_url = args.get("audio_url") or context.request.audio_url
        if not audio_url:
            raise RequiredParameterMissing("transcribe_audio", "audio_url")

        return await generate_with_fallback(
            context,
            "transcribe_audio",
            kind="analysis",
            operation="transcribe",
            payload={"audio_url": audio_url},
            build=text_result,
        )


async def speak(
    context: ExecutionContext,
    text: str,
    language: str,
    args: dict[str, Any],
    tool_name: str = "text_to_speech",
) -> ToolResult:
    """Synthesize ``text`` as a voice message."""
    payload: dict[str, Any] = {"text": text, "language": language}
    if args.get("voice"):
        payload["voice"] = args["voice"]
    return await generate_with_fallback(
        context,
        tool_name,
        kind="speech",
        operation="speech",
        payload=payload,
        build=media_result("audio"),
        requested_provider=args.get("provider"),
    )
