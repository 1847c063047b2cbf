"""Image and video generation tools."""

from typing import Any

from ...core.errors import ErrorCode, RequiredParameterMissing
from ...core.models import ToolResult
from ..base import CATEGORY_OUTPUT, BaseToolset, ExecutionContext, HistoryPolicy, ParameterSpec
from ..generation import generate_with_fallback, media_result
from ..providers import check_provider_kind, normalize_provider

PROVIDER_PARAM = ParameterSpec(
    description="Provider to use, only when the user named one explicitly",
)


class CreationToolset(BaseToolset):
    """
    Toolset for creating new media from a text prompt.

    Every tool here needs the chat's media-creation permission and goes
    through provider fallback unless a provider was named.
    """

    name = "creation"
    description = "Create images and videos"

    def _register_tools(self) -> None:
        """Register creation tools."""
        self.declare(
            name="create_image",
            description="Create an image from a text description",
            handler=self._create_image,
            parameters={
                "prompt": ParameterSpec(required=True, description="What the image should show"),
                "provider": PROVIDER_PARAM,
            },
            history=HistoryPolicy(ignore=True, reason="Prompt is self-contained"),
            category=CATEGORY_OUTPUT,
            creates_media=True,
        )

        self.declare(
            name="create_video",
            description="Create a video from a text description",
            handler=self._create_video,
            parameters={
                "prompt": ParameterSpec(required=True, description="What the video should show"),
                "duration": ParameterSpec(type="integer", description="Length in seconds"),
                "provider": PROVIDER_PARAM,
            },
            history=HistoryPolicy(ignore=True, reason="Prompt is self-contained"),
            category=CATEGORY_OUTPUT,
            creates_media=True,
        )

        self.declare(
            name="image_to_video",
            description="Animate an image into a video. Uses the attached or last created image",
            handler=self._image_to_video,
            parameters={
                "prompt": ParameterSpec(description="How the image should move"),
                "image_url": ParameterSpec(description="Image to animate"),
                "provider": PROVIDER_PARAM,
            },
            history=HistoryPolicy(conditional=True, reason="Works on the attached image"),
            category=CATEGORY_OUTPUT,
            creates_media=True,
        )

    async def _create_image(self, args: dict[str, Any], context: ExecutionContext) -> ToolResult:
        if not context.request.media_creation_allowed:
            return self.denied("create_image")
        if context.expected_media_type == "video":
            return ToolResult.fail(
                "This step asks for a video, not an image. Use create_video instead.",
                ErrorCode.PROVIDER_MISMATCH,
            )

        prompt = self.require(args, "create_image", "prompt")
        return await generate_with_fallback(
            context,
            "create_image",
            kind="image",
            operation="image",
            payload={"prompt": prompt},
            build=media_result("image"),
            requested_provider=args.get("provider"),
        )

    async def _create_video(self, args: dict[str, Any], context: ExecutionContext) -> ToolResult:
        if not context.request.media_creation_allowed:
            return self.denied("create_video")

        prompt = self.require(args, "create_video", "prompt")
        payload: dict[str, Any] = {"prompt": prompt}
        if args.get("duration"):
            payload["duration"] = int(args["duration"])
        return await generate_with_fallback(
            context,
            "create_video",
            kind="video",
            operation="video",
            payload=payload,
            build=media_result("video"),
            requested_provider=args.get("provider"),
        )

    async def _image_to_video(self, args: dict[str, Any], context: ExecutionContext) -> ToolResult:
        if not context.request.media_creation_allowed:
            return self.denied("image_to_video")

        provider = normalize_provider(args.get("provider"))
        if provider:
            check_provider_kind(provider, "video")

        image_url = args.get("image_url") or context.request.image_url or context.last_asset("image")
        if not image_url:
            raise RequiredParameterMissing("image_to_video", "image_url")

        return await generate_with_fallback(
            context,
            "image_to_video",
            kind="video",
            operation="image-to-video",
            payload={"prompt": args.get("prompt") or "", "image_url": image_url},
            build=media_result("video"),
            requested_provider=provider,
        )
