"""Image and video editing tools."""

from typing import Any

from ...core.errors import RequiredParameterMissing
from ...core.models import ToolResult
from ..base import CATEGORY_OUTPUT, BaseToolset, ExecutionContext, HistoryPolicy, ParameterSpec
from ..generation import generate_with_fallback, media_result
from .creation import PROVIDER_PARAM


class EditingToolset(BaseToolset):
    """
    Toolset for editing existing media.

    Editing consumes the current artifact of its kind, so a result replaces
    media created earlier in the same request.
    """

    name = "editing"
    description = "Edit images and videos"

    def _register_tools(self) -> None:
        """Register editing tools."""
        self.declare(
            name="edit_image",
            description="Edit an image following an instruction. Uses the attached or last created image",
            handler=self._edit_image,
            parameters={
                "prompt": ParameterSpec(required=True, description="The edit to apply"),
                "image_url": ParameterSpec(description="Image to edit"),
                "provider": PROVIDER_PARAM,
            },
            history=HistoryPolicy(conditional=True, reason="Works on the attached image"),
            category=CATEGORY_OUTPUT,
            chains=("image",),
            creates_media=True,
        )

        self.declare(
            name="edit_video",
            description="Edit a video following an instruction. Uses the attached or last created video",
            handler=self._edit_video,
            parameters={
                "prompt": ParameterSpec(required=True, description="The edit to apply"),
                "video_url": ParameterSpec(description="Video to edit"),
                "provider": PROVIDER_PARAM,
            },
            history=HistoryPolicy(conditional=True, reason="Works on the attached video"),
            category=CATEGORY_OUTPUT,
            chains=("video",),
            creates_media=True,
        )

    async def _edit(
        self,
        tool_name: str,
        kind: str,
        args: dict[str, Any],
        context: ExecutionContext,
    ) -> ToolResult:
        if not context.request.media_creation_allowed:
            return self.denied(tool_name)

        prompt = self.require(args, tool_name, "prompt")
        source = args.get(f"{kind}_url") or getattr(context.request, f"{kind}_url") or context.last_asset(kind)
        if not source:
            raise RequiredParameterMissing(tool_name, f"{kind}_url")

        return await generate_with_fallback(
            context,
            tool_name,
            kind=kind,
            operation=f"edit-{kind}",
            payload={"prompt": prompt, f"{kind}_url": source},
            build=media_result(kind),
            requested_provider=args.get("provider"),
        )

    async def _edit_image(self, args: dict[str, Any], context: ExecutionContext) -> ToolResult:
        return await self._edit("edit_image", "image", args, context)

    async def _edit_video(self, args: dict[str, Any], context: ExecutionContext) -> ToolResult:
        return await self._edit("edit_video", "video", args, context)
