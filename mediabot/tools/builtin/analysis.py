"""Image and video understanding tools."""

from typing import Any

from ...core.errors import RequiredParameterMissing
from ...core.models import ToolResult
from ..base import CATEGORY_DATA, CATEGORY_OTHER, BaseToolset, ExecutionContext, HistoryPolicy, ParameterSpec
from ..generation import generate_with_fallback, text_result

DEFAULT_QUESTION = "Describe what you see."
HISTORY_SEARCH_LIMIT = 50


class AnalysisToolset(BaseToolset):
    """Toolset for answering questions about images and videos."""

    name = "analysis"
    description = "Image and video analysis"

    def _register_tools(self) -> None:
        """Register analysis tools."""
        self.declare(
            name="analyze_image",
            description="Answer a question about the attached image",
            handler=self._analyze_image,
            parameters={
                "question": ParameterSpec(description="What to find out about the image"),
                "image_url": ParameterSpec(description="Image to analyze"),
            },
            history=HistoryPolicy(ignore=True, reason="Works on the attached image"),
            category=CATEGORY_OTHER,
        )

        self.declare(
            name="analyze_video",
            description="Answer a question about the attached video",
            handler=self._analyze_video,
            parameters={
                "question": ParameterSpec(description="What to find out about the video"),
                "video_url": ParameterSpec(description="Video to analyze"),
            },
            history=HistoryPolicy(ignore=True, reason="Works on the attached video"),
            category=CATEGORY_OTHER,
        )

        self.declare(
            name="analyze_image_from_history",
            description="Answer a question about the most recent image sent in this chat",
            handler=self._analyze_image_from_history,
            parameters={
                "question": ParameterSpec(description="What to find out about the image"),
            },
            history=HistoryPolicy(ignore=False, reason="Needs earlier messages to find the image"),
            category=CATEGORY_DATA,
        )

    async def _analyze(self, tool_name: str, kind: str, url: str, question: str, context: ExecutionContext) -> ToolResult:
        return await generate_with_fallback(
            context,
            tool_name,
            kind="analysis",
            operation=f"analyze-{kind}",
            payload={f"{kind}_url": url, "question": question, "language": context.request.language},
            build=text_result,
        )

    async def _analyze_image(self, args: dict[str, Any], context: ExecutionContext) -> ToolResult:
        url = args.get("image_url") or context.request.image_url
        if not url:
            raise RequiredParameterMissing("analyze_image", "image_url")
        return await self._analyze("analyze_image", "image", url, args.get("question") or DEFAULT_QUESTION, context)

    async def _analyze_video(self, args: dict[str, Any], context: ExecutionContext) -> ToolResult:
        url = args.get("video_url") or context.request.video_url
        if not url:
            raise RequiredParameterMissing("analyze_video", "video_url")
        return await self._analyze("analyze_video", "video", url, args.get("question") or DEFAULT_QUESTION, context)

    async def _analyze_image_from_history(self, args: dict[str, Any], context: ExecutionContext) -> ToolResult:
        url = await self._latest_history_image(context) or context.last_asset("image")
        if not url:
            return ToolResult.fail("No image was found in this chat")
        question = args.get("question") or DEFAULT_QUESTION
        return await self._analyze("analyze_image_from_history", "image", url, question, context)

    @staticmethod
    async def _latest_history_image(context: ExecutionContext) -> str | None:
        if context.history_store is None:
            return None
        entries = await context.history_store.recent(context.chat_id, HISTORY_SEARCH_LIMIT)
        for entry in reversed(entries):
            url = entry.metadata.get("image_url")
            if url:
                return url
        return None
