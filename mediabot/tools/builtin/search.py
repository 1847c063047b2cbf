"""Web search tool."""

from typing import Any

from ...core.models import ToolResult
from ..base import CATEGORY_DATA, BaseToolset, ExecutionContext, HistoryPolicy, ParameterSpec
from ..generation import generate_with_fallback

MAX_SOURCES = 5


def search_result(body: dict[str, Any]) -> ToolResult:
    """Answer text followed by up to ``MAX_SOURCES`` source links."""
    answer = (body.get("answer") or body.get("text") or "").strip()
    sources = [s for s in body.get("sources") or [] if isinstance(s, dict) and s.get("url")]
    if not answer and not sources:
        return ToolResult.fail("No results found")

    lines = [answer] if answer else []
    if sources:
        lines.append("")
        for source in sources[:MAX_SOURCES]:
            title = source.get("title") or source["url"]
            lines.append(f"• {title}: {source['url']}")
    return ToolResult.ok("\n".join(lines).strip())


class SearchToolset(BaseToolset):
    """Toolset for grounded web search."""

    name = "search"
    description = "Web search"

    def _register_tools(self) -> None:
        """Register search tools."""
        self.declare(
            name="search_web",
            description="Search the web for current information or links",
            handler=self._search_web,
            parameters={
                "query": ParameterSpec(required=True, description="What to search for"),
            },
            history=HistoryPolicy(ignore=True, reason="Query is self-contained"),
            category=CATEGORY_DATA,
        )

    async def _search_web(self, args: dict[str, Any], context: ExecutionContext) -> ToolResult:
        query = self.require(args, "search_web", "query")
        return await generate_with_fallback(
            context,
            "search_web",
            kind="search",
            operation="search",
            payload={"query": query, "language": context.request.language},
            build=search_result,
        )
