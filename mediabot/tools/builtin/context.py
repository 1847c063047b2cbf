"""Conversation history and long-term memory tools."""

from typing import Any

from ...core.models import ToolResult
from ..base import CATEGORY_DATA, BaseToolset, ExecutionContext, HistoryPolicy, ParameterSpec
from ..generation import ask_llm

DEFAULT_HISTORY_LIMIT = 20
MAX_HISTORY_LIMIT = 100

SUMMARY_PROMPT = """Summarize this WhatsApp conversation in {language}.
List the main topics and key points briefly.

{transcript}"""


class ContextToolset(BaseToolset):
    """Toolset over the chat's stored history and preferences."""

    name = "context"
    description = "Chat history, summaries and user preferences"

    def _register_tools(self) -> None:
        """Register context tools."""
        self.declare(
            name="get_chat_history",
            description="Fetch recent messages of this chat",
            handler=self._get_chat_history,
            parameters={
                "limit": ParameterSpec(type="integer", description="Number of messages"),
            },
            history=HistoryPolicy(ignore=False, reason="Reads the history itself"),
            category=CATEGORY_DATA,
        )

        self.declare(
            name="chat_summary",
            description="Summarize the recent conversation of this chat",
            handler=self._chat_summary,
            parameters={
                "limit": ParameterSpec(type="integer", description="Number of messages to summarize"),
            },
            history=HistoryPolicy(ignore=False, reason="Summarizes the history"),
            category=CATEGORY_DATA,
        )

        self.declare(
            name="get_long_term_memory",
            description="Read the preferences saved for this user",
            handler=self._get_long_term_memory,
            history=HistoryPolicy(ignore=True, reason="Reads stored preferences"),
            category=CATEGORY_DATA,
        )

        self.declare(
            name="save_user_preference",
            description="Remember a preference of the user for future requests",
            handler=self._save_user_preference,
            parameters={
                "key": ParameterSpec(required=True, description="Short preference name"),
                "value": ParameterSpec(required=True, description="Preference value"),
            },
            history=HistoryPolicy(ignore=True, reason="Preference is given explicitly"),
        )

    @staticmethod
    def _limit(args: dict[str, Any]) -> int:
        try:
            limit = int(args.get("limit") or DEFAULT_HISTORY_LIMIT)
        except (TypeError, ValueError):
            limit = DEFAULT_HISTORY_LIMIT
        return max(1, min(limit, MAX_HISTORY_LIMIT))

    async def _transcript(self, args: dict[str, Any], context: ExecutionContext) -> str:
        if context.history_store is None:
            return ""
        entries = await context.history_store.recent(context.chat_id, self._limit(args))
        lines = []
        for entry in entries:
            if not entry.content.strip():
                continue
            speaker = "Bot" if entry.role == "assistant" else entry.metadata.get("sender_name") or "User"
            lines.append(f"[{entry.timestamp:%H:%M}] {speaker}: {entry.content}")
        return "\n".join(lines)

    async def _get_chat_history(self, args: dict[str, Any], context: ExecutionContext) -> ToolResult:
        transcript = await self._transcript(args, context)
        if not transcript:
            return ToolResult.fail("No messages in this chat yet")
        return ToolResult.ok(transcript)

    async def _chat_summary(self, args: dict[str, Any], context: ExecutionContext) -> ToolResult:
        transcript = await self._transcript(args, context)
        if not transcript:
            return ToolResult.fail("No messages in this chat to summarize")
        summary = await ask_llm(
            context,
            SUMMARY_PROMPT.format(language=context.request.language, transcript=transcript),
        )
        if not summary:
            return ToolResult.fail("Could not summarize the conversation")
        return ToolResult.ok(summary)

    async def _get_long_term_memory(self, args: dict[str, Any], context: ExecutionContext) -> ToolResult:
        if context.preference_store is None:
            return ToolResult.ok("No saved preferences")
        preferences = await context.preference_store.get_all(context.chat_id)
        if not preferences:
            return ToolResult.ok("No saved preferences")
        return ToolResult.ok("Saved preferences:\n" + "\n".join(f"• {k}: {v}" for k, v in sorted(preferences.items())))

    async def _save_user_preference(self, args: dict[str, Any], context: ExecutionContext) -> ToolResult:
        key = str(self.require(args, "save_user_preference", "key")).strip()
        value = str(self.require(args, "save_user_preference", "value")).strip()
        if context.preference_store is None:
            return ToolResult.fail("Preferences cannot be saved right now")
        await context.preference_store.set(context.chat_id, key, value)
        return ToolResult.ok(f"Saved: {key} = {value}")
