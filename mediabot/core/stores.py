"""Per-chat state read and written at the edge of a request."""

from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

from ..utils.logging import get_logger

logger = get_logger(__name__)

# Tools whose calls are never stored as the chat's last command
NON_PERSISTED_TOOLS: frozenset[str] = frozenset({
    "retry_last_command",
    "get_chat_history",
    "save_user_preference",
    "get_long_term_memory",
    "transcribe_audio",
})


@dataclass
class HistoryEntry:
    """A single role-tagged conversation message."""

    role: str  # user, assistant
    content: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HistoryEntry":
        """Create from dictionary."""
        return cls(
            role=data["role"],
            content=data.get("content", ""),
            timestamp=datetime.fromisoformat(data["timestamp"]) if "timestamp" in data else datetime.now(timezone.utc),
            metadata=data.get("metadata", {}),
        )


@dataclass
class LastCommand:
    """The most recent successful tool call in a chat, kept for retries."""

    tool: str
    args: dict[str, Any]
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class AgentContext:
    """Short-term agent memory: recent tool calls and generated asset URLs."""

    tool_calls: list[dict[str, Any]] = field(default_factory=list)
    assets: dict[str, list[str]] = field(default_factory=dict)

    def record_call(self, tool: str, args: dict[str, Any], success: bool, limit: int) -> None:
        self.tool_calls.append({"tool": tool, "args": args, "success": success})
        del self.tool_calls[:-limit]

    def record_asset(self, kind: str, url: str, limit: int) -> None:
        urls = self.assets.setdefault(kind, [])
        urls.append(url)
        del urls[:-limit]


class ConversationHistory(Protocol):
    async def add(self, chat_id: str, entry: HistoryEntry) -> None: ...

    async def recent(self, chat_id: str, limit: int) -> list[HistoryEntry]: ...


class CommandStore(Protocol):
    async def save(self, chat_id: str, command: LastCommand) -> None: ...

    async def get(self, chat_id: str) -> LastCommand | None: ...


class AgentContextStore(Protocol):
    async def load(self, chat_id: str) -> AgentContext: ...

    async def save(self, chat_id: str, context: AgentContext) -> None: ...


class PreferenceStore(Protocol):
    async def get_all(self, chat_id: str) -> dict[str, str]: ...

    async def set(self, chat_id: str, key: str, value: str) -> None: ...


class InMemoryConversationHistory:
    """Sliding window of recent messages per chat."""

    def __init__(self, max_messages: int = 200) -> None:
        self.max_messages = max_messages
        self._entries: dict[str, deque[HistoryEntry]] = defaultdict(lambda: deque(maxlen=self.max_messages))

    async def add(self, chat_id: str, entry: HistoryEntry) -> None:
        self._entries[chat_id].append(entry)

    async def recent(self, chat_id: str, limit: int) -> list[HistoryEntry]:
        if limit <= 0:
            return []
        entries = self._entries.get(chat_id)
        return list(entries)[-limit:] if entries else []


class InMemoryCommandStore:
    def __init__(self) -> None:
        self._commands: dict[str, LastCommand] = {}

    async def save(self, chat_id: str, command: LastCommand) -> None:
        self._commands[chat_id] = command

    async def get(self, chat_id: str) -> LastCommand | None:
        return self._commands.get(chat_id)


class InMemoryAgentContextStore:
    def __init__(self) -> None:
        self._contexts: dict[str, AgentContext] = {}

    async def load(self, chat_id: str) -> AgentContext:
        stored = self._contexts.get(chat_id)
        if stored is None:
            return AgentContext()
        # Callers mutate the loaded context; hand out a copy
        return AgentContext(
            tool_calls=list(stored.tool_calls),
            assets={kind: list(urls) for kind, urls in stored.assets.items()},
        )

    async def save(self, chat_id: str, context: AgentContext) -> None:
        self._contexts[chat_id] = context
        logger.debug("Agent context saved", chat_id=chat_id, tool_calls=len(context.tool_calls))


class InMemoryPreferenceStore:
    """Long-term user preferences, one flat mapping per chat."""

    def __init__(self) -> None:
        self._preferences: dict[str, dict[str, str]] = defaultdict(dict)

    async def get_all(self, chat_id: str) -> dict[str, str]:
        return dict(self._preferences.get(chat_id, {}))

    async def set(self, chat_id: str, key: str, value: str) -> None:
        self._preferences[chat_id][key] = value
