"""Base tool contract for Mediabot."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from ..core.errors import ErrorCode, RequiredParameterMissing
from ..core.models import AggregateResult, NormalizedRequest, ToolResult

if TYPE_CHECKING:
    from ..channels.base import ChatTransport
    from ..core.llm_router import LLMRouter
    from ..core.stores import AgentContextStore, CommandStore, ConversationHistory, PreferenceStore
    from .providers import ProviderHub
    from .registry import ToolRegistry


# Pipeline classification of a tool
CATEGORY_DATA = "data"
CATEGORY_OUTPUT = "output"
CATEGORY_OTHER = "other"


@dataclass(frozen=True)
class ParameterSpec:
    """One named tool parameter."""

    type: str = "string"
    required: bool = False
    description: str = ""
    enum: tuple[str, ...] | None = None

    def to_schema(self) -> dict[str, Any]:
        schema: dict[str, Any] = {"type": self.type, "description": self.description}
        if self.enum:
            schema["enum"] = list(self.enum)
        if self.type == "array":
            schema["items"] = {"type": "string"}
        return schema


@dataclass(frozen=True)
class HistoryPolicy:
    """
    Whether conversation history is supplied when the tool runs.

    A ``conditional`` policy ignores history only when the request already
    carries media (the tool works on the attachment, not on past messages).
    """

    ignore: bool = False
    reason: str = ""
    conditional: bool = False


@dataclass(frozen=True)
class ToolDeclaration:
    """Immutable description of one capability."""

    name: str
    description: str
    parameters: dict[str, ParameterSpec] = field(default_factory=dict)
    history_policy: HistoryPolicy = field(default_factory=HistoryPolicy)
    category: str = CATEGORY_OTHER
    # Media kinds this tool consumes and replaces within one request
    chains: frozenset[str] = frozenset()
    creates_media: bool = False

    @property
    def required(self) -> list[str]:
        return [name for name, spec in self.parameters.items() if spec.required]

    def to_json_schema(self) -> dict[str, Any]:
        """Parameter schema in the JSON-schema shape LLM function calling expects."""
        return {
            "type": "object",
            "properties": {name: spec.to_schema() for name, spec in self.parameters.items()},
            "required": self.required,
        }


@dataclass
class ExecutionContext:
    """
    Per-request scratch state handed to every tool invocation.

    Owned by one in-flight request; never shared across requests.
    """

    request: NormalizedRequest
    aggregate: AggregateResult = field(default_factory=AggregateResult)
    transport: "ChatTransport | None" = None
    providers: "ProviderHub | None" = None
    llm: "LLMRouter | None" = None
    registry: "ToolRegistry | None" = None
    command_store: "CommandStore | None" = None
    context_store: "AgentContextStore | None" = None
    history_store: "ConversationHistory | None" = None
    preference_store: "PreferenceStore | None" = None
    history: list[dict[str, Any]] = field(default_factory=list)
    expected_media_type: str | None = None
    previous_assets: dict[str, list[str]] = field(default_factory=dict)
    # (tool, args, success) for every call made during this request
    tool_calls: list[tuple[str, dict[str, Any], bool]] = field(default_factory=list)
    send_acks: bool = True

    @property
    def chat_id(self) -> str:
        return self.request.chat_id

    @property
    def user_text(self) -> str:
        return self.request.user_text

    def last_asset(self, kind: str) -> str | None:
        """Most recent artifact URL of a kind: this request first, then stored context."""
        current = getattr(self.aggregate, f"{kind}_url", None)
        if current:
            return current
        stored = self.previous_assets.get(kind) or []
        return stored[-1] if stored else None


ToolExecutor = Callable[[dict[str, Any], ExecutionContext], Awaitable[ToolResult]]


class BaseToolset(ABC):
    """
    Abstract base class for a group of related tools.

    Each toolset declares its tools once at construction; the registry
    collects the (declaration, executor) pairs at startup.
    """

    name: str = "base_toolset"
    description: str = "Base toolset interface"
    enabled: bool = True

    def __init__(self, config: dict[str, Any] | None = None) -> None:
        self.config = config or {}
        self._tools: dict[str, tuple[ToolDeclaration, ToolExecutor]] = {}
        self._register_tools()

    @abstractmethod
    def _register_tools(self) -> None:
        """Declare every tool provided by this toolset."""
        pass

    def declare(
        self,
        name: str,
        description: str,
        handler: ToolExecutor,
        parameters: dict[str, ParameterSpec] | None = None,
        history: HistoryPolicy | None = None,
        category: str = CATEGORY_OTHER,
        chains: tuple[str, ...] = (),
        creates_media: bool = False,
    ) -> None:
        declaration = ToolDeclaration(
            name=name,
            description=description,
            parameters=parameters or {},
            history_policy=history or HistoryPolicy(),
            category=category,
            chains=frozenset(chains),
            creates_media=creates_media,
        )
        self._tools[name] = (declaration, handler)

    def tools(self) -> list[tuple[ToolDeclaration, ToolExecutor]]:
        return list(self._tools.values())

    @staticmethod
    def require(args: dict[str, Any], tool_name: str, parameter: str) -> Any:
        """Fetch a mandatory argument or raise ``RequiredParameterMissing``."""
        value = args.get(parameter)
        if value is None or (isinstance(value, str) and not value.strip()):
            raise RequiredParameterMissing(tool_name, parameter)
        return value

    @staticmethod
    def denied(tool_name: str) -> ToolResult:
        return ToolResult.fail(
            f"You are not allowed to use {tool_name.replace('_', ' ')} in this chat.",
            ErrorCode.PERMISSION_DENIED,
        )
