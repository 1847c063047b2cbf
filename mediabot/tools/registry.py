"""Tool registry: the closed set of capabilities, resolved by name."""

import importlib
from datetime import datetime, timezone
from typing import Any

from ..core.errors import ErrorCode, MediabotError, UnknownToolError
from ..core.models import ToolResult
from ..utils.logging import get_logger
from .base import (
    CATEGORY_DATA,
    CATEGORY_OUTPUT,
    BaseToolset,
    ExecutionContext,
    HistoryPolicy,
    ToolDeclaration,
    ToolExecutor,
)

logger = get_logger(__name__)


class ToolRegistry:
    """
    Registry of tool declarations and their executors.

    Features:
    - Startup loading of the builtin toolsets
    - Read-only lookup by name
    - History policy resolution (including media-conditional policies)
    - Uniform execution that turns raised errors into failed results
    """

    # (module under tools.builtin, toolset class)
    BUILTIN_TOOLSETS: list[tuple[str, str]] = [
        ("creation", "CreationToolset"),
        ("editing", "EditingToolset"),
        ("audio", "AudioToolset"),
        ("search", "SearchToolset"),
        ("language", "LanguageToolset"),
        ("interaction", "InteractionToolset"),
        ("context", "ContextToolset"),
        ("analysis", "AnalysisToolset"),
        ("retry", "RetryToolset"),
    ]

    def __init__(self) -> None:
        self._tools: dict[str, tuple[ToolDeclaration, ToolExecutor]] = {}
        self._toolsets: dict[str, BaseToolset] = {}
        self._initialized = False

    def initialize(self, disabled: list[str] | None = None) -> None:
        """Load the builtin toolsets. Runs once per process."""
        if self._initialized:
            return

        for module_name, class_name in self.BUILTIN_TOOLSETS:
            if disabled and module_name in disabled:
                logger.debug("Toolset disabled", toolset=module_name)
                continue
            module = importlib.import_module(f".builtin.{module_name}", __package__)
            toolset = getattr(module, class_name)()
            self.register_toolset(toolset)

        self._initialized = True
        logger.info("Tool registry initialized", tool_count=len(self._tools))

    def register_toolset(self, toolset: BaseToolset) -> None:
        self._toolsets[toolset.name] = toolset
        for declaration, executor in toolset.tools():
            self.register(declaration, executor)

    def register(self, declaration: ToolDeclaration, executor: ToolExecutor) -> None:
        """Register one tool. Names are unique."""
        if declaration.name in self._tools:
            raise ValueError(f"Tool already registered: {declaration.name}")
        self._tools[declaration.name] = (declaration, executor)
        logger.debug("Registered tool", tool=declaration.name)

    def resolve(self, name: str) -> tuple[ToolDeclaration, ToolExecutor]:
        """Look up a tool. Raises ``UnknownToolError`` for unregistered names."""
        entry = self._tools.get(name)
        if entry is None:
            raise UnknownToolError(name)
        return entry

    def has(self, name: str) -> bool:
        return name in self._tools

    def get_declaration(self, name: str) -> ToolDeclaration | None:
        entry = self._tools.get(name)
        return entry[0] if entry else None

    def declarations(self) -> list[ToolDeclaration]:
        return [declaration for declaration, _ in self._tools.values()]

    def names_in_category(self, category: str) -> set[str]:
        return {d.name for d in self.declarations() if d.category == category}

    @property
    def data_tools(self) -> set[str]:
        return self.names_in_category(CATEGORY_DATA)

    @property
    def output_tools(self) -> set[str]:
        return self.names_in_category(CATEGORY_OUTPUT)

    def effective_history_policy(self, name: str, has_media: bool = False) -> HistoryPolicy:
        """
        Resolve whether history should be loaded for a tool.

        Unknown tools get the default (include history).
        """
        declaration = self.get_declaration(name)
        if declaration is None:
            return HistoryPolicy(ignore=False, reason="Unknown tool - default to loading history")

        policy = declaration.history_policy
        if policy.conditional:
            if has_media:
                return HistoryPolicy(ignore=True, reason=f"{policy.reason} (media attached)")
            return HistoryPolicy(ignore=False, reason=f"{policy.reason} (no media attached)")
        return policy

    async def execute(
        self,
        name: str,
        args: dict[str, Any],
        context: ExecutionContext,
    ) -> ToolResult:
        """
        Execute a tool by name.

        Unknown tools, missing required parameters and tool errors all
        come back as failed results; nothing is raised to the caller.
        """
        try:
            declaration, executor = self.resolve(name)
        except UnknownToolError as e:
            logger.warning("Unknown tool requested", tool=name)
            return ToolResult.fail(e.message, e.code)

        for parameter in declaration.required:
            value = args.get(parameter)
            if value is None or (isinstance(value, str) and not value.strip()):
                return ToolResult.fail(
                    f"Missing required parameter '{parameter}' for {name}",
                    ErrorCode.REQUIRED_PARAMETER_MISSING,
                )

        start_time = datetime.now(timezone.utc)
        try:
            result = await executor(args, context)
        except MediabotError as e:
            logger.info("Tool rejected call", tool=name, code=e.code.value, error=e.message)
            return ToolResult.fail(e.message, e.code)
        except Exception as e:
            logger.error("Tool execution failed", tool=name, error=str(e))
            return ToolResult.fail(str(e), ErrorCode.TOOL_FAILED)

        logger.info(
            "Tool executed",
            tool=name,
            success=result.success,
            provider=result.provider_used,
            execution_time_ms=(datetime.now(timezone.utc) - start_time).total_seconds() * 1000,
        )
        return result

    def get_stats(self) -> dict[str, Any]:
        """Get registry statistics."""
        return {
            "total_tools": len(self._tools),
            "toolsets": list(self._toolsets.keys()),
            "data_tools": sorted(self.data_tools),
            "output_tools": sorted(self.output_tools),
        }
