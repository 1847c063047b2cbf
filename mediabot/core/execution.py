"""
Tool execution for one request.

Two paths feed the same ``AggregateResult``:

- the single-step agent loop, where the LLM calls tools through function
  calling until it answers in plain text;
- the multi-step runner, which walks a compiled plan one step at a time and
  asks the LLM only for narrative steps or missing parameters.
"""

import re
from typing import TYPE_CHECKING, Any

import orjson

from ..tools.providers import format_provider_name
from ..utils.config import AgentConfig, get_settings
from ..utils.logging import get_logger
from .llm_router import LLMMessage, Tool
from .models import MEDIA_KINDS, MultiStepPlan, PlanStep, ToolResult
from .planner import planner_input
from .prompts import AGENT_SYSTEM_PROMPT, step_prompt
from .stores import NON_PERSISTED_TOOLS, LastCommand

if TYPE_CHECKING:
    from ..tools.base import ExecutionContext, ToolDeclaration
    from ..tools.registry import ToolRegistry
    from .llm_router import LLMRouter

logger = get_logger(__name__)

# Short notice sent before a tool runs; {provider} gets " with <Provider>" or ""
TOOL_ACK_MESSAGES: dict[str, str] = {
    "create_image": "🎨 Creating an image{provider}...",
    "edit_image": "🖌️ Editing the image{provider}...",
    "create_video": "🎬 Creating a video{provider}, this can take a few minutes...",
    "image_to_video": "🎬 Animating the image{provider}, this can take a few minutes...",
    "edit_video": "🎬 Editing the video{provider}...",
    "create_music": "🎵 Composing a song{provider}...",
    "create_sound_effect": "🔊 Creating a sound effect{provider}...",
    "text_to_speech": "🗣️ Recording audio{provider}...",
    "translate_and_speak": "🗣️ Translating and recording...",
    "transcribe_audio": "📝 Transcribing...",
    "search_web": "🔍 Searching...",
    "chat_summary": "📋 Summarizing the conversation...",
    "analyze_image": "👀 Looking at the image...",
    "analyze_video": "👀 Watching the video...",
    "analyze_image_from_history": "👀 Looking at the image...",
    "retry_last_command": "🔄 Retrying the last command...",
    "smart_execute_with_fallback": "🔄 Trying another way...",
    "retry_with_different_provider": "🔄 Trying a different provider...",
}

_VIDEO_HINT_RE = re.compile(r"\b(?:video|clip|animate|animation)\b|וידאו|סרטון", re.IGNORECASE)
_IMAGE_HINT_RE = re.compile(r"\b(?:image|picture|photo|drawing)\b|תמונה|ציור", re.IGNORECASE)

DUPLICATE_CALL_MESSAGE = "Duplicate call blocked: this tool already ran with these arguments for this request."
DUPLICATE_CREATION_MESSAGE = "Duplicate call blocked: this media was already created for this request."


def ack_message(tool_name: str, args: dict[str, Any]) -> str | None:
    """The acknowledgement text for a tool call, or None when it has none."""
    template = TOOL_ACK_MESSAGES.get(tool_name)
    if template is None:
        return None
    provider = args.get("provider")
    suffix = f" with {format_provider_name(provider)}" if provider else ""
    return template.format(provider=suffix)


def expected_media_type(action: str) -> str | None:
    """Media kind a plan step's action asks for, when it names exactly one."""
    wants_video = bool(_VIDEO_HINT_RE.search(action or ""))
    wants_image = bool(_IMAGE_HINT_RE.search(action or ""))
    if wants_video and not wants_image:
        return "video"
    if wants_image and not wants_video:
        return "image"
    return None


def call_signature(name: str, args: dict[str, Any]) -> str:
    return f"{name}:{orjson.dumps(args, option=orjson.OPT_SORT_KEYS, default=str).decode()}"


def produced_media(result: ToolResult) -> list[str]:
    return [kind for kind in MEDIA_KINDS if getattr(result, f"{kind}_url")]


class RequestExecutor:
    """Runs tools for one request and folds their results into the aggregate."""

    def __init__(
        self,
        registry: "ToolRegistry",
        llm: "LLMRouter",
        config: AgentConfig | None = None,
    ) -> None:
        self.registry = registry
        self.llm = llm
        self.config = config or get_settings().agent

    async def run_tool(
        self,
        name: str,
        args: dict[str, Any],
        context: "ExecutionContext",
    ) -> ToolResult:
        """Execute one tool call and absorb its result into the aggregate."""
        if context.send_acks and self.config.send_acks:
            await self._send_ack(name, args, context)

        result = await self.registry.execute(name, args, context)

        declaration = self.registry.get_declaration(name)
        chains = declaration.chains if declaration else frozenset()
        dropped = context.aggregate.absorb(name, result, chains)
        if dropped:
            logger.info("Media slot already taken, artifact dropped", tool=name, kinds=dropped)

        context.tool_calls.append((name, args, result.success))
        if result.success and name not in NON_PERSISTED_TOOLS and context.command_store is not None:
            command_args = dict(args)
            if result.provider_used and "provider" in command_args:
                command_args["provider"] = result.provider_used
            await context.command_store.save(context.chat_id, LastCommand(tool=name, args=command_args))
        return result

    async def _send_ack(self, name: str, args: dict[str, Any], context: "ExecutionContext") -> None:
        text = ack_message(name, args)
        if not text or context.transport is None:
            return
        try:
            await context.transport.send_text(context.chat_id, text)
        except Exception as e:
            logger.warning("Failed to send tool acknowledgement", tool=name, error=str(e))

    def _llm_tools(self, declarations: list["ToolDeclaration"]) -> list[Tool]:
        return [Tool(name=d.name, description=d.description, parameters=d.to_json_schema()) for d in declarations]

    def _system_message(self, context: "ExecutionContext") -> LLMMessage:
        return LLMMessage(role="system", content=AGENT_SYSTEM_PROMPT.format(language=context.request.language))

    @staticmethod
    def _history_messages(context: "ExecutionContext") -> list[LLMMessage]:
        messages = []
        for entry in context.history:
            content = entry.get("content") or ""
            if content.strip():
                role = "assistant" if entry.get("role") == "assistant" else "user"
                messages.append(LLMMessage(role=role, content=content))
        return messages

    @staticmethod
    def _user_message(context: "ExecutionContext") -> LLMMessage:
        text = planner_input(context.request)
        if context.request.quoted_context:
            text = f"[Quoted message: {context.request.quoted_context}]\n{text}"
        return LLMMessage(role="user", content=text)

    async def run_agent(self, context: "ExecutionContext") -> None:
        """
        Single-step agent loop.

        The LLM may call tools for up to ``max_iterations`` rounds. A call
        repeating an earlier tool and arguments, or a second successful
        call of the same media-creating tool, is blocked and reported back
        to the model instead of being executed.
        """
        tools = self._llm_tools(self.registry.declarations())
        messages = [self._system_message(context), *self._history_messages(context), self._user_message(context)]

        seen: set[str] = set()
        created: set[str] = set()

        response = await self.llm.generate(messages, tools=tools)
        iteration = 0
        while response.tool_calls and iteration < self.config.max_iterations:
            iteration += 1
            messages.append(LLMMessage(role="assistant", content=response.content or "", tool_calls=response.tool_calls))

            for tool_call in response.tool_calls:
                name = tool_call.get("name", "")
                args = dict(tool_call.get("arguments") or {})
                signature = call_signature(name, args)
                declaration = self.registry.get_declaration(name)

                if signature in seen:
                    logger.warning("Duplicate tool call blocked", tool=name)
                    content = DUPLICATE_CALL_MESSAGE
                elif declaration is not None and declaration.creates_media and name in created:
                    logger.warning("Repeated media creation blocked", tool=name)
                    content = DUPLICATE_CREATION_MESSAGE
                else:
                    seen.add(signature)
                    result = await self.run_tool(name, args, context)
                    if result.success and declaration is not None and declaration.creates_media:
                        created.add(name)
                    content = orjson.dumps(result.to_dict()).decode()

                messages.append(LLMMessage(
                    role="tool",
                    content=content,
                    name=name,
                    tool_call_id=tool_call.get("id"),
                ))

            response = await self.llm.generate(messages, tools=tools)

        if response.tool_calls:
            logger.warning("Agent stopped at iteration limit", iterations=iteration)
        context.aggregate.add_text(response.content)

    async def run_plan(self, plan: MultiStepPlan, context: "ExecutionContext") -> None:
        """Execute plan steps strictly in order."""
        previous: list[tuple[int, str, list[str]]] = []
        for step in plan.steps:
            logger.info("Executing plan step", step=step.step_number, tool=step.tool, action=step.action)
            text, media = await self._run_step(step, context, previous)
            previous.append((step.step_number, text, media))

    async def _run_step(
        self,
        step: PlanStep,
        context: "ExecutionContext",
        previous: list[tuple[int, str, list[str]]],
    ) -> tuple[str, list[str]]:
        aggregate = context.aggregate

        if step.tool is None:
            prompt = step_prompt(step.action, previous)
            try:
                response = await self.llm.generate(
                    [self._system_message(context), LLMMessage(role="user", content=prompt)]
                )
            except Exception as e:
                logger.warning("Narrative step failed", step=step.step_number, error=str(e))
                aggregate.error = aggregate.error or f"Step {step.step_number} failed: {e}"
                return "", []
            aggregate.any_success = True
            aggregate.add_text(response.content)
            return response.content or "", []

        if not self.registry.has(step.tool):
            # Reported as this step's failure; the remaining steps still run
            message = f"Step {step.step_number} failed: unknown tool {step.tool}"
            logger.warning("Plan references unknown tool", step=step.step_number, tool=step.tool)
            aggregate.absorb(step.tool, ToolResult.fail(message))
            aggregate.add_text(message)
            return message, []

        policy = self.registry.effective_history_policy(step.tool, has_media=context.request.has_media)
        context.history = [] if policy.ignore else await self.load_history(context)
        logger.debug("History policy", tool=step.tool, ignore=policy.ignore, reason=policy.reason)

        args = await self._complete_parameters(step, context, previous)
        context.expected_media_type = expected_media_type(step.action)
        try:
            result = await self.run_tool(step.tool, args, context)
        finally:
            context.expected_media_type = None

        if result.success:
            aggregate.add_text(result.data)
            return result.data or "", produced_media(result)

        if not result.errors_already_sent:
            aggregate.add_text(result.error)
        return result.error or "", []

    async def _complete_parameters(
        self,
        step: PlanStep,
        context: "ExecutionContext",
        previous: list[tuple[int, str, list[str]]],
    ) -> dict[str, Any]:
        """
        Step parameters, with missing required ones filled in by the LLM.

        The model sees the step prompt with earlier step outputs and only
        the step's own tool. Parameters the plan already set are kept.
        """
        args = dict(step.parameters)
        declaration = self.registry.get_declaration(step.tool)
        missing = [p for p in declaration.required if args.get(p) in (None, "")]
        if not missing:
            return args

        prompt = step_prompt(step.action, previous, tool=step.tool, parameters=args)
        try:
            response = await self.llm.generate(
                [self._system_message(context), LLMMessage(role="user", content=prompt)],
                tools=self._llm_tools([declaration]),
                temperature=0.2,
            )
        except Exception as e:
            logger.warning("Parameter completion failed", tool=step.tool, error=str(e))
            return args

        for tool_call in response.tool_calls or []:
            if tool_call.get("name") == step.tool:
                for key, value in (tool_call.get("arguments") or {}).items():
                    if args.get(key) in (None, ""):
                        args[key] = value
                break
        return args

    async def load_history(self, context: "ExecutionContext") -> list[dict[str, Any]]:
        if context.history_store is None or self.config.history_limit <= 0:
            return []
        entries = await context.history_store.recent(context.chat_id, self.config.history_limit)
        return [entry.to_dict() for entry in entries]
