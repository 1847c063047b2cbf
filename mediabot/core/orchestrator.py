"""Main orchestrator: one inbound request in, one assembled reply out."""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ..tools.base import ExecutionContext
from ..utils.config import Settings, get_settings
from ..utils.logging import get_logger
from ..utils.request_context import bind_request
from .errors import DownstreamTransportFailure
from .execution import RequestExecutor
from .models import AggregateResult, MultiStepPlan, NormalizedRequest
from .operation_lease import OperationLeaseStore
from .pipeline import DATA_TOOLS, OUTPUT_TOOLS
from .planner import PlanCompiler, planner_input
from .response_assembly import Emission, EmissionKind, ResponseAssembler
from .result_sender import ResultSender
from .stores import (
    AgentContext,
    AgentContextStore,
    CommandStore,
    ConversationHistory,
    HistoryEntry,
    InMemoryAgentContextStore,
    InMemoryCommandStore,
    InMemoryConversationHistory,
    InMemoryPreferenceStore,
    PreferenceStore,
)

if TYPE_CHECKING:
    from ..channels.base import ChatTransport
    from ..tools.providers import ProviderHub
    from ..tools.registry import ToolRegistry
    from .llm_router import LLMRouter

logger = get_logger(__name__)

EXECUTION_FAILURE_MESSAGE = "Something went wrong while handling your request."


@dataclass
class RequestOutcome:
    """What happened to one request."""

    chat_id: str
    plan: MultiStepPlan
    emissions: list[Emission] = field(default_factory=list)
    delivered: bool = False
    error: str | None = None


class Orchestrator:
    """
    Central coordinator for request handling.

    Responsibilities:
    - Plan multi-capability requests, otherwise run the agent loop
    - Assemble and send the reply
    - Maintain history, last-command and agent-context stores
    - Hold the per-chat operation lease while a reply is produced
    """

    def __init__(
        self,
        llm: "LLMRouter",
        registry: "ToolRegistry",
        transport: "ChatTransport",
        providers: "ProviderHub",
        leases: OperationLeaseStore,
        history_store: ConversationHistory | None = None,
        command_store: CommandStore | None = None,
        context_store: AgentContextStore | None = None,
        preference_store: PreferenceStore | None = None,
        assembler: ResponseAssembler | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.llm = llm
        self.registry = registry
        self.transport = transport
        self.providers = providers
        self.leases = leases
        self.history_store = history_store or InMemoryConversationHistory()
        self.command_store = command_store or InMemoryCommandStore()
        self.context_store = context_store or InMemoryAgentContextStore()
        self.preference_store = preference_store or InMemoryPreferenceStore()
        self.planner = PlanCompiler(llm, registry, self.settings.planner)
        self.executor = RequestExecutor(registry, llm, self.settings.agent)
        self.assembler = assembler or ResponseAssembler(
            data_tools=registry.data_tools or DATA_TOOLS,
            output_tools=registry.output_tools or OUTPUT_TOOLS,
        )
        self.sender = ResultSender(transport)

    async def handle_request(self, request: NormalizedRequest) -> RequestOutcome:
        """
        Handle one request end to end.

        Never raises for tool, planner or delivery failures: they are logged
        and reflected in the returned outcome.
        """
        with bind_request(request.chat_id, message_id=request.message_id or ""):
            lease = self.leases.acquire(request.chat_id, self.settings.agent.lease_ttl_seconds)
            try:
                return await self._handle(request)
            finally:
                if not self.leases.release(lease):
                    logger.debug("Lease was replaced or expired before release")

    async def _handle(self, request: NormalizedRequest) -> RequestOutcome:
        logger.info("Handling request", text_preview=request.user_text[:60], has_media=request.has_media)

        agent_context = await self._load_agent_context(request.chat_id)
        context = self._build_context(request, agent_context)
        history = await self.executor.load_history(context)
        await self.history_store.add(request.chat_id, self._user_entry(request))

        plan = await self._plan(request)
        try:
            if plan.is_multi_step:
                await self.executor.run_plan(plan, context)
            else:
                context.history = history
                await self.executor.run_agent(context)
        except Exception as e:
            logger.error("Request execution failed", error=str(e), exc_info=True)
            context.aggregate.error = context.aggregate.error or EXECUTION_FAILURE_MESSAGE

        aggregate = context.aggregate
        emissions = self.assembler.assemble(aggregate, request.user_text)
        outcome = RequestOutcome(chat_id=request.chat_id, plan=plan, emissions=emissions)

        delivered = emissions
        try:
            await self.sender.send(request.chat_id, emissions, quoted_id=request.message_id)
            outcome.delivered = True
        except DownstreamTransportFailure as e:
            logger.error("Reply delivery failed", kinds=e.kinds, error=e.message)
            outcome.error = e.message
            delivered = e.delivered

        # History keeps only what reached the chat
        entry = self._assistant_entry(aggregate, delivered)
        entry.metadata["delivered"] = outcome.delivered
        await self.history_store.add(request.chat_id, entry)
        await self._save_agent_context(request.chat_id, agent_context, context)

        logger.info(
            "Request completed",
            tools=aggregate.tools_used,
            emissions=[e.kind.value for e in emissions],
            delivered=outcome.delivered,
        )
        return outcome

    async def _plan(self, request: NormalizedRequest) -> MultiStepPlan:
        if not self.settings.agent.multi_step_enabled:
            return MultiStepPlan.single()
        plan = await self.planner.plan_multi_step_execution(planner_input(request))
        if plan.fallback:
            logger.info("Planner fell back to single-step")
        return plan

    def _build_context(self, request: NormalizedRequest, agent_context: AgentContext) -> ExecutionContext:
        return ExecutionContext(
            request=request,
            aggregate=AggregateResult(),
            transport=self.transport,
            providers=self.providers,
            llm=self.llm,
            registry=self.registry,
            command_store=self.command_store,
            context_store=self.context_store,
            history_store=self.history_store,
            preference_store=self.preference_store,
            previous_assets=agent_context.assets,
            send_acks=self.settings.agent.send_acks,
        )

    async def _load_agent_context(self, chat_id: str) -> AgentContext:
        if not self.settings.agent.context_memory_enabled:
            return AgentContext()
        return await self.context_store.load(chat_id)

    async def _save_agent_context(
        self,
        chat_id: str,
        agent_context: AgentContext,
        context: ExecutionContext,
    ) -> None:
        if not self.settings.agent.context_memory_enabled or not context.tool_calls:
            return
        limit = self.settings.agent.context_max_tool_calls
        for tool, args, success in context.tool_calls:
            agent_context.record_call(tool, args, success, limit)
        for kind in ("image", "video", "audio"):
            url = getattr(context.aggregate, f"{kind}_url")
            if url:
                agent_context.record_asset(kind, url, limit)
        await self.context_store.save(chat_id, agent_context)

    @staticmethod
    def _user_entry(request: NormalizedRequest) -> HistoryEntry:
        metadata: dict[str, Any] = {"sender_id": request.sender_id, "sender_name": request.sender_name}
        for kind in ("image", "video", "audio"):
            url = getattr(request, f"{kind}_url")
            if url:
                metadata[f"{kind}_url"] = url
        if request.message_id:
            metadata["message_id"] = request.message_id
        return HistoryEntry(role="user", content=request.user_text, timestamp=request.received_at, metadata=metadata)

    @staticmethod
    def _assistant_entry(aggregate: AggregateResult, emissions: list[Emission]) -> HistoryEntry:
        """One entry covering everything the reply contained."""
        texts: list[str] = []
        metadata: dict[str, Any] = {"tools": list(aggregate.tools_used)}
        for emission in emissions:
            if emission.kind is EmissionKind.TEXT:
                texts.append(emission.text or "")
            elif emission.kind is EmissionKind.POLL:
                metadata["poll"] = {"question": emission.poll.question, "options": list(emission.poll.options)}
            elif emission.kind is EmissionKind.LOCATION:
                metadata["location"] = {"latitude": emission.latitude, "longitude": emission.longitude}
                if emission.text:
                    texts.append(emission.text)
            else:
                metadata[f"{emission.kind.value}_url"] = emission.url
                if emission.text:
                    texts.append(emission.text)
        return HistoryEntry(role="assistant", content="\n\n".join(t for t in texts if t), metadata=metadata)

    async def record_outgoing_echo(self, chat_id: str, text: str, metadata: dict[str, Any] | None = None) -> bool:
        """
        Store a message sent from the bot's own account.

        While a request for the chat holds the lease, the echo is the bot's
        own reply and is skipped: the request writes its history entry
        itself. Returns whether the message was stored.
        """
        if self.leases.is_active(chat_id):
            logger.debug("Skipping echo of in-flight reply", chat_id=chat_id)
            return False
        await self.history_store.add(
            chat_id,
            HistoryEntry(role="assistant", content=text, metadata={"source": "echo", **(metadata or {})}),
        )
        return True
