"""End-to-end tests for request handling with fake LLM, providers and transport."""

import orjson
import pytest

from mediabot.core.operation_lease import OperationLeaseStore
from mediabot.core.orchestrator import EXECUTION_FAILURE_MESSAGE, Orchestrator
from mediabot.core.response_assembly import GENERIC_FAILURE_NOTICE
from mediabot.core.stores import HistoryEntry, InMemoryConversationHistory
from mediabot.utils.config import AgentConfig, Settings

from fakes import FakeLLM, FakeProvider, FakeTransport, make_hub, reply, tool_call


def _settings(**agent):
    agent.setdefault("send_acks", False)
    return Settings(agent=AgentConfig(**agent))


def _orchestrator(registry, llm, transport, providers=(), **agent):
    return Orchestrator(
        llm=llm,
        registry=registry,
        transport=transport,
        providers=make_hub(*providers),
        leases=OperationLeaseStore(),
        settings=_settings(**agent),
    )


@pytest.mark.asyncio
async def test_single_step_request_sends_image_with_caption(registry, request_factory):
    transport = FakeTransport()
    gemini = FakeProvider("gemini", body={"url": "https://cdn/cat.png"})
    llm = FakeLLM([
        reply('{"isMultiStep": false}'),
        reply(tool_calls=[tool_call("create_image", prompt="a cat wearing a hat")]),
        reply("A cat in a tiny top hat"),
    ])
    orchestrator = _orchestrator(registry, llm, transport, [gemini])

    outcome = await orchestrator.handle_request(request_factory("draw a cat wearing a hat"))

    assert outcome.delivered
    assert not outcome.plan.is_multi_step
    assert transport.sent == [{
        "kind": "image",
        "chat_id": "chat-1",
        "quoted_id": "in-1",
        "url": "https://cdn/cat.png",
        "caption": "A cat in a tiny top hat",
    }]
    assert not orchestrator.leases.is_active("chat-1")

    entries = await orchestrator.history_store.recent("chat-1", 10)
    assert [e.role for e in entries] == ["user", "assistant"]
    assert entries[1].content == "A cat in a tiny top hat"
    assert entries[1].metadata["image_url"] == "https://cdn/cat.png"

    stored = await orchestrator.context_store.load("chat-1")
    assert stored.assets == {"image": ["https://cdn/cat.png"]}
    assert stored.tool_calls[0]["tool"] == "create_image"


@pytest.mark.asyncio
async def test_multi_step_image_then_poll(registry, request_factory):
    transport = FakeTransport()
    gemini = FakeProvider("gemini", body={"url": "https://cdn/cat.png", "caption": "A cat"})
    plan = {
        "isMultiStep": True,
        "steps": [
            {"stepNumber": 1, "tool": "create_image", "action": "Create an image of a cat", "parameters": {"prompt": "cat"}},
            {
                "stepNumber": 2,
                "tool": "create_poll",
                "action": "Send a poll about cats",
                "parameters": {"question": "Best cat?", "options": ["Tabby", "Siamese"]},
            },
        ],
    }
    llm = FakeLLM([reply(orjson.dumps(plan).decode())])
    orchestrator = _orchestrator(registry, llm, transport, [gemini])

    outcome = await orchestrator.handle_request(
        request_factory("create an image of a cat, then send a poll about cats")
    )

    assert outcome.plan.is_multi_step
    assert transport.kinds == ["poll", "image"]
    assert transport.sent[0]["quoted_id"] == "in-1"
    assert transport.sent[1]["quoted_id"] is None
    assert transport.sent[1]["caption"] == "A cat"
    assert len(llm.calls) == 1


@pytest.mark.asyncio
async def test_delivery_failure_is_reported_and_lease_released(registry, request_factory):
    transport = FakeTransport(fail_on={"text"})
    llm = FakeLLM([reply("Hello there!")])
    orchestrator = _orchestrator(registry, llm, transport, multi_step_enabled=False)

    outcome = await orchestrator.handle_request(request_factory("hi"))

    assert not outcome.delivered
    assert "text" in outcome.error
    assert not orchestrator.leases.is_active("chat-1")
    entries = await orchestrator.history_store.recent("chat-1", 10)
    assert entries[-1].role == "assistant"
    assert entries[-1].content == ""
    assert entries[-1].metadata["delivered"] is False


@pytest.mark.asyncio
async def test_execution_error_still_produces_reply(registry, request_factory):
    transport = FakeTransport()
    llm = FakeLLM([RuntimeError("planner down"), RuntimeError("agent down")])
    orchestrator = _orchestrator(registry, llm, transport)

    outcome = await orchestrator.handle_request(request_factory("draw me something nice please"))

    assert outcome.plan.fallback
    assert transport.texts == [EXECUTION_FAILURE_MESSAGE]
    assert outcome.emissions[0].is_failure_notice


@pytest.mark.asyncio
async def test_history_given_to_agent_once(registry, request_factory):
    transport = FakeTransport()
    history = InMemoryConversationHistory()
    await history.add("chat-1", HistoryEntry("user", "My name is Dana"))
    await history.add("chat-1", HistoryEntry("assistant", "Nice to meet you, Dana"))
    llm = FakeLLM([reply("Your name is Dana")])
    orchestrator = Orchestrator(
        llm=llm,
        registry=registry,
        transport=transport,
        providers=make_hub(),
        leases=OperationLeaseStore(),
        history_store=history,
        settings=_settings(multi_step_enabled=False),
    )

    await orchestrator.handle_request(request_factory("what is my name?"))

    messages = llm.calls[0]["messages"]
    assert [m.role for m in messages] == ["system", "user", "assistant", "user"]
    assert messages[-1].content == "what is my name?"
    assert transport.texts == ["Your name is Dana"]


@pytest.mark.asyncio
async def test_echo_skipped_while_reply_in_flight(registry):
    orchestrator = _orchestrator(registry, FakeLLM(), FakeTransport())
    lease = orchestrator.leases.acquire("chat-1")

    assert not await orchestrator.record_outgoing_echo("chat-1", "bot reply")
    orchestrator.leases.release(lease)
    assert await orchestrator.record_outgoing_echo("chat-1", "typed from the phone", {"message_id": "m-9"})

    entries = await orchestrator.history_store.recent("chat-1", 10)
    assert len(entries) == 1
    assert entries[0].role == "assistant"
    assert entries[0].metadata == {"source": "echo", "message_id": "m-9"}


@pytest.mark.asyncio
async def test_acks_sent_when_enabled(registry, request_factory):
    transport = FakeTransport()
    gemini = FakeProvider("gemini", body={"url": "https://cdn/cat.png", "caption": "A cat"})
    llm = FakeLLM([
        reply(tool_calls=[tool_call("create_image", prompt="cat")]),
        reply("✅ Image created successfully"),
    ])
    orchestrator = _orchestrator(registry, llm, transport, [gemini], send_acks=True, multi_step_enabled=False)

    await orchestrator.handle_request(request_factory("cat pic"))

    assert transport.kinds == ["text", "image"]
    assert transport.texts == ["🎨 Creating an image..."]
    assert transport.sent[1]["caption"] == "A cat"


@pytest.mark.asyncio
async def test_partial_delivery_keeps_remaining_items(registry, request_factory):
    transport = FakeTransport(fail_on={"poll"})
    gemini = FakeProvider("gemini", body={"url": "https://cdn/cat.png", "caption": "A cat"})
    llm = FakeLLM([
        reply(tool_calls=[
            tool_call("create_image", prompt="cat"),
            tool_call("create_poll", call_id="call-2", question="Best cat?", options=["Tabby", "Siamese"]),
        ]),
        reply(""),
    ])
    orchestrator = _orchestrator(registry, llm, transport, [gemini], multi_step_enabled=False)

    outcome = await orchestrator.handle_request(request_factory("a cat picture and a poll about cats"))

    assert not outcome.delivered
    assert transport.kinds == ["image"]
    assert transport.sent[0]["quoted_id"] == "in-1"
    entries = await orchestrator.history_store.recent("chat-1", 10)
    assert entries[-1].metadata["image_url"] == "https://cdn/cat.png"
    assert "poll" not in entries[-1].metadata
    assert entries[-1].metadata["delivered"] is False


@pytest.mark.asyncio
async def test_provider_failure_already_pushed_is_not_narrated_again(registry, request_factory):
    transport = FakeTransport()
    grok = FakeProvider("grok", error="content policy")
    llm = FakeLLM([
        reply(tool_calls=[tool_call("create_image", prompt="a cat", provider="grok")]),
        reply("Sorry, Grok failed to create the image: content policy. Try another provider?"),
    ])
    orchestrator = _orchestrator(registry, llm, transport, [grok], multi_step_enabled=False)

    outcome = await orchestrator.handle_request(request_factory("draw a cat with grok"))

    assert outcome.delivered
    assert transport.texts == ["❌ Grok failed: content policy", GENERIC_FAILURE_NOTICE]
    tool_message = llm.calls[1]["messages"][-1]
    assert tool_message.role == "tool"
    assert orjson.loads(tool_message.content)["errors_already_sent"] is True
