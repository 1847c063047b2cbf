"""Shared fixtures for Mediabot tests."""

from typing import Any

import pytest

from mediabot.core.models import NormalizedRequest
from mediabot.tools.base import ExecutionContext
from mediabot.tools.providers import ProviderHub
from mediabot.tools.registry import ToolRegistry
from mediabot.utils.config import AgentConfig, Settings

from fakes import FakeTransport


@pytest.fixture
def settings():
    """Default settings, no YAML involved."""
    return Settings()


@pytest.fixture
def agent_config():
    return AgentConfig(send_acks=False)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def registry():
    """Registry with every builtin toolset loaded."""
    tool_registry = ToolRegistry()
    tool_registry.initialize()
    return tool_registry


@pytest.fixture
def request_factory():
    def build(text: str = "hello", **overrides: Any) -> NormalizedRequest:
        overrides.setdefault("message_id", "in-1")
        return NormalizedRequest(chat_id="chat-1", user_text=text, **overrides)

    return build


@pytest.fixture
def context_factory(transport, registry, request_factory):
    """ExecutionContext wired to the fake transport and the full registry."""

    def build(text: str = "hello", hub: ProviderHub | None = None, llm: Any = None, **request_overrides: Any):
        return ExecutionContext(
            request=request_factory(text, **request_overrides),
            transport=transport,
            providers=hub,
            llm=llm,
            registry=registry,
            send_acks=False,
        )

    return build
