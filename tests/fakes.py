"""Fake transport, LLM and providers shared by the tests."""

from typing import Any

from mediabot.channels.base import ChatTransport
from mediabot.core.llm_router import LLMProvider, LLMResponse
from mediabot.tools.providers import ProviderHub
from mediabot.utils.config import ProvidersConfig


class FakeTransport(ChatTransport):
    """Records every outbound call; kinds in ``fail_on`` raise instead."""

    def __init__(self, fail_on: set[str] | None = None) -> None:
        self.sent: list[dict[str, Any]] = []
        self.fail_on = fail_on or set()

    def _record(self, kind: str, chat_id: str, quoted_id: str | None, **payload: Any) -> str:
        if kind in self.fail_on:
            raise ConnectionError(f"{kind} send failed")
        self.sent.append({"kind": kind, "chat_id": chat_id, "quoted_id": quoted_id, **payload})
        return f"msg-{len(self.sent)}"

    @property
    def kinds(self) -> list[str]:
        return [item["kind"] for item in self.sent]

    @property
    def texts(self) -> list[str]:
        return [item["text"] for item in self.sent if item["kind"] == "text"]

    async def send_text(self, chat_id, text, quoted_id=None):
        return self._record("text", chat_id, quoted_id, text=text)

    async def send_image(self, chat_id, url, caption=None, quoted_id=None):
        return self._record("image", chat_id, quoted_id, url=url, caption=caption)

    async def send_video(self, chat_id, url, caption=None, quoted_id=None):
        return self._record("video", chat_id, quoted_id, url=url, caption=caption)

    async def send_audio(self, chat_id, url, quoted_id=None):
        return self._record("audio", chat_id, quoted_id, url=url)

    async def send_poll(self, chat_id, question, options, quoted_id=None):
        return self._record("poll", chat_id, quoted_id, question=question, options=list(options))

    async def send_location(self, chat_id, latitude, longitude, description=None, quoted_id=None):
        return self._record(
            "location", chat_id, quoted_id, latitude=latitude, longitude=longitude, description=description
        )


class FakeLLM:
    """Returns scripted responses in order, then empty answers."""

    def __init__(self, responses: list[Any] | None = None) -> None:
        self.responses = list(responses or [])
        self.calls: list[dict[str, Any]] = []

    async def generate(self, messages, tools=None, temperature=0.7, max_tokens=None, **kwargs):
        self.calls.append({"messages": list(messages), "tools": tools, "temperature": temperature})
        if not self.responses:
            return reply("")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class FakeProvider:
    """Generation backend returning a fixed body or raising a fixed error."""

    def __init__(self, name: str, body: dict[str, Any] | None = None, error: str | None = None) -> None:
        self.name = name
        self.body = body or {}
        self.error = error
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def generate(self, operation: str, payload: dict[str, Any]) -> dict[str, Any]:
        self.calls.append((operation, payload))
        if self.error:
            raise RuntimeError(self.error)
        return self.body


def reply(content: str = "", tool_calls: list[dict[str, Any]] | None = None) -> LLMResponse:
    """Build a scripted LLM response."""
    return LLMResponse(content=content, model="fake", provider=LLMProvider.GEMINI, tool_calls=tool_calls)


def tool_call(name: str, call_id: str = "call-1", **arguments: Any) -> dict[str, Any]:
    return {"id": call_id, "name": name, "arguments": arguments}


def make_hub(*providers: FakeProvider, **defaults: list[str]) -> ProviderHub:
    """ProviderHub over fake backends; keyword args override candidate lists."""
    return ProviderHub(ProvidersConfig(**defaults), {p.name: p for p in providers})
