"""LLM router with ordered fallback between Gemini and Claude."""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import orjson

from ..utils.config import LLMConfig, get_settings
from ..utils.logging import get_logger

logger = get_logger(__name__)


class LLMProvider(str, Enum):
    """Supported LLM providers."""

    GEMINI = "gemini"
    ANTHROPIC = "anthropic"


@dataclass
class LLMMessage:
    """A message in a conversation."""

    role: str  # "user", "assistant", "system", "tool"
    content: str
    name: str | None = None
    tool_calls: list[dict[str, Any]] | None = None
    tool_call_id: str | None = None


@dataclass
class LLMResponse:
    """Response from an LLM."""

    content: str
    model: str
    provider: LLMProvider
    usage: dict[str, int] = field(default_factory=dict)
    tool_calls: list[dict[str, Any]] | None = None
    finish_reason: str | None = None
    raw_response: Any = None


@dataclass
class Tool:
    """Tool definition for function calling."""

    name: str
    description: str
    parameters: dict[str, Any]


def _tool_result_text(message: LLMMessage) -> str:
    return f"[Tool result: {message.name or 'tool'}]\n{message.content}"


def _tool_call_text(message: LLMMessage) -> str:
    calls = ", ".join(
        f"{tc.get('name', '')}({orjson.dumps(tc.get('arguments', {})).decode()})"
        for tc in message.tool_calls or []
    )
    text = message.content or ""
    return f"{text}\n[Called tools: {calls}]".strip() if calls else text


class BaseLLMClient(ABC):
    """Abstract base class for LLM clients."""

    provider: LLMProvider

    @abstractmethod
    async def generate(
        self,
        messages: list[LLMMessage],
        tools: list[Tool] | None = None,
        temperature: float = 0.7,
        max_tokens: int | None = None,
        **kwargs: Any,
    ) -> LLMResponse:
        """Generate a response from the LLM."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if the LLM service is available."""
        pass


class AnthropicClient(BaseLLMClient):
    """Client for Anthropic Claude models."""

    provider = LLMProvider.ANTHROPIC

    def __init__(
        self,
        api_key: str,
        model: str = "claude-sonnet-4-20250514",
        max_tokens: int = 4096,
        timeout: int = 120,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.max_tokens = max_tokens
        self.timeout = timeout
        self._client: Any = None

    def _get_client(self) -> Any:
        """Get or create the Anthropic client."""
        if self._client is None:
            import anthropic

            self._client = anthropic.AsyncAnthropic(
                api_key=self.api_key,
                timeout=self.timeout,
            )
        return self._client

    def _convert_messages(self, messages: list[LLMMessage]) -> tuple[str | None, list[dict[str, Any]]]:
        """Split out the system prompt and flatten tool traffic into text turns."""
        system_message = None
        converted: list[dict[str, Any]] = []
        for msg in messages:
            if msg.role == "system":
                system_message = msg.content
                continue
            if msg.role == "tool":
                role, content = "user", _tool_result_text(msg)
            elif msg.role == "assistant":
                role, content = "assistant", _tool_call_text(msg)
            else:
                role, content = "user", msg.content
            # The API requires alternating roles
            if converted and converted[-1]["role"] == role:
                converted[-1]["content"] += "\n\n" + content
            else:
                converted.append({"role": role, "content": content})
        return system_message, converted

    async def generate(
        self,
        messages: list[LLMMessage],
        tools: list[Tool] | None = None,
        temperature: float = 0.7,
        max_tokens: int | None = None,
        **kwargs: Any,
    ) -> LLMResponse:
        """Generate a response using Claude."""
        client = self._get_client()
        system_message, conversation_messages = self._convert_messages(messages)

        create_kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": conversation_messages,
            "max_tokens": max_tokens or self.max_tokens,
            "temperature": temperature,
        }
        if system_message:
            create_kwargs["system"] = system_message
        if tools:
            create_kwargs["tools"] = [
                {"name": t.name, "description": t.description, "input_schema": t.parameters}
                for t in tools
            ]

        try:
            response = await client.messages.create(**create_kwargs)
        except Exception as e:
            logger.error("Anthropic generation failed", error=str(e))
            raise

        content = ""
        tool_calls = []
        for block in response.content:
            if block.type == "text":
                content += block.text
            elif block.type == "tool_use":
                tool_calls.append({"id": block.id, "name": block.name, "arguments": block.input})

        return LLMResponse(
            content=content,
            model=self.model,
            provider=LLMProvider.ANTHROPIC,
            usage={
                "prompt_tokens": response.usage.input_tokens,
                "completion_tokens": response.usage.output_tokens,
            },
            tool_calls=tool_calls or None,
            finish_reason=response.stop_reason,
            raw_response=response,
        )

    async def health_check(self) -> bool:
        """Check if Anthropic API is accessible."""
        try:
            client = self._get_client()
            await client.messages.create(
                model=self.model,
                messages=[{"role": "user", "content": "Hi"}],
                max_tokens=5,
            )
            return True
        except Exception:
            return False


class GeminiClient(BaseLLMClient):
    """Client for Google Gemini via GOOGLE_API_KEY."""

    provider = LLMProvider.GEMINI

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.0-flash",
        max_tokens: int = 4096,
        timeout: int = 120,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.max_tokens = max_tokens
        self.timeout = timeout
        self._model_instance: Any = None

    def _get_model(self) -> Any:
        """Get or create the Gemini model instance."""
        if self._model_instance is None:
            import google.generativeai as genai

            genai.configure(api_key=self.api_key)
            self._model_instance = genai.GenerativeModel(
                self.model,
                generation_config={"max_output_tokens": self.max_tokens, "temperature": 0.7},
            )
        return self._model_instance

    def _messages_to_content(self, messages: list[LLMMessage]) -> list[dict[str, Any]]:
        """Convert LLMMessages to Gemini chat format (roles + parts)."""
        contents = []
        for m in messages:
            if m.role == "system":
                contents.append({"role": "user", "parts": [f"System: {m.content}"]})
                contents.append({"role": "model", "parts": ["Understood."]})
            elif m.role == "tool":
                contents.append({"role": "user", "parts": [_tool_result_text(m)]})
            elif m.role == "assistant":
                contents.append({"role": "model", "parts": [_tool_call_text(m)]})
            else:
                contents.append({"role": "user", "parts": [m.content or ""]})
        return contents

    def _tools_to_gemini(self, tools: list[Tool]) -> list[Any]:
        """Convert Tool list to Gemini function declarations."""
        import google.generativeai as genai

        decls = [{"name": t.name, "description": t.description, "parameters": t.parameters} for t in tools]
        return [genai.protos.Tool(function_declarations=decls)]

    async def generate(
        self,
        messages: list[LLMMessage],
        tools: list[Tool] | None = None,
        temperature: float = 0.7,
        max_tokens: int | None = None,
        **kwargs: Any,
    ) -> LLMResponse:
        """Generate a response using Gemini."""
        model = self._get_model()
        kwargs_sync: dict[str, Any] = {
            "contents": self._messages_to_content(messages),
            "generation_config": {
                "max_output_tokens": max_tokens or self.max_tokens,
                "temperature": temperature,
            },
        }
        if tools:
            kwargs_sync["tools"] = self._tools_to_gemini(tools)

        def _run() -> Any:
            return model.generate_content(**kwargs_sync)

        response = await asyncio.to_thread(_run)
        text = ""
        tool_calls = []
        if response.candidates:
            for part in response.candidates[0].content.parts:
                if getattr(part, "text", None):
                    text += part.text
                fc = getattr(part, "function_call", None)
                if fc and getattr(fc, "name", ""):
                    tool_calls.append({
                        "id": f"call_{len(tool_calls)}",
                        "name": fc.name,
                        "arguments": dict(fc.args or {}),
                    })
        usage = {}
        if getattr(response, "usage_metadata", None):
            usage = {
                "prompt_tokens": getattr(response.usage_metadata, "prompt_token_count", 0),
                "completion_tokens": getattr(response.usage_metadata, "candidates_token_count", 0),
            }
        return LLMResponse(
            content=text,
            model=self.model,
            provider=LLMProvider.GEMINI,
            usage=usage,
            tool_calls=tool_calls or None,
            finish_reason=str(getattr(response.candidates[0], "finish_reason", "")) if response.candidates else None,
            raw_response=response,
        )

    async def health_check(self) -> bool:
        """Check if Gemini API is accessible."""
        try:
            model = self._get_model()
            result = await asyncio.to_thread(
                model.generate_content,
                "Hi",
                generation_config={"max_output_tokens": 5},
            )
            return result is not None
        except Exception:
            return False


class LLMRouter:
    """
    Routes generation requests across the configured LLM providers.

    Providers are tried in ``llm.provider_order``; each gets a few retries
    on rate-limit and gateway errors before the next one is used.
    """

    def __init__(
        self,
        config: LLMConfig | None = None,
        clients: dict[str, BaseLLMClient] | None = None,
    ) -> None:
        settings = get_settings() if config is None or clients is None else None
        self.config = config or settings.llm
        if clients is not None:
            self._clients = dict(clients)
        else:
            self._clients = self._build_clients(settings.google_api_key, settings.anthropic_api_key)
        self._available: dict[str, bool] = {}

    def _build_clients(self, google_api_key: str, anthropic_api_key: str) -> dict[str, BaseLLMClient]:
        clients: dict[str, BaseLLMClient] = {}
        if self.config.gemini.enabled and google_api_key:
            clients[LLMProvider.GEMINI.value] = GeminiClient(
                api_key=google_api_key,
                model=self.config.gemini.model,
                max_tokens=self.config.gemini.max_tokens,
                timeout=self.config.gemini.timeout,
            )
        if self.config.anthropic.enabled and anthropic_api_key:
            clients[LLMProvider.ANTHROPIC.value] = AnthropicClient(
                api_key=anthropic_api_key,
                model=self.config.anthropic.model,
                max_tokens=self.config.anthropic.max_tokens,
                timeout=self.config.anthropic.timeout,
            )
        return clients

    async def initialize(self) -> None:
        """Check provider availability."""
        for name, client in self._clients.items():
            self._available[name] = await client.health_check()
            logger.info("LLM provider", provider=name, available=self._available[name])
        if not self._clients:
            logger.warning("No LLM provider configured")

    @property
    def providers(self) -> list[str]:
        ordered = [p for p in self.config.provider_order if p in self._clients]
        # Known-down providers go last rather than being skipped
        return [p for p in ordered if self._available.get(p, True)] + [
            p for p in ordered if not self._available.get(p, True)
        ]

    async def _generate_with_retry(
        self,
        client: BaseLLMClient,
        messages: list[LLMMessage],
        tools: list[Tool] | None = None,
        temperature: float = 0.7,
        max_tokens: int | None = None,
        **kwargs: Any,
    ) -> LLMResponse:
        """Call client.generate with retries on 429/502/503."""
        max_attempts = max(1, self.config.max_retries + 1)
        last_error: Exception | None = None
        for attempt in range(max_attempts):
            try:
                return await client.generate(
                    messages=messages,
                    tools=tools,
                    temperature=temperature,
                    max_tokens=max_tokens,
                    **kwargs,
                )
            except Exception as e:
                last_error = e
                msg = str(e).lower()
                if attempt < max_attempts - 1 and (
                    "429" in msg or "502" in msg or "503" in msg or "rate limit" in msg
                ):
                    delay = 2**attempt
                    logger.warning("LLM request failed, retrying", attempt=attempt + 1, delay_s=delay, error=msg[:100])
                    await asyncio.sleep(delay)
                else:
                    raise
        raise last_error or RuntimeError("generate failed")

    async def generate(
        self,
        messages: list[LLMMessage],
        tools: list[Tool] | None = None,
        temperature: float = 0.7,
        max_tokens: int | None = None,
        **kwargs: Any,
    ) -> LLMResponse:
        """
        Generate a response with the first provider that answers.

        Raises the last provider error when every provider failed.
        """
        providers = self.providers
        if not providers:
            raise RuntimeError("No LLM provider available")

        last_error: Exception | None = None
        for name in providers:
            try:
                response = await self._generate_with_retry(
                    self._clients[name],
                    messages=messages,
                    tools=tools,
                    temperature=temperature,
                    max_tokens=max_tokens,
                    **kwargs,
                )
                self._available[name] = True
                return response
            except Exception as e:
                last_error = e
                self._available[name] = False
                logger.warning("LLM provider failed, trying next", provider=name, error=str(e)[:200])
        raise last_error or RuntimeError("generate failed")
