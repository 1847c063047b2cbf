"""Generation provider endpoints, naming and media-kind checks."""

from typing import Any, Protocol

import httpx

from ..core.errors import ProviderMismatch
from ..utils.config import ProviderEndpointConfig, ProvidersConfig
from ..utils.logging import get_logger

logger = get_logger(__name__)

PROVIDER_DISPLAY_NAMES: dict[str, str] = {
    "gemini": "Gemini",
    "openai": "OpenAI",
    "grok": "Grok",
    "veo3": "Veo 3",
    "sora": "Sora 2",
    "sora-pro": "Sora 2 Pro",
    "kling": "Kling",
    "runway": "Runway",
    "suno": "Suno",
    "elevenlabs": "ElevenLabs",
}

PROVIDER_ALIASES: dict[str, str] = {
    "veo": "veo3",
    "veo 3": "veo3",
    "sora-2": "sora",
    "sora 2": "sora",
    "sora2": "sora",
    "sora-2-pro": "sora-pro",
    "sora 2 pro": "sora-pro",
    "chatgpt": "openai",
    "dall-e": "openai",
    "xai": "grok",
}

# Media kinds each provider can produce
PROVIDER_KINDS: dict[str, frozenset[str]] = {
    "gemini": frozenset({"image", "search", "analysis", "speech"}),
    "openai": frozenset({"image", "speech"}),
    "grok": frozenset({"image"}),
    "veo3": frozenset({"video"}),
    "sora": frozenset({"video"}),
    "sora-pro": frozenset({"video"}),
    "kling": frozenset({"video"}),
    "runway": frozenset({"video"}),
    "suno": frozenset({"music"}),
    "elevenlabs": frozenset({"speech", "sound"}),
}


def normalize_provider(name: str | None) -> str | None:
    """Canonical provider id, or None when no provider was named."""
    if not name or not str(name).strip():
        return None
    key = str(name).strip().lower()
    return PROVIDER_ALIASES.get(key, key)


def format_provider_name(name: str | None) -> str:
    """Human-readable provider name for user-facing messages."""
    if not name:
        return "Unknown"
    canonical = normalize_provider(name) or name
    return PROVIDER_DISPLAY_NAMES.get(canonical, name)


def check_provider_kind(provider: str, kind: str) -> None:
    """Raise ``ProviderMismatch`` when a provider cannot produce ``kind``."""
    kinds = PROVIDER_KINDS.get(provider)
    if kinds is None or kind in kinds:
        return
    produced = ", ".join(sorted(kinds))
    raise ProviderMismatch(
        provider,
        kind,
        f"{format_provider_name(provider)} is a {produced} provider and cannot create {kind}. "
        f"Please pick a {kind} provider.",
    )


class GenerationProvider(Protocol):
    """A backend able to run generation operations."""

    name: str

    async def generate(self, operation: str, payload: dict[str, Any]) -> dict[str, Any]:
        ...


class HttpGenerationProvider:
    """
    Generation provider reached through a JSON-over-HTTP gateway.

    ``generate("image", {...})`` posts to ``{base_url}/image`` and returns
    the decoded JSON body. An ``error`` key in the body is raised as a
    ``RuntimeError`` so the fallback coordinator records it.
    """

    def __init__(self, name: str, config: ProviderEndpointConfig) -> None:
        self.name = name
        self.config = config

    async def generate(self, operation: str, payload: dict[str, Any]) -> dict[str, Any]:
        if not self.config.base_url:
            raise RuntimeError(f"{format_provider_name(self.name)} is not configured")

        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"

        url = f"{self.config.base_url.rstrip('/')}/{operation}"
        async with httpx.AsyncClient(timeout=self.config.timeout) as client:
            response = await client.post(url, json=payload, headers=headers)
            response.raise_for_status()
            body = response.json()

        if not isinstance(body, dict):
            raise RuntimeError(f"Unexpected response from {format_provider_name(self.name)}")
        if body.get("error"):
            raise RuntimeError(str(body["error"]))
        return body


class ProviderHub:
    """Looks up provider backends and default candidate lists."""

    def __init__(
        self,
        config: ProvidersConfig,
        providers: dict[str, GenerationProvider] | None = None,
    ) -> None:
        self.config = config
        self._providers: dict[str, GenerationProvider] = dict(providers or {})
        for name, endpoint in config.endpoints.items():
            if endpoint.enabled and name not in self._providers:
                self._providers[name] = HttpGenerationProvider(name, endpoint)

    def get(self, name: str) -> GenerationProvider:
        provider = self._providers.get(name)
        if provider is None:
            raise RuntimeError(f"{format_provider_name(name)} is not available")
        return provider

    def defaults(self, kind: str) -> list[str]:
        return list(getattr(self.config, kind, []) or [])

    def candidates(self, kind: str, requested: str | None = None) -> list[str]:
        """
        Ordered candidates for one call.

        An explicitly requested provider yields a single-element list after
        its media kind is checked.
        """
        provider = normalize_provider(requested)
        if provider:
            check_provider_kind(provider, kind)
            return [provider]
        return self.defaults(kind)

    async def generate(self, provider: str, operation: str, payload: dict[str, Any]) -> dict[str, Any]:
        logger.debug("Provider call", provider=provider, operation=operation)
        return await self.get(provider).generate(operation, payload)
