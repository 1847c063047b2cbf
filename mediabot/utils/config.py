"""Configuration management for Mediabot using pydantic-settings."""

import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Ensure .env is loaded so ${VAR} expansion and os.environ lookups work
load_dotenv(dotenv_path=Path(".") / ".env", override=False)


class AppConfig(BaseModel):
    """Core application configuration."""

    name: str = "Mediabot"
    version: str = "0.1.0"
    data_dir: str = os.environ.get("DATA_DIR", "./data")
    default_language: str = "en"


class GeminiLLMConfig(BaseModel):
    """Google Gemini configuration. Uses GOOGLE_API_KEY."""

    provider: str = "gemini"
    model: str = "gemini-2.0-flash"
    max_tokens: int = 4096
    temperature: float = 0.7
    timeout: int = 120
    enabled: bool = True


class AnthropicLLMConfig(BaseModel):
    """Anthropic Claude configuration. Uses ANTHROPIC_API_KEY."""

    provider: str = "anthropic"
    model: str = "claude-sonnet-4-20250514"
    max_tokens: int = 4096
    temperature: float = 0.7
    timeout: int = 120
    enabled: bool = True


class LLMConfig(BaseModel):
    """Combined LLM configuration."""

    gemini: GeminiLLMConfig = Field(default_factory=GeminiLLMConfig)
    anthropic: AnthropicLLMConfig = Field(default_factory=AnthropicLLMConfig)
    # Order in which language-model providers are tried
    provider_order: list[str] = Field(default_factory=lambda: ["gemini", "anthropic"])
    max_retries: int = 2


class AgentConfig(BaseModel):
    """Agent loop configuration."""

    max_iterations: int = 5
    send_acks: bool = True
    history_limit: int = 20
    context_memory_enabled: bool = True
    context_max_tool_calls: int = 10
    lease_ttl_seconds: float = 300.0
    multi_step_enabled: bool = True


class PlannerConfig(BaseModel):
    """Multi-step planner configuration."""

    # Requests shorter than this never go through the planner
    min_request_length: int = 12
    max_tokens: int = 2048
    temperature: float = 0.2


class ProviderEndpointConfig(BaseModel):
    """HTTP endpoint of one generation provider."""

    base_url: str = ""
    api_key: str = ""
    timeout: float = 300.0
    enabled: bool = True


class ProvidersConfig(BaseModel):
    """Generation provider endpoints and default candidate lists."""

    endpoints: dict[str, ProviderEndpointConfig] = Field(default_factory=dict)
    image: list[str] = Field(default_factory=lambda: ["gemini", "openai", "grok"])
    video: list[str] = Field(default_factory=lambda: ["veo3", "sora", "sora-pro", "kling", "runway"])
    music: list[str] = Field(default_factory=lambda: ["suno"])
    speech: list[str] = Field(default_factory=lambda: ["elevenlabs"])
    sound: list[str] = Field(default_factory=lambda: ["elevenlabs"])
    search: list[str] = Field(default_factory=lambda: ["gemini"])
    analysis: list[str] = Field(default_factory=lambda: ["gemini"])


class WhatsAppChannelConfig(BaseModel):
    """WhatsApp channel configuration."""

    enabled: bool = False
    session_path: str = "./data/whatsapp-session"
    bridge_port: int = 3001
    bridge_host: str = "localhost"
    allowed_numbers: list[str] = Field(default_factory=list)
    # Numbers refused media generation or voice replies
    media_creation_denied: list[str] = Field(default_factory=list)
    voice_denied: list[str] = Field(default_factory=list)


class ChannelsConfig(BaseModel):
    """Channel configuration."""

    whatsapp: WhatsAppChannelConfig = Field(default_factory=WhatsAppChannelConfig)


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "json"
    file: str = "./data/logs/mediabot.log"
    max_size_mb: int = 100
    backup_count: int = 5


class Settings(BaseSettings):
    """Main settings class that loads from YAML and environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="MEDIABOT_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    app: AppConfig = Field(default_factory=AppConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    planner: PlannerConfig = Field(default_factory=PlannerConfig)
    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)
    channels: ChannelsConfig = Field(default_factory=ChannelsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    # API keys from environment
    anthropic_api_key: str = Field(default="", alias="ANTHROPIC_API_KEY")
    google_api_key: str = Field(default="", alias="GOOGLE_API_KEY")

    @classmethod
    def from_yaml(cls, config_path: str | Path | None = None) -> "Settings":
        """Load settings from YAML file with environment variable overrides."""
        if config_path is None:
            config_path = os.environ.get("MEDIABOT_CONFIG") or None
        if config_path is None:
            possible_paths = [
                Path("config/settings.yaml"),
                Path("config/settings.local.yaml"),
                Path.home() / ".config/mediabot/settings.yaml",
            ]
            for path in possible_paths:
                if path.exists():
                    config_path = path
                    break

        config_data: dict[str, Any] = {}
        if config_path and Path(config_path).exists():
            with open(config_path) as f:
                config_data = yaml.safe_load(f) or {}

        config_data = cls._expand_env_vars(config_data)

        # Inject API keys from environment so clients get keys after .env is loaded
        env_keys = [
            ("anthropic_api_key", "ANTHROPIC_API_KEY"),
            ("google_api_key", "GOOGLE_API_KEY"),
        ]
        for field_name, env_var in env_keys:
            if field_name not in config_data:
                config_data[field_name] = os.environ.get(env_var, "")

        try:
            instance = cls(**config_data)
        except Exception as e:
            raise ValueError(f"Invalid config: {e}") from e
        instance.validate()
        return instance

    def validate(self) -> None:
        """Validate critical config. Raises ValueError on failure."""
        errors: list[str] = []
        if not (self.app.name and isinstance(self.app.name, str)):
            errors.append("app.name must be a non-empty string")
        unknown = [p for p in self.llm.provider_order if p not in ("gemini", "anthropic")]
        if unknown:
            errors.append(f"llm.provider_order has unknown providers: {', '.join(unknown)}")
        if self.agent.max_iterations < 1:
            errors.append("agent.max_iterations must be at least 1")
        if self.agent.lease_ttl_seconds <= 0:
            errors.append("agent.lease_ttl_seconds must be positive")
        if errors:
            raise ValueError("Config validation failed: " + "; ".join(errors))

    @classmethod
    def _expand_env_vars(cls, data: Any) -> Any:
        """Recursively expand environment variables in config values."""
        if isinstance(data, dict):
            return {k: cls._expand_env_vars(v) for k, v in data.items()}
        elif isinstance(data, list):
            return [cls._expand_env_vars(item) for item in data]
        elif isinstance(data, str):
            if data.startswith("${") and data.endswith("}"):
                env_var = data[2:-1]
                return os.environ.get(env_var, "")
            return data
        return data

    def ensure_directories(self) -> None:
        """Ensure all required directories exist."""
        for dir_path in (self.app.data_dir, Path(self.logging.file).parent):
            Path(dir_path).expanduser().mkdir(parents=True, exist_ok=True)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings.from_yaml()


def reload_settings() -> Settings:
    """Reload settings (clears cache)."""
    get_settings.cache_clear()
    return get_settings()
