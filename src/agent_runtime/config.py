"""
Configuration management for Agent-Runtime

Uses pydantic-settings for environment variable parsing and validation.
"""

from functools import lru_cache
from typing import TYPE_CHECKING, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

if TYPE_CHECKING:
    from .conversation.compressor import CompressionConfig

Provider = Literal["anthropic", "openai", "openrouter"]


class LLMConfig(BaseSettings):
    """Configuration for a single LLM provider."""

    model_config = SettingsConfigDict(extra="ignore")

    provider: Provider = "anthropic"
    model: str = "claude-sonnet-4-20250514"
    api_key: str = ""
    base_url: str | None = None
    max_tokens: int = 4096
    temperature: float = 0.7


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_nested_delimiter="__",
    )

    # Application
    app_name: str = "Agent-Runtime"
    debug: bool = False
    log_level: str = "INFO"

    # LLM Providers (API Keys)
    anthropic_api_key: str = Field(default="", description="Anthropic API key for Claude")
    openai_api_key: str = Field(default="", description="OpenAI API key")
    openrouter_api_key: str = Field(default="", description="OpenRouter API key")

    # Default model settings
    default_provider: Provider = "anthropic"
    default_model: str = Field(default="", description="Overrides the provider's default model")
    max_tokens: int = 4096
    temperature: float = 0.7

    # Storage
    storage_backend: Literal["memory", "sql"] = "sql"
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/sessions.db",
        description="Database connection URL"
    )
    session_cache_size: int = Field(default=100, description="Sessions kept in the manager's LRU cache")

    # Agent
    max_turns: int = Field(default=10, description="Max turns per chat execution")
    system_prompt: str = Field(default="", description="Default system prompt for new sessions")

    # Compression
    compression_enabled: bool = True
    summarize_after_items: int = 20
    keep_recent_items: int = 10
    max_summary_length: int = 500
    token_watermark: int | None = Field(default=None, description="Compress once the last prompt exceeds this")
    protect_recent_messages: int | None = Field(default=4, description="Recent messages never summarized")

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return v.strip().upper() if v else "INFO"

    def get_llm_config(self, provider: str | None = None) -> LLMConfig:
        """Get LLM configuration for a provider."""
        provider = provider or self.default_provider

        api_key_map = {
            "anthropic": self.anthropic_api_key,
            "openai": self.openai_api_key,
            "openrouter": self.openrouter_api_key,
        }

        model_map = {
            "anthropic": "claude-sonnet-4-20250514",
            "openai": "gpt-4o",
            "openrouter": "anthropic/claude-sonnet-4",
        }

        base_url_map = {
            "anthropic": None,
            "openai": None,
            "openrouter": "https://openrouter.ai/api/v1",
        }

        return LLMConfig(
            provider=provider,  # type: ignore
            model=self.default_model or model_map.get(provider, ""),
            api_key=api_key_map.get(provider, ""),
            base_url=base_url_map.get(provider),
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )

    def get_compression_config(self) -> "CompressionConfig":
        """Get the compressor configuration."""
        from .conversation.compressor import CompressionConfig

        return CompressionConfig(
            summarize_after_items=self.summarize_after_items,
            keep_recent_items=self.keep_recent_items,
            max_summary_length=self.max_summary_length,
            token_watermark=self.token_watermark,
            protect_recent_messages=self.protect_recent_messages,
            enabled=self.compression_enabled,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
