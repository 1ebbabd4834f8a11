"""
LLM factory for creating provider instances.

Supports: Anthropic Claude, OpenAI GPT, OpenRouter.
"""

from ..config import LLMConfig, Settings
from .base import BaseLLM
from .anthropic import AnthropicLLM
from .openai import OpenAILLM

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"


def create_llm(config: LLMConfig | None = None, settings: Settings | None = None) -> BaseLLM:
    """Create an LLM instance based on configuration.

    Provider routing:
    - anthropic -> AnthropicLLM (native Anthropic SDK)
    - openai -> OpenAILLM (native OpenAI SDK)
    - openrouter -> OpenAILLM (OpenAI-compatible endpoint)
    """
    if config is None:
        if settings is None:
            from ..config import get_settings
            settings = get_settings()
        config = settings.get_llm_config()

    provider = config.provider
    kwargs = {
        "api_key": config.api_key,
        "model": config.model,
        "max_tokens": config.max_tokens,
        "temperature": config.temperature,
    }

    if provider == "anthropic":
        return AnthropicLLM(base_url=config.base_url, **kwargs)
    elif provider == "openai":
        return OpenAILLM(base_url=config.base_url, **kwargs)
    elif provider == "openrouter":
        return OpenAILLM(base_url=config.base_url or OPENROUTER_BASE_URL, **kwargs)
    else:
        raise ValueError(f"Unknown LLM provider: {provider}")
