"""
LLM Factory

Factory for creating LLM provider instances based on configuration.
"""

import logging
from typing import Literal

from asr.config import get_settings
from asr.core.exceptions import ConfigurationError, MissingAPIKeyError
from asr.llm.base import BaseLLMProvider

logger = logging.getLogger(__name__)

ProviderType = Literal["anthropic", "openai"]


def create_provider(
    provider: ProviderType | None = None, model: str | None = None, **kwargs
) -> BaseLLMProvider:
    """
    Create an LLM provider instance.

    Args:
        provider: 'anthropic' or 'openai'. Defaults to ``ASR_LLM_PROVIDER``.
        model: Model name. Defaults to the provider's configured model.
        **kwargs: Additional provider-specific arguments.

    Returns:
        Configured LLM provider instance.

    Raises:
        MissingAPIKeyError: If the provider's API key is not configured.
        ConfigurationError: If the provider is unknown.
    """
    settings = get_settings()
    provider = provider or settings.llm.provider

    if provider == "anthropic":
        from asr.llm.anthropic_provider import AnthropicProvider

        api_key = kwargs.pop("api_key", None) or settings.llm.anthropic_api_key
        if not api_key:
            raise MissingAPIKeyError("ANTHROPIC_API_KEY")
        model = model or settings.llm.anthropic_model
        logger.debug("Creating Anthropic provider (model=%s)", model)
        return AnthropicProvider(model=model, api_key=api_key, **kwargs)

    if provider == "openai":
        from asr.llm.openai_provider import OpenAIProvider

        api_key = kwargs.pop("api_key", None) or settings.llm.openai_api_key
        if not api_key:
            raise MissingAPIKeyError("OPENAI_API_KEY")
        model = model or settings.llm.openai_model
        logger.debug("Creating OpenAI provider (model=%s)", model)
        return OpenAIProvider(model=model, api_key=api_key, **kwargs)

    raise ConfigurationError(f"Unknown LLM provider: {provider}", {"provider": provider})
