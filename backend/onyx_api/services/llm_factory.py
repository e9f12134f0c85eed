"""LLM Provider Factory - Plugin-based provider selection"""

import logging
from typing import Optional

import httpx
from langchain_anthropic import ChatAnthropic
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_google_genai import ChatGoogleGenerativeAI
from langchain_ollama import ChatOllama
from langchain_openai import ChatOpenAI

from onyx_api.core.llm_config import LLMSettings, get_ca_bundle_path, get_llm_settings
from onyx_api.services.subscription_service import ProcessingConfig

logger = logging.getLogger(__name__)


def get_llm_provider(settings: LLMSettings) -> BaseChatModel:
    """
    Factory to create LLM provider based on configuration.

    Args:
        settings: LLM configuration (provider, model, API keys, etc.)

    Returns:
        Configured LangChain chat model instance

    Raises:
        ValueError: If provider is unknown or required config is missing

    Supported Providers:
    --------------------
    - openai: OpenAI API (requires API key)
    - ollama: Local Ollama instance (default: http://localhost:11434)
    - openrouter: OpenRouter API (requires API key)
    - anthropic: Anthropic Claude API (requires API key)
    - gemini: Google Gemini API (requires API key)
    """
    api_key = settings.get_api_key()
    base_url = settings.get_base_url()

    if settings.provider == "openai":
        if not api_key:
            raise ValueError("OpenAI provider requires OPENAI_API_KEY environment variable")

        return ChatOpenAI(
            model=settings.model,
            api_key=api_key,
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
        )

    elif settings.provider == "ollama":
        return ChatOllama(
            model=settings.model,
            base_url=base_url,
            temperature=settings.temperature,
            num_predict=settings.max_tokens,
        )

    elif settings.provider == "openrouter":
        if not api_key:
            raise ValueError("OpenRouter provider requires OPENROUTER_API_KEY environment variable")

        # Async client so calls honor the configured CA bundle
        http_async_client = httpx.AsyncClient(verify=get_ca_bundle_path(), trust_env=True)

        return ChatOpenAI(
            model=settings.model,
            base_url=base_url,
            api_key=api_key,
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
            http_async_client=http_async_client,
        )

    elif settings.provider == "anthropic":
        if not api_key:
            raise ValueError("Anthropic provider requires ANTHROPIC_API_KEY environment variable")

        return ChatAnthropic(
            model=settings.model,
            api_key=api_key,
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
        )

    elif settings.provider == "gemini":
        if not api_key:
            raise ValueError("Gemini provider requires GEMINI_API_KEY environment variable")

        logger.info(f"Creating ChatGoogleGenerativeAI with model={settings.model}")

        return ChatGoogleGenerativeAI(
            model=settings.model,
            google_api_key=api_key,
            temperature=settings.temperature,
            max_output_tokens=settings.max_tokens,
        )

    else:
        raise ValueError(
            f"Unknown LLM provider: {settings.provider}. "
            f"Supported providers: openai, ollama, openrouter, anthropic, gemini"
        )


def get_llm_for_tier(
    config: ProcessingConfig,
    model_override: Optional[str] = None,
    max_tokens: Optional[int] = None,
    temperature: Optional[float] = None,
) -> BaseChatModel:
    """
    Build a chat model sized for a subscription tier's processing config.

    With the openai provider the tier picks the model; other providers keep
    their configured model and only take the tier's token budget and
    temperature.
    """
    settings = get_llm_settings()
    updates = {
        "max_tokens": max_tokens or config.max_tokens,
        "temperature": config.temperature if temperature is None else temperature,
    }
    if settings.provider == "openai":
        updates["model"] = model_override or config.model

    tier_settings = settings.model_copy(update=updates)
    logger.debug(
        f"LLM for tier: provider={tier_settings.provider} model={tier_settings.model} "
        f"max_tokens={tier_settings.max_tokens} temperature={tier_settings.temperature}"
    )
    return get_llm_provider(tier_settings)


def get_llm(max_tokens: Optional[int] = None, temperature: Optional[float] = None) -> BaseChatModel:
    """Chat model from environment defaults, for utility calls outside the tier routing."""
    settings = get_llm_settings()
    updates = {}
    if max_tokens is not None:
        updates["max_tokens"] = max_tokens
    if temperature is not None:
        updates["temperature"] = temperature
    return get_llm_provider(settings.model_copy(update=updates) if updates else settings)
