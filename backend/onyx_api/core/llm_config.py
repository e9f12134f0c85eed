"""Chat model provider settings"""

import os
from typing import Dict, Literal, Optional

import certifi
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

Provider = Literal["openai", "ollama", "openrouter", "anthropic", "gemini"]

# Used when LLM_MODEL is unset
DEFAULT_MODELS: Dict[str, str] = {
    "openai": "gpt-3.5-turbo",
    "ollama": "qwen3:8b",
    "openrouter": "meta-llama/llama-3.2-3b-instruct",
    "anthropic": "claude-sonnet-4-20250514",
    "gemini": "gemini-2.5-flash",
}

OLLAMA_DEFAULT_URL = "http://localhost:11434"
OPENROUTER_URL = "https://openrouter.ai/api/v1"


def get_ca_bundle_path() -> str:
    """CA bundle for outbound HTTP clients (set at startup by ``onyx_api.main``)."""
    return os.environ.get("SSL_CERT_FILE", certifi.where())


class LLMSettings(BaseSettings):
    """
    Which chat model provider answers AI requests.

    Keys for every provider may live in .env at once; LLM_PROVIDER picks the
    active one. With openai the subscription tier also chooses the model,
    token budget and temperature per request. Other providers keep LLM_MODEL
    and only take the tier's budget and temperature.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    provider: Provider = Field(default="openai", alias="LLM_PROVIDER")
    model: Optional[str] = Field(default=None, alias="LLM_MODEL")
    temperature: float = Field(default=0.7, alias="LLM_TEMPERATURE")
    max_tokens: int = Field(default=300, alias="LLM_MAX_TOKENS")

    openai_api_key: Optional[str] = Field(default=None, alias="OPENAI_API_KEY")
    anthropic_api_key: Optional[str] = Field(default=None, alias="ANTHROPIC_API_KEY")
    gemini_api_key: Optional[str] = Field(default=None, alias="GEMINI_API_KEY")
    openrouter_api_key: Optional[str] = Field(default=None, alias="OPENROUTER_API_KEY")
    ollama_base_url: Optional[str] = Field(default=OLLAMA_DEFAULT_URL, alias="OLLAMA_BASE_URL")

    @model_validator(mode="after")
    def fill_default_model(self) -> "LLMSettings":
        if self.model is None:
            self.model = DEFAULT_MODELS[self.provider]
        return self

    def get_api_key(self) -> Optional[str]:
        # Ollama runs locally without a key
        return {
            "openai": self.openai_api_key,
            "anthropic": self.anthropic_api_key,
            "gemini": self.gemini_api_key,
            "openrouter": self.openrouter_api_key,
        }.get(self.provider)

    def get_base_url(self) -> Optional[str]:
        if self.provider == "ollama":
            return self.ollama_base_url or OLLAMA_DEFAULT_URL
        if self.provider == "openrouter":
            return OPENROUTER_URL
        return None


def get_llm_settings() -> LLMSettings:
    """Fresh settings from the environment on every call."""
    return LLMSettings()
