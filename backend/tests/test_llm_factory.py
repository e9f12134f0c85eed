"""Tests for LLM provider selection and per-tier sizing"""

import pytest
from langchain_ollama import ChatOllama
from langchain_openai import ChatOpenAI

from onyx_api.core.llm_config import LLMSettings
from onyx_api.services import llm_factory
from onyx_api.services.llm_factory import get_llm_for_tier, get_llm_provider
from onyx_api.services.subscription_service import get_ai_processing_config


def _settings(**values) -> LLMSettings:
    return LLMSettings(_env_file=None, **values)


def test_default_model_per_provider():
    assert _settings(LLM_PROVIDER="ollama").model == "qwen3:8b"
    assert _settings(LLM_PROVIDER="openai", LLM_MODEL="gpt-4o").model == "gpt-4o"


def test_openai_requires_api_key(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(ValueError, match="OPENAI_API_KEY"):
        get_llm_provider(_settings(LLM_PROVIDER="openai"))


def test_ollama_needs_no_key():
    llm = get_llm_provider(_settings(LLM_PROVIDER="ollama", LLM_MAX_TOKENS=64))
    assert isinstance(llm, ChatOllama)
    assert llm.num_predict == 64


class TestTierSizing:
    def test_openai_uses_the_tier_model(self, monkeypatch):
        monkeypatch.setattr(
            llm_factory, "get_llm_settings",
            lambda: _settings(LLM_PROVIDER="openai", OPENAI_API_KEY="sk-test"),
        )

        llm = get_llm_for_tier(get_ai_processing_config("plaid"))

        assert isinstance(llm, ChatOpenAI)
        assert llm.model_name == "gpt-4"
        assert llm.max_tokens == 500

    def test_model_override_and_sampling(self, monkeypatch):
        monkeypatch.setattr(
            llm_factory, "get_llm_settings",
            lambda: _settings(LLM_PROVIDER="openai", OPENAI_API_KEY="sk-test"),
        )

        llm = get_llm_for_tier(
            get_ai_processing_config("free"), model_override="ft:custom", max_tokens=20, temperature=0.1
        )

        assert llm.model_name == "ft:custom"
        assert llm.max_tokens == 20
        assert llm.temperature == 0.1

    def test_other_providers_keep_their_model(self, monkeypatch):
        monkeypatch.setattr(
            llm_factory, "get_llm_settings",
            lambda: _settings(LLM_PROVIDER="ollama", LLM_MODEL="llama3"),
        )

        llm = get_llm_for_tier(get_ai_processing_config("premium"))

        assert llm.model == "llama3"
        assert llm.num_predict == 300
