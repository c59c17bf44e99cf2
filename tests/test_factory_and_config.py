"""
Tests for model routing, the adapter registry and credential lookup.
"""

import json

import pytest

from athenaflow.core.ai.anthropic_provider import AnthropicAdapter
from athenaflow.core.ai.base import ProviderType
from athenaflow.core.ai.factory import DEFAULT_MODEL, ProviderAdapterFactory, parse_model_prefix, resolve_model
from athenaflow.core.ai.ollama_provider import OllamaAdapter
from athenaflow.core.ai.openai_provider import OpenAICompletionAdapter, OpenAICompatibleAdapter, OpenRouterAdapter
from athenaflow.services.config_service import ConfigService, EnvironmentCredentials


# ---------------------------------------------------------------------------
# Routing
# ---------------------------------------------------------------------------

def test_resolve_model_from_table():
    resolved = resolve_model("claude-sonnet-4")

    assert resolved.provider == ProviderType.CLAUDE
    assert resolved.api_model == "claude-sonnet-4-20250514"


def test_resolve_model_prefix_keeps_colons_in_model():
    assert parse_model_prefix("openrouter:qwen/qwen3-coder:free") == (ProviderType.OPENROUTER, "qwen/qwen3-coder:free")
    assert parse_model_prefix("nonsense:model") is None

    resolved = resolve_model("openrouter:qwen/qwen3-coder:free")
    assert resolved.provider == ProviderType.OPENROUTER
    assert resolved.api_model == "qwen/qwen3-coder:free"


def test_resolve_model_explicit_provider_and_default():
    resolved = resolve_model("llama-3.1-8b-instant", provider_id="groq")
    assert resolved.provider == ProviderType.GROQ
    assert resolved.api_model == "llama-3.1-8b-instant"

    fallback = resolve_model("who-knows")
    assert fallback.model_id == DEFAULT_MODEL
    assert fallback.provider == ProviderType.CLAUDE


def test_factory_picks_adapter_classes():
    assert ProviderAdapterFactory.adapter_class(ProviderType.OPENAI, "gpt-4o") is OpenAICompatibleAdapter
    assert ProviderAdapterFactory.adapter_class(ProviderType.OPENAI, "o1-mini") is OpenAICompletionAdapter
    assert ProviderAdapterFactory.adapter_class(ProviderType.OPENROUTER) is OpenRouterAdapter
    assert ProviderAdapterFactory.adapter_class(ProviderType.CLAUDE) is AnthropicAdapter
    assert set(ProviderAdapterFactory.get_available_providers()) == {p.value for p in ProviderType}


def test_factory_builds_ollama_config_with_cloudflare_headers():
    values = {
        ("ollama", "base_url"): "https://ollama.example.com",
        ("ollama", "cf_access_client_id"): "cid",
        ("ollama", "cf_access_client_secret"): "csecret",
    }

    adapter = ProviderAdapterFactory.create_from_credentials(
        resolve_model("llama3", provider_id="ollama"),
        lambda provider, key_name="api_key": values.get((provider, key_name)),
    )

    assert isinstance(adapter, OllamaAdapter)
    assert adapter.base_url == "https://ollama.example.com"
    assert adapter.config.extra_headers == {"CF-Access-Client-Id": "cid", "CF-Access-Client-Secret": "csecret"}


# ---------------------------------------------------------------------------
# Config + credentials
# ---------------------------------------------------------------------------

def test_config_service_dot_notation_round_trip(tmp_path):
    path = tmp_path / "config.json"
    service = ConfigService(config_path=path)

    service.set("providers.openai.api_key", "sk-file")
    assert service.save() is True

    reloaded = ConfigService(config_path=path)
    assert reloaded.get("providers.openai.api_key") == "sk-file"
    assert reloaded.get("providers.missing.api_key", "default") == "default"
    assert json.loads(path.read_text())["providers"]["openai"]["api_key"] == "sk-file"


def test_config_service_load_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        ConfigService(config_path=tmp_path / "nope.json").load()


def test_credentials_prefer_config_then_env_then_next_public():
    config = ConfigService(data={"providers": {"openai": {"api_key": " sk-config "}}})
    env = {
        "OPENAI_API_KEY": "sk-env",
        "NEXT_PUBLIC_GROQ_API_KEY": "gsk-public",
        "ZHIPU_API_KEY": "zhipu",
        "OLLAMA_BASE_URL": "http://gpu-box:11434",
        "VERCEL_TEAM_ID": "team_1",
    }

    lookup = EnvironmentCredentials(config, environ=env)

    assert lookup("openai") == "sk-config"
    assert lookup("groq") == "gsk-public"
    assert lookup("zai") == "zhipu"
    assert lookup("ollama", "base_url") == "http://gpu-box:11434"
    assert lookup("vercel", "team_id") == "team_1"
    assert lookup("mistral") is None


def test_is_configured_treats_ollama_as_always_available():
    lookup = EnvironmentCredentials(ConfigService(data={}), environ={})

    assert lookup.is_configured("ollama") is True
    assert lookup.is_configured("claude") is False


def test_default_credentials_read_the_shared_config_file(tmp_path, monkeypatch):
    import athenaflow.config.settings as settings

    path = tmp_path / "config.json"
    path.write_text(json.dumps({"providers": {"openai": {"api_key": "sk-file"}}}))
    monkeypatch.setattr(settings, "CONFIG_PATH", path)
    monkeypatch.setattr(settings, "_config_service", None)

    lookup = EnvironmentCredentials(environ={})

    assert lookup("openai") == "sk-file"
    assert lookup.config is settings.get_config_service()
