"""
Provider Adapter Factory

Routes a user-facing model id to a provider and wire model, and builds
the matching adapter from the credential lookup.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple, Type

from athenaflow.core.ai.anthropic_provider import AnthropicAdapter
from athenaflow.core.ai.base import AdapterConfig, BaseProviderAdapter, ProviderType
from athenaflow.core.ai.gemini_provider import GeminiAdapter
from athenaflow.core.ai.ollama_provider import OllamaAdapter
from athenaflow.core.ai.openai_provider import (
    FireworksAdapter,
    GroqAdapter,
    MistralAdapter,
    OpenAICompatibleAdapter,
    OpenAICompletionAdapter,
    OpenCodeZenAdapter,
    OpenRouterAdapter,
    ZaiAdapter,
)

logger = logging.getLogger(__name__)

CredentialLookup = Callable[..., Optional[str]]

DEFAULT_MODEL = "claude-sonnet-4"

# model id -> (provider, wire model)
MODEL_CONFIG: Dict[str, Tuple[ProviderType, str]] = {
    # Claude
    "claude-sonnet-4": (ProviderType.CLAUDE, "claude-sonnet-4-20250514"),
    "claude-opus-4": (ProviderType.CLAUDE, "claude-opus-4-20250514"),
    "claude-3.5-sonnet": (ProviderType.CLAUDE, "claude-3-5-sonnet-20241022"),
    "claude-3.5-haiku": (ProviderType.CLAUDE, "claude-3-5-haiku-20241022"),
    "claude-opus-4-20250514": (ProviderType.CLAUDE, "claude-opus-4-20250514"),
    "claude-sonnet-4-20250514": (ProviderType.CLAUDE, "claude-sonnet-4-20250514"),
    "claude-sonnet-4.5": (ProviderType.CLAUDE, "claude-sonnet-4.5"),
    "claude-3.5-sonnet-20241022": (ProviderType.CLAUDE, "claude-3-5-sonnet-20241022"),
    "claude-3.5-haiku-20240307": (ProviderType.CLAUDE, "claude-3-5-haiku-20240307"),
    # OpenAI
    "gpt-5.1": (ProviderType.OPENAI, "gpt-5.1"),
    "gpt-5.2": (ProviderType.OPENAI, "gpt-5.2"),
    "gpt-4o": (ProviderType.OPENAI, "gpt-4o"),
    "gpt-4o-mini": (ProviderType.OPENAI, "gpt-4o-mini"),
    "gpt-4-turbo": (ProviderType.OPENAI, "gpt-4-turbo"),
    "o1": (ProviderType.OPENAI, "o1"),
    "o1-mini": (ProviderType.OPENAI, "o1-mini"),
    # Gemini
    "gemini-2.0-flash-exp": (ProviderType.GEMINI, "gemini-2.0-flash-exp"),
    "gemini-1.5-pro": (ProviderType.GEMINI, "gemini-1.5-pro"),
    "gemini-pro": (ProviderType.GEMINI, "gemini-pro"),
    "gemini-pro-vision": (ProviderType.GEMINI, "gemini-pro-vision"),
    # Mistral
    "mistral-large-latest": (ProviderType.MISTRAL, "mistral-large-latest"),
    "mistral-medium-latest": (ProviderType.MISTRAL, "mistral-medium-latest"),
    # Fireworks
    "accounts/fireworks/models/llama-v3p3-70b-instruct": (
        ProviderType.FIREWORKS, "accounts/fireworks/models/llama-v3p3-70b-instruct"),
    "accounts/fireworks/models/llama-v3p1-70b-instruct": (
        ProviderType.FIREWORKS, "accounts/fireworks/models/llama-v3p1-70b-instruct"),
    "accounts/fireworks/models/llama-v3p1-8b-instruct": (
        ProviderType.FIREWORKS, "accounts/fireworks/models/llama-v3p1-8b-instruct"),
    "accounts/fireworks/models/qwen2p5-72b-instruct": (
        ProviderType.FIREWORKS, "accounts/fireworks/models/qwen2p5-72b-instruct"),
    # Z.ai
    "glm-4.7": (ProviderType.ZAI, "glm-4.7"),
    "glm-4.6v": (ProviderType.ZAI, "glm-4.6v"),
    # OpenCode Zen
    "opencode-gpt-4": (ProviderType.OPENCODEZEN, "gpt-4"),
    "opencode-gpt-4-turbo": (ProviderType.OPENCODEZEN, "gpt-4-turbo"),
    "opencode-gpt-3.5-turbo": (ProviderType.OPENCODEZEN, "gpt-3.5-turbo"),
    "opencode-o1": (ProviderType.OPENCODEZEN, "o1"),
    "opencode-o1-mini": (ProviderType.OPENCODEZEN, "o1-mini"),
}


@dataclass(frozen=True)
class ResolvedModel:
    provider: ProviderType
    api_model: str
    model_id: str

    @property
    def label(self) -> str:
        return f"{self.provider.value}:{self.api_model}"


def parse_provider(value: Optional[str]) -> Optional[ProviderType]:
    if not value:
        return None
    try:
        return ProviderType(value.strip().lower())
    except ValueError:
        return None


def parse_model_prefix(value: str) -> Optional[Tuple[ProviderType, str]]:
    """Split "provider:model" ("openrouter:qwen/qwen3-coder:free")."""
    prefix, sep, rest = value.partition(":")
    provider = parse_provider(prefix) if sep else None
    model = rest.strip()
    if provider is None or not model:
        return None
    return provider, model


def resolve_model(model_id: Optional[str], provider_id: Optional[str] = None) -> ResolvedModel:
    """
    Resolve a model id to (provider, wire model).

    Lookup order: static table, "provider:model" prefix, explicit
    provider id, then the default model.
    """
    model_id = (model_id or "").strip()
    if model_id in MODEL_CONFIG:
        provider, api_model = MODEL_CONFIG[model_id]
        return ResolvedModel(provider, api_model, model_id)

    prefixed = parse_model_prefix(model_id) if model_id else None
    if prefixed:
        return ResolvedModel(prefixed[0], prefixed[1], model_id)

    provider = parse_provider(provider_id)
    if provider and model_id:
        return ResolvedModel(provider, model_id, model_id)

    logger.info("Unknown model %r, using %s", model_id, DEFAULT_MODEL)
    provider, api_model = MODEL_CONFIG[DEFAULT_MODEL]
    return ResolvedModel(provider, api_model, DEFAULT_MODEL)


class ProviderAdapterFactory:
    """
    Registry of adapter classes keyed by provider.

    Supports:
    - Adapter registration
    - Adapter creation from a resolved model and credential lookup
    """

    _adapters: Dict[ProviderType, Type[BaseProviderAdapter]] = {
        ProviderType.OPENAI: OpenAICompatibleAdapter,
        ProviderType.OPENROUTER: OpenRouterAdapter,
        ProviderType.GROQ: GroqAdapter,
        ProviderType.FIREWORKS: FireworksAdapter,
        ProviderType.MISTRAL: MistralAdapter,
        ProviderType.OPENCODEZEN: OpenCodeZenAdapter,
        ProviderType.ZAI: ZaiAdapter,
        ProviderType.CLAUDE: AnthropicAdapter,
        ProviderType.OLLAMA: OllamaAdapter,
        ProviderType.GEMINI: GeminiAdapter,
    }

    @classmethod
    def register_adapter(cls, provider_type: ProviderType, adapter_class: Type[BaseProviderAdapter]) -> None:
        cls._adapters[provider_type] = adapter_class
        logger.info("Registered adapter: %s", provider_type.value)

    @classmethod
    def adapter_class(cls, provider_type: ProviderType, api_model: str = "") -> Type[BaseProviderAdapter]:
        if provider_type == ProviderType.OPENAI and api_model.startswith("o1"):
            return OpenAICompletionAdapter
        adapter_class = cls._adapters.get(provider_type)
        if adapter_class is None:
            raise ValueError(f"Provider type {provider_type.value} not registered")
        return adapter_class

    @classmethod
    def create(cls, resolved: ResolvedModel, config: AdapterConfig) -> BaseProviderAdapter:
        """
        Create an adapter instance.

        Raises:
            ConfigurationError: if a required credential is missing
        """
        return cls.adapter_class(resolved.provider, resolved.api_model)(config)

    @classmethod
    def config_for(cls, provider_type: ProviderType, credentials: CredentialLookup) -> AdapterConfig:
        """Assemble an AdapterConfig from the credential lookup."""
        name = provider_type.value
        config = AdapterConfig(
            provider_type=provider_type,
            api_key=credentials(name, "api_key"),
            base_url=credentials(name, "base_url"),
            app_url=credentials("app", "url"),
        )
        if provider_type == ProviderType.OLLAMA:
            client_id = credentials(name, "cf_access_client_id")
            client_secret = credentials(name, "cf_access_client_secret")
            if client_id and client_secret:
                config.extra_headers["CF-Access-Client-Id"] = client_id
                config.extra_headers["CF-Access-Client-Secret"] = client_secret
        return config

    @classmethod
    def create_from_credentials(cls, resolved: ResolvedModel, credentials: CredentialLookup) -> BaseProviderAdapter:
        return cls.create(resolved, cls.config_for(resolved.provider, credentials))

    @classmethod
    def get_available_providers(cls) -> list:
        return [pt.value for pt in cls._adapters.keys()]
