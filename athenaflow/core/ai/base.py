"""
Base Provider Adapter Interface

Abstract base class for all model provider adapters.
Each adapter owns one wire format: how to build the upstream request,
how to decode the upstream byte stream into canonical events, and how
to classify a failure for the gateway's fallback decision.
"""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Sequence

from athenaflow.core.ai.attachments import (
    BinaryAttachment,
    ImageAttachment,
    NormalizedAttachment,
    TextAttachment,
    format_binary_attachment,
    format_text_attachment,
)
from athenaflow.core.ai.events import RateLimitWindow, StreamEvent
from athenaflow.core.ai.rate_limits import extract_windows
from athenaflow.core.errors import ConfigurationError, UpstreamError

logger = logging.getLogger(__name__)


class ProviderType(Enum):
    """Supported model providers."""
    CLAUDE = "claude"
    OPENAI = "openai"
    OPENROUTER = "openrouter"
    OLLAMA = "ollama"
    GROQ = "groq"
    GEMINI = "gemini"
    OPENCODEZEN = "opencodezen"
    FIREWORKS = "fireworks"
    MISTRAL = "mistral"
    ZAI = "zai"


class ErrorClass(Enum):
    FALLBACK = "fallback"
    FATAL = "fatal"


# Statuses that say "this model, right now" rather than "this request".
FALLBACK_STATUSES = frozenset({404, 429, 503, 529})

FALLBACK_PATTERNS = (
    re.compile(r"\b429\b"),
    re.compile(r"no endpoints found", re.IGNORECASE),
    re.compile(r"rate-?limited|too many requests", re.IGNORECASE),
    re.compile(r"model\b.*\bnot found", re.IGNORECASE),
    re.compile(r"overloaded", re.IGNORECASE),
)


@dataclass
class ChatMessage:
    """One prior turn of the conversation."""
    role: str
    text: str
    attachments: List[NormalizedAttachment] = field(default_factory=list)


@dataclass
class ProviderRequest:
    """Fully-built upstream HTTP request."""
    method: str
    url: str
    headers: Dict[str, str]
    body: Dict[str, Any]
    stream: bool = True


@dataclass
class AdapterConfig:
    """Resolved configuration for one adapter instance."""
    provider_type: ProviderType
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    app_url: Optional[str] = None
    extra_headers: Dict[str, str] = field(default_factory=dict)
    max_tokens: int = 8192


class BaseProviderAdapter(ABC):
    """
    Abstract base class for all provider adapters.

    Subclasses set `provider_type` and `default_base_url`, and implement
    `build_request` and `decode`. Everything else has a sensible default.
    """

    provider_type: ProviderType
    default_base_url: str = ""
    requires_api_key: bool = True
    supports_images: bool = True
    missing_key_hint: str = ""
    # resource class -> {"limit": header, "remaining": header, "reset": header}
    rate_limit_headers: Mapping[str, Dict[str, str]] = {}

    def __init__(self, config: AdapterConfig):
        self.config = config
        self._validate_config()

    def _validate_config(self) -> None:
        if self.requires_api_key and not self.config.api_key:
            name = self.provider_type.value
            hint = f" {self.missing_key_hint}" if self.missing_key_hint else ""
            raise ConfigurationError(
                f"{name.upper()} API key is not configured.{hint}",
                setting=f"providers.{name}.api_key",
            )

    @property
    def name(self) -> str:
        return self.provider_type.value

    @property
    def base_url(self) -> str:
        return (self.config.base_url or self.default_base_url).strip().rstrip("/")

    @abstractmethod
    def build_request(
        self,
        system_prompt: str,
        messages: Sequence[ChatMessage],
        attachments: Sequence[NormalizedAttachment],
        model: str,
    ) -> ProviderRequest:
        """
        Build the upstream request.

        Attachments are injected into the last user message only; the
        system prompt appears once, in the provider's native slot.
        """
        pass

    @abstractmethod
    def decode(self, chunks: AsyncIterator[bytes]) -> AsyncIterator[StreamEvent]:
        """
        Translate the upstream byte stream into canonical text events.

        Malformed frames are skipped; an error frame raises UpstreamError.
        """
        pass

    def classify_error(self, error: BaseException) -> ErrorClass:
        if isinstance(error, ConfigurationError):
            return ErrorClass.FATAL
        if isinstance(error, UpstreamError):
            if error.fallback_eligible is not None:
                return ErrorClass.FALLBACK if error.fallback_eligible else ErrorClass.FATAL
            if error.status in FALLBACK_STATUSES:
                return ErrorClass.FALLBACK
        message = str(error)
        if any(pattern.search(message) for pattern in FALLBACK_PATTERNS):
            return ErrorClass.FALLBACK
        return ErrorClass.FATAL

    def fallback_chain(self, model: str) -> List[str]:
        return [model]

    def format_error(self, error: BaseException) -> str:
        return str(error) or f"{self.name} request failed"

    def rate_limit_windows(self, headers: Mapping[str, str]) -> Dict[str, RateLimitWindow]:
        if not self.rate_limit_headers:
            return {}
        return extract_windows(headers, self.rate_limit_headers)

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    def usable_attachments(
        self,
        messages: Sequence[ChatMessage],
        attachments: Sequence[NormalizedAttachment],
    ) -> List[NormalizedAttachment]:
        """Attachments for this turn, falling back to the last user message's own."""
        if not attachments:
            index = self.last_user_index(messages)
            attachments = messages[index].attachments if index != -1 else []
        if self.supports_images:
            return list(attachments)
        dropped = [a.name for a in attachments if isinstance(a, ImageAttachment)]
        if dropped:
            logger.info("%s does not accept images; dropping %s", self.name, ", ".join(dropped))
        return [a for a in attachments if not isinstance(a, ImageAttachment)]

    @staticmethod
    def last_user_index(messages: Sequence[Any]) -> int:
        for index in range(len(messages) - 1, -1, -1):
            role = messages[index].role if isinstance(messages[index], ChatMessage) else messages[index].get("role")
            if role == "user":
                return index
        return -1

    @staticmethod
    def describe_attachment(attachment: NormalizedAttachment) -> str:
        """Text rendering of a non-image attachment."""
        if isinstance(attachment, TextAttachment):
            return format_text_attachment(attachment)
        if isinstance(attachment, BinaryAttachment):
            return format_binary_attachment(attachment)
        return f"Image: {attachment.name}"

    @staticmethod
    def upstream_error_message(payload: Any, default: str) -> str:
        """Pull a human-readable message out of an error-shaped frame."""
        error = payload.get("error") if isinstance(payload, dict) else None
        if isinstance(error, dict):
            return str(error.get("message") or error.get("type") or default)
        if isinstance(error, str) and error:
            return error
        return default
