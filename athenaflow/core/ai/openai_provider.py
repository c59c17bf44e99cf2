"""
OpenAI-compatible Provider Adapters

Chat-completion delta streams (`data: {json}` blocks ending with
`data: [DONE]`) are shared by OpenAI, OpenRouter, Groq, Fireworks,
Mistral, OpenCode Zen and Z.ai. Only endpoints, headers and a few
provider quirks differ.
"""

import logging
import re
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

from athenaflow.core.ai.attachments import ImageAttachment, NormalizedAttachment
from athenaflow.core.ai.base import (
    BaseProviderAdapter,
    ChatMessage,
    ErrorClass,
    ProviderRequest,
    ProviderType,
)
from athenaflow.core.ai.events import StreamEvent, TextEvent
from athenaflow.core.ai.framing import SSEFrameReader, iter_text, parse_json_frame
from athenaflow.core.errors import FrameDecodeError, UpstreamError

logger = logging.getLogger(__name__)

OPENAI_RATE_LIMIT_HEADERS = {
    "requests": {
        "limit": "x-ratelimit-limit-requests",
        "remaining": "x-ratelimit-remaining-requests",
        "reset": "x-ratelimit-reset-requests",
    },
    "tokens": {
        "limit": "x-ratelimit-limit-tokens",
        "remaining": "x-ratelimit-remaining-tokens",
        "reset": "x-ratelimit-reset-tokens",
    },
}

OPENROUTER_FREE_FALLBACK_MODELS = [
    "meta-llama/llama-3.3-70b-instruct:free",
    "mistralai/devstral-2512:free",
    "deepseek/deepseek-r1-0528:free",
    "tngtech/deepseek-r1t-chimera:free",
    "google/gemma-3-27b-it:free",
    "qwen/qwen3-coder:free",
    "xiaomi/mimo-v2-flash:free",
    "allenai/molmo-2-8b:free",
]


def build_openai_messages(
    system_prompt: str,
    messages: Sequence[ChatMessage],
    attachments: Sequence[NormalizedAttachment],
) -> List[Dict[str, Any]]:
    """Chat-completions message list with attachments as content parts."""
    out: List[Dict[str, Any]] = [{"role": "system", "content": system_prompt}]
    out.extend({"role": m.role, "content": m.text} for m in messages)
    if not attachments:
        return out

    index = BaseProviderAdapter.last_user_index(out)
    if index == -1:
        return out

    original = out[index]["content"] or ""
    parts: List[Dict[str, Any]] = []
    if original:
        parts.append({"type": "text", "text": original})
    for attachment in attachments:
        if isinstance(attachment, ImageAttachment):
            parts.append({"type": "text", "text": f"Image: {attachment.name}"})
            parts.append({"type": "image_url", "image_url": {"url": attachment.data_url}})
        else:
            parts.append({"type": "text", "text": BaseProviderAdapter.describe_attachment(attachment)})
    out[index] = {"role": "user", "content": parts}
    return out


class OpenAICompatibleAdapter(BaseProviderAdapter):
    """Adapter for chat-completion delta SSE streams."""

    provider_type = ProviderType.OPENAI
    default_base_url = "https://api.openai.com/v1"
    missing_key_hint = "Set OPENAI_API_KEY."
    rate_limit_headers = OPENAI_RATE_LIMIT_HEADERS

    @property
    def endpoint(self) -> str:
        base = self.base_url
        if base.endswith("/chat/completions"):
            return base
        return f"{base}/chat/completions"

    def headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.config.api_key}",
        }
        headers.update(self.config.extra_headers)
        return headers

    def build_body(self, messages: List[Dict[str, Any]], model: str) -> Dict[str, Any]:
        return {"model": model, "messages": messages, "stream": True}

    def build_request(
        self,
        system_prompt: str,
        messages: Sequence[ChatMessage],
        attachments: Sequence[NormalizedAttachment],
        model: str,
    ) -> ProviderRequest:
        payload = build_openai_messages(
            system_prompt, messages, self.usable_attachments(messages, attachments)
        )
        return ProviderRequest(
            method="POST",
            url=self.endpoint,
            headers=self.headers(),
            body=self.build_body(payload, model),
        )

    async def decode(self, chunks: AsyncIterator[bytes]) -> AsyncIterator[StreamEvent]:
        reader = SSEFrameReader()
        async for text in iter_text(chunks):
            for frame in reader.feed(text):
                if frame.data == "[DONE]":
                    return
                event = self._decode_frame(frame.data)
                if event is not None:
                    yield event
        for frame in reader.flush():
            if frame.data == "[DONE]":
                return
            event = self._decode_frame(frame.data)
            if event is not None:
                yield event

    def _decode_frame(self, data: str) -> Optional[TextEvent]:
        try:
            payload = parse_json_frame(data)
        except FrameDecodeError as e:
            logger.debug("%s: skipping frame: %s", self.name, e)
            return None
        if not isinstance(payload, dict):
            return None
        if payload.get("error"):
            raise UpstreamError(
                self.upstream_error_message(payload, f"{self.name} stream error"),
                provider=self.name,
            )
        choices = payload.get("choices") or []
        if not choices or not isinstance(choices[0], dict):
            return None
        content = (choices[0].get("delta") or {}).get("content")
        if isinstance(content, str) and content:
            return TextEvent(content)
        return None


class OpenAICompletionAdapter(OpenAICompatibleAdapter):
    """
    Single-shot JSON adapter.

    Reasoning models (o1 family) are requested without streaming; the
    whole completion document arrives at once and becomes one text event.
    """

    def build_body(self, messages: List[Dict[str, Any]], model: str) -> Dict[str, Any]:
        return {"model": model, "messages": messages, "stream": False}

    def build_request(self, system_prompt, messages, attachments, model) -> ProviderRequest:
        request = super().build_request(system_prompt, messages, attachments, model)
        request.stream = False
        return request

    async def decode(self, chunks: AsyncIterator[bytes]) -> AsyncIterator[StreamEvent]:
        parts: List[str] = []
        async for text in iter_text(chunks):
            parts.append(text)
        document = "".join(parts).strip()
        if not document:
            return
        try:
            payload = parse_json_frame(document)
        except FrameDecodeError as e:
            logger.debug("%s: unreadable completion document: %s", self.name, e)
            return
        if not isinstance(payload, dict):
            return
        if payload.get("error"):
            raise UpstreamError(
                self.upstream_error_message(payload, f"{self.name} request failed"),
                provider=self.name,
            )
        choices = payload.get("choices") or []
        if not choices:
            return
        content = (choices[0].get("message") or {}).get("content")
        if isinstance(content, str) and content:
            yield TextEvent(content)


class OpenRouterAdapter(OpenAICompatibleAdapter):
    provider_type = ProviderType.OPENROUTER
    default_base_url = "https://openrouter.ai/api/v1"
    missing_key_hint = "Set OPENROUTER_API_KEY (or NEXT_PUBLIC_OPENROUTER_API_KEY)."
    rate_limit_headers = {}

    _PRIVACY = re.compile(r"free model publication|openrouter\.ai/settings/privacy", re.IGNORECASE)
    _RATE_LIMITED = re.compile(r"\b429\b|rate-?limited|too many requests", re.IGNORECASE)

    def headers(self) -> Dict[str, str]:
        headers = super().headers()
        headers["HTTP-Referer"] = self.config.app_url or "http://localhost:1998"
        headers["X-Title"] = "OS Athena"
        return headers

    def fallback_chain(self, model: str) -> List[str]:
        if not model.endswith(":free"):
            return [model]
        chain: List[str] = []
        for candidate in [model] + OPENROUTER_FREE_FALLBACK_MODELS:
            if candidate not in chain:
                chain.append(candidate)
        return chain

    def format_error(self, error: BaseException) -> str:
        message = str(error)
        if self._PRIVACY.search(message):
            return (
                "OpenRouter free models are blocked by your privacy settings. "
                "Enable “Free model publication” at "
                "https://openrouter.ai/settings/privacy and try again."
            )
        status = getattr(error, "status", None)
        if status == 429 or self._RATE_LIMITED.search(message):
            return "OpenRouter free models are temporarily rate-limited. Try again in a minute or switch models."
        return super().format_error(error)

    def classify_error(self, error: BaseException) -> ErrorClass:
        if self._PRIVACY.search(str(error)):
            return ErrorClass.FATAL
        return super().classify_error(error)


class GroqAdapter(OpenAICompatibleAdapter):
    provider_type = ProviderType.GROQ
    default_base_url = "https://api.groq.com/openai/v1"
    missing_key_hint = "Set GROQ_API_KEY (recommended) or NEXT_PUBLIC_GROQ_API_KEY."
    supports_images = False


class FireworksAdapter(OpenAICompatibleAdapter):
    provider_type = ProviderType.FIREWORKS
    default_base_url = "https://api.fireworks.ai/inference/v1"
    missing_key_hint = "Set FIREWORKS_API_KEY."
    rate_limit_headers = {}


class MistralAdapter(OpenAICompatibleAdapter):
    provider_type = ProviderType.MISTRAL
    default_base_url = "https://api.mistral.ai/v1"
    missing_key_hint = "Set MISTRAL_API_KEY."
    rate_limit_headers = {}


class OpenCodeZenAdapter(OpenAICompatibleAdapter):
    provider_type = ProviderType.OPENCODEZEN
    default_base_url = "https://opencode.ai/zen/v1"
    missing_key_hint = "Set OPENCODE_API_KEY."
    rate_limit_headers = {}


class ZaiAdapter(OpenAICompatibleAdapter):
    """GLM models through the Z.ai coding-plan endpoint."""

    provider_type = ProviderType.ZAI
    default_base_url = "https://api.z.ai/api/coding/paas/v4"
    missing_key_hint = (
        "Z.ai API key is required to use GLM models. Subscribe to the GLM Coding Plan "
        "at https://z.ai/subscribe and set ZAI_API_KEY (or ZHIPU_API_KEY)."
    )
    rate_limit_headers = {}

    def format_error(self, error: BaseException) -> str:
        return f"Z.ai streaming failed: {super().format_error(error)}"
