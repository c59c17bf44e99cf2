"""
Gemini Provider Adapter

streamGenerateContent returns one top-level JSON array whose elements
arrive over time. Each element carries `candidates[].content.parts[].text`.
"""

import logging
from typing import Any, AsyncIterator, Dict, List, Sequence
from urllib.parse import quote

from athenaflow.core.ai.attachments import ImageAttachment, NormalizedAttachment
from athenaflow.core.ai.base import BaseProviderAdapter, ChatMessage, ProviderRequest, ProviderType
from athenaflow.core.ai.events import StreamEvent, TextEvent
from athenaflow.core.ai.framing import JsonArrayFrameReader, iter_text, parse_json_frame
from athenaflow.core.errors import FrameDecodeError, UpstreamError

logger = logging.getLogger(__name__)


class GeminiAdapter(BaseProviderAdapter):
    """Google Generative Language API adapter."""

    provider_type = ProviderType.GEMINI
    default_base_url = "https://generativelanguage.googleapis.com/v1beta"
    missing_key_hint = "Set GEMINI_API_KEY in Settings or environment variables."

    def build_contents(
        self,
        messages: Sequence[ChatMessage],
        attachments: Sequence[NormalizedAttachment],
    ) -> List[Dict[str, Any]]:
        contents: List[Dict[str, Any]] = [
            {"role": "user" if m.role == "user" else "model", "parts": [{"text": m.text}]}
            for m in messages
        ]
        if not attachments:
            return contents
        index = self.last_user_index(messages)
        if index == -1:
            return contents

        parts: List[Dict[str, Any]] = []
        if messages[index].text:
            parts.append({"text": messages[index].text})
        for attachment in attachments:
            if isinstance(attachment, ImageAttachment):
                parts.append({"text": f"Image: {attachment.name}"})
                parts.append({"inlineData": {"mimeType": attachment.mime_type, "data": attachment.base64}})
            else:
                parts.append({"text": self.describe_attachment(attachment)})
        contents[index] = {"role": "user", "parts": parts}
        return contents

    def build_request(
        self,
        system_prompt: str,
        messages: Sequence[ChatMessage],
        attachments: Sequence[NormalizedAttachment],
        model: str,
    ) -> ProviderRequest:
        url = (
            f"{self.base_url}/models/{quote(model, safe='-._')}:streamGenerateContent"
            f"?key={quote(self.config.api_key or '', safe='')}"
        )
        headers = {"Content-Type": "application/json"}
        headers.update(self.config.extra_headers)
        return ProviderRequest(
            method="POST",
            url=url,
            headers=headers,
            body={
                "systemInstruction": {"parts": [{"text": system_prompt}]},
                "contents": self.build_contents(messages, self.usable_attachments(messages, attachments)),
            },
        )

    async def decode(self, chunks: AsyncIterator[bytes]) -> AsyncIterator[StreamEvent]:
        reader = JsonArrayFrameReader()
        async for text in iter_text(chunks):
            for element in reader.feed(text):
                for event in self._decode_element(element):
                    yield event
        reader.flush()

    def _decode_element(self, element: str) -> List[TextEvent]:
        try:
            payload = parse_json_frame(element)
        except FrameDecodeError as e:
            logger.debug("gemini: skipping element: %s", e)
            return []
        if not isinstance(payload, dict):
            return []
        if payload.get("error"):
            raise UpstreamError(
                self.upstream_error_message(payload, "Gemini error"),
                status=(payload["error"] or {}).get("code") if isinstance(payload["error"], dict) else None,
                provider=self.name,
            )

        events: List[TextEvent] = []
        for candidate in payload.get("candidates") or []:
            parts = ((candidate or {}).get("content") or {}).get("parts") or []
            for part in parts:
                text = part.get("text") if isinstance(part, dict) else None
                if isinstance(text, str) and text:
                    events.append(TextEvent(text))
        return events
