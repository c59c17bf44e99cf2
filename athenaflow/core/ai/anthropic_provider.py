"""
Anthropic Provider Adapter

Claude streams a proprietary event envelope: `event: <name>` plus a
`data: {json}` payload whose own "type" repeats the event name. Only
text deltas become canonical events.
"""

import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

from athenaflow.core.ai.attachments import ImageAttachment, NormalizedAttachment
from athenaflow.core.ai.base import BaseProviderAdapter, ChatMessage, ProviderRequest, ProviderType
from athenaflow.core.ai.events import StreamEvent, TextEvent
from athenaflow.core.ai.framing import SSEEvent, SSEFrameReader, iter_text, parse_json_frame
from athenaflow.core.errors import FrameDecodeError, UpstreamError

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"

ANTHROPIC_RATE_LIMIT_HEADERS = {
    "requests": {
        "limit": "anthropic-ratelimit-requests-limit",
        "remaining": "anthropic-ratelimit-requests-remaining",
        "reset": "anthropic-ratelimit-requests-reset",
    },
    "tokens": {
        "limit": "anthropic-ratelimit-tokens-limit",
        "remaining": "anthropic-ratelimit-tokens-remaining",
        "reset": "anthropic-ratelimit-tokens-reset",
    },
}


class AnthropicAdapter(BaseProviderAdapter):
    """Claude messages API adapter."""

    provider_type = ProviderType.CLAUDE
    default_base_url = "https://api.anthropic.com/v1"
    missing_key_hint = "Set CLAUDE_API_KEY (or ANTHROPIC_API_KEY)."
    rate_limit_headers = ANTHROPIC_RATE_LIMIT_HEADERS

    def build_messages(
        self,
        messages: Sequence[ChatMessage],
        attachments: Sequence[NormalizedAttachment],
    ) -> List[Dict[str, Any]]:
        out: List[Dict[str, Any]] = [{"role": m.role, "content": m.text} for m in messages]
        if not attachments:
            return out
        index = self.last_user_index(out)
        if index == -1:
            return out

        original = out[index]["content"] or ""
        blocks: List[Dict[str, Any]] = [
            {"type": "text", "text": original or "User sent attachments:"}
        ]
        for attachment in attachments:
            if isinstance(attachment, ImageAttachment):
                blocks.append({"type": "text", "text": f"Image: {attachment.name}"})
                blocks.append({
                    "type": "image",
                    "source": {
                        "type": "base64",
                        "media_type": attachment.mime_type,
                        "data": attachment.base64,
                    },
                })
            else:
                blocks.append({"type": "text", "text": self.describe_attachment(attachment)})
        out[index] = {"role": "user", "content": blocks}
        return out

    def build_request(
        self,
        system_prompt: str,
        messages: Sequence[ChatMessage],
        attachments: Sequence[NormalizedAttachment],
        model: str,
    ) -> ProviderRequest:
        headers = {
            "Content-Type": "application/json",
            "x-api-key": self.config.api_key or "",
            "anthropic-version": ANTHROPIC_VERSION,
        }
        headers.update(self.config.extra_headers)
        return ProviderRequest(
            method="POST",
            url=f"{self.base_url}/messages",
            headers=headers,
            body={
                "model": model,
                "max_tokens": self.config.max_tokens,
                "system": system_prompt,
                "messages": self.build_messages(messages, self.usable_attachments(messages, attachments)),
                "stream": True,
            },
        )

    async def decode(self, chunks: AsyncIterator[bytes]) -> AsyncIterator[StreamEvent]:
        reader = SSEFrameReader()
        async for text in iter_text(chunks):
            for frame in reader.feed(text):
                event = self._decode_frame(frame)
                if event is not None:
                    yield event
        for frame in reader.flush():
            event = self._decode_frame(frame)
            if event is not None:
                yield event

    def _decode_frame(self, frame: SSEEvent) -> Optional[TextEvent]:
        try:
            payload = parse_json_frame(frame.data)
        except FrameDecodeError as e:
            logger.debug("claude: skipping frame: %s", e)
            return None
        if not isinstance(payload, dict):
            return None

        kind = payload.get("type") or frame.event
        if kind == "error":
            raise UpstreamError(
                self.upstream_error_message(payload, "Claude stream error"),
                provider=self.name,
            )
        if kind != "content_block_delta":
            return None
        delta = payload.get("delta") or {}
        if delta.get("type") == "text_delta" and delta.get("text"):
            return TextEvent(delta["text"])
        return None
