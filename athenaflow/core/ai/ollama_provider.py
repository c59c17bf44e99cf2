"""
Ollama Provider Adapter

Ollama's /api/chat streams one JSON object per line. Images travel in a
side-channel `images` list of bare base64 strings.
"""

import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence
from urllib.parse import urlparse

from athenaflow.core.ai.attachments import ImageAttachment, NormalizedAttachment
from athenaflow.core.ai.base import BaseProviderAdapter, ChatMessage, ProviderRequest, ProviderType
from athenaflow.core.ai.events import StreamEvent, TextEvent
from athenaflow.core.ai.framing import LineFrameReader, iter_text, parse_json_frame
from athenaflow.core.errors import FrameDecodeError, UpstreamError

logger = logging.getLogger(__name__)

DEFAULT_OLLAMA_URL = "http://localhost:11434"


def is_ngrok_host(url: str) -> bool:
    parsed = urlparse(url if "://" in url else f"http://{url}")
    return "ngrok" in (parsed.hostname or "").lower()


class OllamaAdapter(BaseProviderAdapter):
    """Local or tunnelled Ollama daemon."""

    provider_type = ProviderType.OLLAMA
    default_base_url = DEFAULT_OLLAMA_URL
    requires_api_key = False

    def build_messages(
        self,
        system_prompt: str,
        messages: Sequence[ChatMessage],
        attachments: Sequence[NormalizedAttachment],
    ) -> List[Dict[str, Any]]:
        out: List[Dict[str, Any]] = [{"role": "system", "content": system_prompt}]
        out.extend({"role": m.role, "content": m.text} for m in messages)
        if not attachments:
            return out
        index = self.last_user_index(out)
        if index == -1:
            return out

        content = out[index]["content"] or ""
        images: List[str] = []
        for attachment in attachments:
            if isinstance(attachment, ImageAttachment):
                images.append(attachment.base64)
                content += f"\n\n[Image: {attachment.name}]"
            else:
                content += f"\n\n{self.describe_attachment(attachment)}"

        message: Dict[str, Any] = {"role": "user", "content": content or "User sent attachments."}
        if images:
            message["images"] = images
        out[index] = message
        return out

    def headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        if is_ngrok_host(self.base_url):
            headers["ngrok-skip-browser-warning"] = "true"
        # Cloudflare Access credentials come in through extra_headers.
        headers.update(self.config.extra_headers)
        return headers

    def build_request(
        self,
        system_prompt: str,
        messages: Sequence[ChatMessage],
        attachments: Sequence[NormalizedAttachment],
        model: str,
    ) -> ProviderRequest:
        return ProviderRequest(
            method="POST",
            url=f"{self.base_url}/api/chat",
            headers=self.headers(),
            body={
                "model": model,
                "messages": self.build_messages(
                    system_prompt, messages, self.usable_attachments(messages, attachments)
                ),
                "stream": True,
            },
        )

    async def decode(self, chunks: AsyncIterator[bytes]) -> AsyncIterator[StreamEvent]:
        reader = LineFrameReader()
        async for text in iter_text(chunks):
            for line in reader.feed(text):
                event, done = self._decode_line(line)
                if event is not None:
                    yield event
                if done:
                    return
        for line in reader.flush():
            event, _ = self._decode_line(line)
            if event is not None:
                yield event

    def _decode_line(self, line: str):
        try:
            payload = parse_json_frame(line)
        except FrameDecodeError as e:
            logger.debug("ollama: skipping line: %s", e)
            return None, False
        if not isinstance(payload, dict):
            return None, False
        if payload.get("error"):
            raise UpstreamError(str(payload["error"]), provider=self.name)

        content = (payload.get("message") or {}).get("content")
        event: Optional[TextEvent] = TextEvent(content) if isinstance(content, str) and content else None
        return event, bool(payload.get("done"))
