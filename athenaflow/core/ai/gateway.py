"""
Streaming Gateway

Runs one chat turn against the resolved provider and yields canonical
events. Every call ends with exactly one DoneEvent or ErrorEvent, unless
the caller cancels, in which case OperationCancelled propagates.
"""

import logging
from typing import AsyncIterator, List, Optional, Sequence

from athenaflow.core.ai.attachments import NormalizedAttachment
from athenaflow.core.ai.base import BaseProviderAdapter, ChatMessage, ErrorClass
from athenaflow.core.ai.events import DoneEvent, ErrorEvent, RateLimitEvent, StreamEvent, TextEvent
from athenaflow.core.ai.factory import CredentialLookup, ProviderAdapterFactory, resolve_model
from athenaflow.core.ai.transport import AiohttpTransport
from athenaflow.core.cancellation import CancellationToken, ensure_token
from athenaflow.core.errors import ConfigurationError, OperationCancelled, UpstreamError
from athenaflow.services.config_service import EnvironmentCredentials

logger = logging.getLogger(__name__)


async def _guarded_chunks(chunks: AsyncIterator[bytes], token: CancellationToken) -> AsyncIterator[bytes]:
    """Re-yield upstream chunks, checking the token around every read."""
    iterator = chunks.__aiter__()
    while True:
        token.raise_if_cancelled()
        try:
            chunk = await token.wait_for(iterator.__anext__())
        except StopAsyncIteration:
            return
        yield chunk


class StreamingGateway:
    """
    Provider-agnostic chat streaming.

    Collaborators:
    - credentials: CredentialLookup, `(provider, key_name) -> str | None`
    - transport: object with an async-context-manager `open(request)`
    """

    def __init__(
        self,
        credentials: Optional[CredentialLookup] = None,
        transport=None,
        factory=ProviderAdapterFactory,
    ):
        self.credentials = credentials or EnvironmentCredentials()
        self.transport = transport or AiohttpTransport()
        self.factory = factory

    async def run_chat_turn(
        self,
        system_prompt: str,
        messages: Sequence[ChatMessage],
        attachments: Sequence[NormalizedAttachment] = (),
        model_id: Optional[str] = None,
        provider_id: Optional[str] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> AsyncIterator[StreamEvent]:
        token = ensure_token(cancel)
        token.raise_if_cancelled()

        resolved = resolve_model(model_id, provider_id)
        try:
            adapter = self.factory.create_from_credentials(resolved, self.credentials)
        except ConfigurationError as e:
            logger.warning("Cannot run %s: %s", resolved.label, e)
            yield ErrorEvent(str(e))
            return

        candidates = adapter.fallback_chain(resolved.api_model)
        logger.info("Chat turn via %s (%d candidate model(s))", resolved.label, len(candidates))

        forwarded = False
        for position, candidate in enumerate(candidates):
            token.raise_if_cancelled()
            try:
                async for event in self._stream_candidate(adapter, system_prompt, messages, attachments, candidate, token):
                    if isinstance(event, TextEvent):
                        forwarded = True
                    yield event
                    token.raise_if_cancelled()
            except OperationCancelled:
                raise
            except Exception as e:
                has_next = position < len(candidates) - 1
                if not forwarded and has_next and adapter.classify_error(e) == ErrorClass.FALLBACK:
                    logger.warning("%s:%s failed (%s); trying %s", adapter.name, candidate, e, candidates[position + 1])
                    continue
                if not isinstance(e, (UpstreamError, ConfigurationError)):
                    logger.error("Unexpected stream failure from %s", adapter.name, exc_info=True)
                yield ErrorEvent(adapter.format_error(e))
                return
            yield DoneEvent()
            return

    async def _stream_candidate(
        self,
        adapter: BaseProviderAdapter,
        system_prompt: str,
        messages: Sequence[ChatMessage],
        attachments: Sequence[NormalizedAttachment],
        model: str,
        token: CancellationToken,
    ) -> AsyncIterator[StreamEvent]:
        request = adapter.build_request(system_prompt, messages, attachments, model)
        async with self.transport.open(request) as response:
            token.raise_if_cancelled()
            if not response.ok:
                body = (await token.wait_for(response.text())).strip()
                raise UpstreamError(
                    body or f"{adapter.name} request failed (HTTP {response.status})",
                    status=response.status,
                    provider=adapter.name,
                )

            windows = adapter.rate_limit_windows(response.headers)
            if windows:
                yield RateLimitEvent(adapter.name, windows)

            async for event in adapter.decode(_guarded_chunks(response.chunks, token)):
                yield event

    async def complete_chat_turn(
        self,
        system_prompt: str,
        messages: Sequence[ChatMessage],
        attachments: Sequence[NormalizedAttachment] = (),
        model_id: Optional[str] = None,
        provider_id: Optional[str] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> str:
        """
        Drain one turn and return the assembled text.

        Raises:
            UpstreamError: if the turn ends with an error event
        """
        parts: List[str] = []
        async for event in self.run_chat_turn(
            system_prompt, messages, attachments, model_id, provider_id, cancel
        ):
            if isinstance(event, TextEvent):
                parts.append(event.content)
            elif isinstance(event, ErrorEvent):
                raise UpstreamError(event.message)
        return "".join(parts)
