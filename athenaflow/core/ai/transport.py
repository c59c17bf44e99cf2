"""
HTTP transport for provider requests.

The gateway only needs three things from a response: the status, the
headers and the body as a byte-chunk iterator. Tests swap in a fake
transport with the same `open()` shape.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Mapping, Optional

import aiohttp

from athenaflow.core.ai.base import ProviderRequest
from athenaflow.core.errors import UpstreamError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 300
CHUNK_SIZE = 4096


@dataclass
class UpstreamResponse:
    status: int
    headers: Mapping[str, str]
    chunks: AsyncIterator[bytes]
    read_body: Callable[[], Awaitable[bytes]]

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    async def text(self) -> str:
        body = await self.read_body()
        return body.decode("utf-8", errors="replace")


class AiohttpTransport:
    """
    aiohttp-backed transport.

    A session passed in is reused and left open; otherwise one session is
    created per request and closed with it.
    """

    def __init__(self, session: Optional[aiohttp.ClientSession] = None, timeout: float = DEFAULT_TIMEOUT):
        self._session = session
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    @asynccontextmanager
    async def open(self, request: ProviderRequest) -> AsyncIterator[UpstreamResponse]:
        owns_session = self._session is None
        session = self._session or aiohttp.ClientSession(timeout=self._timeout)
        try:
            async with session.request(
                request.method,
                request.url,
                headers=request.headers,
                json=request.body,
            ) as resp:
                logger.debug("%s %s -> %s", request.method, _redact(request.url), resp.status)
                yield UpstreamResponse(
                    status=resp.status,
                    headers=dict(resp.headers),
                    chunks=resp.content.iter_chunked(CHUNK_SIZE),
                    read_body=resp.read,
                )
        except aiohttp.ClientError as e:
            raise UpstreamError(f"Request to {_redact(request.url)} failed: {e}") from e
        finally:
            if owns_session:
                await session.close()


def _redact(url: str) -> str:
    """Drop the query string, which may carry an API key."""
    return url.split("?", 1)[0]
