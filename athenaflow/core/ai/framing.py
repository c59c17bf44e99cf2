"""
Incremental stream framing.

Upstream bodies arrive as arbitrary byte chunks. These helpers buffer
until a complete frame is available and hand complete frames to the
adapters. Partial multi-byte characters are carried across chunks by an
incremental UTF-8 decoder.
"""

import codecs
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Iterator, List, Optional

from athenaflow.core.errors import FrameDecodeError

logger = logging.getLogger(__name__)


async def iter_text(chunks: AsyncIterator[bytes]) -> AsyncIterator[str]:
    """Decode a byte stream into text pieces without splitting characters."""
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    async for chunk in chunks:
        if not chunk:
            continue
        text = decoder.decode(chunk)
        if text:
            yield text
    tail = decoder.decode(b"", final=True)
    if tail:
        yield tail


def parse_json_frame(payload: str) -> Any:
    try:
        return json.loads(payload)
    except json.JSONDecodeError as e:
        raise FrameDecodeError(f"Malformed frame: {payload[:100]!r}") from e


# ----------------------------------------------------------------------
# Server-sent events
# ----------------------------------------------------------------------

@dataclass
class SSEEvent:
    event: Optional[str]
    data: str


class SSEFrameReader:
    """Splits an SSE body on blank lines into (event, data) blocks."""

    def __init__(self) -> None:
        self._buffer = ""

    def feed(self, text: str) -> Iterator[SSEEvent]:
        self._buffer += text.replace("\r\n", "\n")
        while True:
            end = self._buffer.find("\n\n")
            if end == -1:
                break
            block = self._buffer[:end]
            self._buffer = self._buffer[end + 2:]
            event = self._parse_block(block)
            if event is not None:
                yield event

    def flush(self) -> Iterator[SSEEvent]:
        block, self._buffer = self._buffer, ""
        if block.strip():
            event = self._parse_block(block)
            if event is not None:
                yield event

    @staticmethod
    def _parse_block(block: str) -> Optional[SSEEvent]:
        event_name: Optional[str] = None
        data_lines: List[str] = []
        for line in block.split("\n"):
            stripped = line.strip()
            if not stripped or stripped.startswith(":"):
                continue
            if stripped.startswith("event:"):
                event_name = stripped[6:].strip()
            elif stripped.startswith("data:"):
                data_lines.append(stripped[5:].lstrip())
        if not data_lines:
            return None
        return SSEEvent(event=event_name, data="\n".join(data_lines))


# ----------------------------------------------------------------------
# Newline-delimited JSON
# ----------------------------------------------------------------------

class LineFrameReader:
    """Yields complete, non-empty lines."""

    def __init__(self) -> None:
        self._buffer = ""

    def feed(self, text: str) -> Iterator[str]:
        self._buffer += text
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        for line in lines:
            line = line.strip()
            if line:
                yield line

    def flush(self) -> Iterator[str]:
        rest, self._buffer = self._buffer.strip(), ""
        if rest:
            yield rest


# ----------------------------------------------------------------------
# Streamed top-level JSON array: "[{...},\n{...}\n]"
# ----------------------------------------------------------------------

class JsonArrayFrameReader:
    """
    Extracts the elements of a top-level JSON array as they complete.

    Object boundaries are found by brace depth (string-aware), so one
    malformed element is skipped without losing the ones after it.
    """

    def __init__(self) -> None:
        self._buffer = ""

    def feed(self, text: str) -> Iterator[str]:
        self._buffer += text
        while True:
            self._buffer = self._buffer.lstrip(" \t\r\n[,")
            if not self._buffer or self._buffer.startswith("]"):
                if self._buffer.startswith("]"):
                    self._buffer = self._buffer[1:]
                return
            end = self._find_object_end(self._buffer)
            if end is None:
                return
            element, self._buffer = self._buffer[: end + 1], self._buffer[end + 1:]
            yield element

    def flush(self) -> None:
        rest, self._buffer = self._buffer.strip(), ""
        if rest:
            logger.debug("Discarding incomplete trailing array element: %r", rest[:100])

    @staticmethod
    def _find_object_end(buffer: str) -> Optional[int]:
        if not buffer.startswith("{"):
            # Not an object; skip to the next separator.
            comma = buffer.find(",")
            return comma - 1 if comma > 0 else None
        depth = 0
        in_string = False
        escaped = False
        for index, char in enumerate(buffer):
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return index
        return None
