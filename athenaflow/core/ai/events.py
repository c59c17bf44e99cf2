"""
Canonical stream events.

Every provider adapter translates its wire format into these four
event types. Nothing downstream of the gateway may depend on anything
else.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Union


@dataclass(frozen=True)
class RateLimitWindow:
    """Snapshot of one provider rate-limit resource class."""
    limit: Optional[int] = None
    remaining: Optional[int] = None
    reset_at: Optional[datetime] = None

    def is_empty(self) -> bool:
        return self.limit is None and self.remaining is None and self.reset_at is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "limit": self.limit,
            "remaining": self.remaining,
            "resetAt": self.reset_at.isoformat() if self.reset_at else None,
        }


@dataclass(frozen=True)
class TextEvent:
    content: str
    type: str = field(default="text", init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "content": self.content}


@dataclass(frozen=True)
class RateLimitEvent:
    provider: str
    window: Dict[str, RateLimitWindow]
    type: str = field(default="rate_limit", init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "provider": self.provider,
            "rateLimit": {name: w.to_dict() for name, w in self.window.items()},
        }


@dataclass(frozen=True)
class ErrorEvent:
    message: str
    type: str = field(default="error", init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "error": self.message}


@dataclass(frozen=True)
class DoneEvent:
    type: str = field(default="done", init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type}


StreamEvent = Union[TextEvent, RateLimitEvent, ErrorEvent, DoneEvent]


def to_json_line(event: StreamEvent) -> str:
    """Serialize one event as a single line of tagged JSON."""
    return json.dumps(event.to_dict(), ensure_ascii=False) + "\n"


def is_terminal(event: StreamEvent) -> bool:
    return isinstance(event, (ErrorEvent, DoneEvent))
