"""
Provider abstraction layer.

Adapters translate each upstream wire format into one canonical event
stream; the gateway routes, falls back and guarantees termination.
"""

from athenaflow.core.ai.base import BaseProviderAdapter, ChatMessage, ErrorClass, ProviderType
from athenaflow.core.ai.events import DoneEvent, ErrorEvent, RateLimitEvent, StreamEvent, TextEvent
from athenaflow.core.ai.factory import ProviderAdapterFactory, resolve_model
from athenaflow.core.ai.gateway import StreamingGateway

__all__ = [
    "BaseProviderAdapter",
    "ChatMessage",
    "ErrorClass",
    "ProviderType",
    "TextEvent",
    "RateLimitEvent",
    "ErrorEvent",
    "DoneEvent",
    "StreamEvent",
    "ProviderAdapterFactory",
    "resolve_model",
    "StreamingGateway",
]
