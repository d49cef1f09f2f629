"""Conversational query and streaming-response engine for the in-app assistant."""

from .engine import ChatEngine
from .errors import InputValidationError, PlanRejected, QueryChainExhausted
from .language import LanguageClient, OpenRouterLanguageClient
from .streaming import StreamChannel, sse_body, start_session

__all__ = [
    "ChatEngine",
    "InputValidationError",
    "LanguageClient",
    "OpenRouterLanguageClient",
    "PlanRejected",
    "QueryChainExhausted",
    "StreamChannel",
    "sse_body",
    "start_session",
]
