from __future__ import annotations

from typing import Protocol

from .. import openai_async
from ..settings import settings


class LanguageClient(Protocol):
    """Text-in/text-out access to the language model.

    Both calls may raise `LLMUnavailable` (network, timeout, provider error or
    missing key). Callers own the recovery.
    """

    async def classify_intent(self, system_prompt: str, messages: list[dict[str, str]]) -> str: ...

    async def generate_text(
        self, system_prompt: str, prompt: str, *, max_tokens: int | None = None
    ) -> str: ...


class OpenRouterLanguageClient:
    async def classify_intent(self, system_prompt: str, messages: list[dict[str, str]]) -> str:
        return await openai_async.chat_completion(
            [{"role": "system", "content": system_prompt}, *messages],
            max_tokens=settings.CHAT_INTENT_MAX_TOKENS,
            temperature=settings.CHAT_INTENT_TEMPERATURE,
            timeout=settings.CHAT_INTENT_TIMEOUT_SECONDS,
            purpose="intent",
        )

    async def generate_text(
        self, system_prompt: str, prompt: str, *, max_tokens: int | None = None
    ) -> str:
        return await openai_async.chat_completion(
            [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": prompt},
            ],
            max_tokens=max_tokens or settings.CHAT_RESPONSE_MAX_TOKENS,
            temperature=settings.CHAT_RESPONSE_TEMPERATURE,
            purpose="response",
        )


__all__ = ["LanguageClient", "OpenRouterLanguageClient"]
