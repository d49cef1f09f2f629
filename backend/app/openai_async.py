"""Async client for the OpenAI-compatible chat completions API (OpenRouter)."""

from __future__ import annotations

import asyncio
from typing import Any

import httpx

from .metrics import llm_requests_total
from .settings import settings

_client: httpx.AsyncClient | None = None
_client_lock = asyncio.Lock()


class LLMUnavailable(RuntimeError):
    pass


def _headers() -> dict[str, str]:
    if not settings.llm_enabled:
        raise LLMUnavailable("OPENROUTER_API_KEY not configured")
    return {
        "Authorization": f"Bearer {settings.OPENROUTER_API_KEY}",
        "Content-Type": "application/json",
        "HTTP-Referer": settings.LLM_APP_REFERER,
        "X-Title": settings.LLM_APP_TITLE,
    }


async def _get_client() -> httpx.AsyncClient:
    global _client
    if _client is None:
        async with _client_lock:
            if _client is None:
                timeout = httpx.Timeout(
                    settings.LLM_TIMEOUT_SECONDS,
                    connect=settings.LLM_CONNECT_TIMEOUT_SECONDS,
                )
                base_url = settings.LLM_API_BASE.rstrip("/") or "https://openrouter.ai/api/v1"
                _client = httpx.AsyncClient(base_url=base_url, timeout=timeout)
    return _client


async def post_json(
    path: str, payload: dict[str, Any], *, timeout: float | None = None
) -> dict[str, Any]:
    headers = _headers()
    client = await _get_client()
    try:
        response = await client.post(path, json=payload, headers=headers, timeout=timeout)
    except httpx.HTTPError as exc:
        raise LLMUnavailable(f"Request failed: {exc}") from exc
    if response.status_code >= 400:
        raise LLMUnavailable(f"LLM error {response.status_code}: {response.text[:200]}")
    try:
        return response.json()
    except ValueError as exc:
        raise LLMUnavailable("Invalid JSON from LLM provider") from exc


async def chat_completion(
    messages: list[dict[str, str]],
    *,
    max_tokens: int,
    temperature: float,
    timeout: float | None = None,
    purpose: str = "response",
) -> str:
    """Run one chat completion and return the first choice's text, trimmed."""
    payload = {
        "model": settings.CHAT_MODEL,
        "messages": messages,
        "max_tokens": max_tokens,
        "temperature": temperature,
    }
    try:
        data = await post_json("/chat/completions", payload, timeout=timeout)
    except LLMUnavailable:
        llm_requests_total.labels(purpose=purpose, outcome="error").inc()
        raise
    try:
        content = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as exc:
        llm_requests_total.labels(purpose=purpose, outcome="malformed").inc()
        raise LLMUnavailable("LLM response missing message content") from exc
    if not isinstance(content, str) or not content.strip():
        llm_requests_total.labels(purpose=purpose, outcome="empty").inc()
        raise LLMUnavailable("LLM returned empty content")
    llm_requests_total.labels(purpose=purpose, outcome="ok").inc()
    return content.strip()


async def close_async_client() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
