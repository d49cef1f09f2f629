"""Per-session event channel for server-sent chat responses.

Events go through one queue with one consumer, so the client sees them in the
order they were sent. Once the terminal event is queued, or the client goes
away, every further send is dropped.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import re
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING

from ..metrics import chat_stream_sessions, chat_terminal_events_total
from ..settings import settings
from .errors import InputValidationError, QueryChainExhausted
from .prompts import APOLOGY
from .types import (
    ChatRequest,
    CompleteEvent,
    ConnectionEvent,
    ErrorEvent,
    HeartbeatEvent,
    StreamEvent,
    ThinkingEvent,
    TokenEvent,
)

if TYPE_CHECKING:
    from .engine import ChatEngine

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"\s*\S+(?:\s+$)?")

# producer tasks outlive the HTTP response when the client disconnects
_background_tasks: set[asyncio.Task[None]] = set()


def tokenize(text: str) -> list[str]:
    """Split on whitespace, keeping the whitespace so the pieces join back to `text`."""
    tokens = _TOKEN_RE.findall(text)
    if not tokens and text:
        return [text]
    return tokens


def sse_frame(event: StreamEvent) -> str:
    return f"data: {json.dumps(event.to_wire(), ensure_ascii=False)}\n\n"


class StreamChannel:
    def __init__(
        self,
        *,
        heartbeat_seconds: float | None = None,
        token_delay_ms: int | None = None,
    ) -> None:
        self._queue: asyncio.Queue[StreamEvent | None] = asyncio.Queue()
        self._heartbeat_seconds = (
            settings.CHAT_HEARTBEAT_SECONDS if heartbeat_seconds is None else heartbeat_seconds
        )
        delay_ms = settings.CHAT_TOKEN_DELAY_MS if token_delay_ms is None else token_delay_ms
        self._token_delay = max(0, delay_ms) / 1000
        self._heartbeat: asyncio.Task[None] | None = None
        self._connected = True
        self._finished = False
        self.heartbeat_cancellations = 0

    @property
    def live(self) -> bool:
        return self._connected and not self._finished

    def send(self, event: StreamEvent) -> bool:
        """Queue an event; returns False when the session no longer accepts writes."""
        if not self.live:
            return False
        self._queue.put_nowait(event)
        if event.terminal:
            self._finished = True
            chat_terminal_events_total.labels(type=event.to_wire()["type"]).inc()
            self._queue.put_nowait(None)
        return True

    def start_heartbeat(self) -> None:
        if self._heartbeat is None and self.live:
            self._heartbeat = asyncio.create_task(self._beat())

    async def _beat(self) -> None:
        while True:
            await asyncio.sleep(self._heartbeat_seconds)
            if not self.send(HeartbeatEvent()):
                return

    async def stream_text(self, text: str) -> None:
        tokens = tokenize(text)
        last = len(tokens) - 1
        for index, token in enumerate(tokens):
            if not self.send(TokenEvent(text=token, is_final=index == last)):
                return
            if index < last and self._token_delay:
                await asyncio.sleep(self._token_delay)

    def _stop_heartbeat(self) -> asyncio.Task[None] | None:
        task, self._heartbeat = self._heartbeat, None
        if task is not None:
            task.cancel()
            self.heartbeat_cancellations += 1
        return task

    def disconnect(self) -> None:
        """Mark the client as gone and stop the heartbeat; later writes become no-ops."""
        if self._connected:
            self._connected = False
            self._stop_heartbeat()
            if not self._finished:
                logger.info("Chat stream client disconnected before the terminal event")

    async def close(self) -> None:
        """Stop the heartbeat and end the event iterator. Safe to call more than once."""
        task = self._stop_heartbeat()
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if not self._finished:
            self._finished = True
            self._queue.put_nowait(None)

    async def events(self) -> AsyncIterator[StreamEvent]:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event


async def run_session(engine: ChatEngine, request: ChatRequest, channel: StreamChannel) -> None:
    """Drive one streaming session: connection, thinking, tokens, then one terminal event."""
    chat_stream_sessions.inc()
    try:
        try:
            engine.validate(request)
        except InputValidationError as exc:
            channel.send(ErrorEvent(message=str(exc)))
            return
        channel.send(ConnectionEvent())
        channel.send(ThinkingEvent())
        channel.start_heartbeat()
        try:
            outcome = await engine.run(request)
        except QueryChainExhausted as exc:
            logger.error("Chat stream failed: %s", exc)
            channel.send(ErrorEvent(message=APOLOGY))
            return
        except Exception:
            logger.exception("Chat stream crashed")
            channel.send(ErrorEvent(message=APOLOGY))
            return
        await channel.stream_text(outcome.response)
        channel.send(CompleteEvent(payload=outcome.to_payload()))
    finally:
        await channel.close()
        chat_stream_sessions.dec()


def start_session(
    engine: ChatEngine,
    request: ChatRequest,
    *,
    heartbeat_seconds: float | None = None,
    token_delay_ms: int | None = None,
) -> StreamChannel:
    channel = StreamChannel(heartbeat_seconds=heartbeat_seconds, token_delay_ms=token_delay_ms)
    task = asyncio.create_task(run_session(engine, request, channel))
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return channel


async def sse_body(channel: StreamChannel) -> AsyncIterator[str]:
    """Render channel events as `data: <json>` frames until the terminal event."""
    try:
        async for event in channel.events():
            yield sse_frame(event)
    finally:
        channel.disconnect()


__all__ = [
    "StreamChannel",
    "run_session",
    "sse_body",
    "sse_frame",
    "start_session",
    "tokenize",
]
