from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from typing import Any

from .planner import QueryPlanner
from .types import ChatTurn

logger = logging.getLogger(__name__)

FOLLOW_UP_PHRASES = frozenset(
    {
        "this event",
        "that event",
        "it",
        "this",
        "that",
        "give me more details",
        "tell me more",
        "what time",
        "how much",
        "where is",
        "directions",
        "more about",
        "explain",
    }
)

_FOLLOW_UP_RE = re.compile(
    r"\b(?:"
    + "|".join(re.escape(phrase) for phrase in sorted(FOLLOW_UP_PHRASES, key=len, reverse=True))
    + r")\b"
)

RECOMMENDATION_MARKER = "check out"
_RECOMMENDATION_RE = re.compile(
    r"check out\s+[*_\"']*(?P<event>[^*_\"'\n]+?)[*_\"']*\s+at\s+[*_\"']*(?P<venue>[^*_\"'\n.!?,]+)",
    re.IGNORECASE,
)


def is_follow_up(message: str) -> bool:
    """True when the message leans on something said earlier ("what time does it start?")."""
    return bool(_FOLLOW_UP_RE.search(message.lower()))


def scrape_recommendation(content: str) -> tuple[str, str | None] | None:
    """Pull `(event, venue)` out of "Check out <event> at <venue>" text."""
    match = _RECOMMENDATION_RE.search(content)
    if match:
        return match.group("event").strip(), match.group("venue").strip()
    marker = content.lower().find(RECOMMENDATION_MARKER)
    if marker < 0:
        return None
    tail = content[marker + len(RECOMMENDATION_MARKER) :].strip(" *_\"'")
    name = re.split(r"[.!?\n]", tail, maxsplit=1)[0].strip(" *_\"'")
    return (name, None) if name else None


async def resolve_reference(
    history: Sequence[ChatTurn], planner: QueryPlanner
) -> dict[str, Any] | None:
    """Find the event the latest recommending assistant turn talked about."""
    for turn in reversed(history):
        if turn.role != "assistant":
            continue
        scraped = None
        if RECOMMENDATION_MARKER in turn.content.lower():
            scraped = scrape_recommendation(turn.content)
        if turn.referenced_event_id is None and scraped is None:
            continue
        if turn.referenced_event_id is not None:
            event = await planner.event_details(turn.referenced_event_id)
            if event is not None:
                return event
            logger.info("Referenced event %s no longer exists", turn.referenced_event_id)
        if scraped is not None:
            name, venue = scraped
            event = await planner.find_event_by_name(name, venue)
            if event is None:
                logger.info("No event named %r for follow-up", name)
            return event
        return None
    return None


__all__ = ["FOLLOW_UP_PHRASES", "is_follow_up", "resolve_reference", "scrape_recommendation"]
