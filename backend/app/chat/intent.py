from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from hashlib import sha256

from pydantic import ValidationError

from ..json_utils import extract_json_dict
from ..metrics import chat_intents_total
from ..openai_async import LLMUnavailable
from .contracts import IntentPayload
from .language import LanguageClient
from .prompts import intent_system_prompt
from .types import ChatTurn, ExtractedSlots, Intent, IntentType

logger = logging.getLogger(__name__)

HISTORY_TURNS = 6
FALLBACK_CONFIDENCE = 0.7
GENERAL_CONFIDENCE = 0.5

_EVENT_WORDS = re.compile(r"\b(events?|part(?:y|ies))\b", re.IGNORECASE)
_CLUB_WORDS = re.compile(r"\b(clubs?|venues?)\b", re.IGNORECASE)
_NEAR_ME = re.compile(r"\b(near\s*me|nearby|close\s+to\s+me|around\s+me)\b", re.IGNORECASE)


def _fingerprint(message: str) -> str:
    return sha256(message.encode("utf-8")).hexdigest()[:10]


def clamp_confidence(value: float) -> float:
    return min(1.0, max(0.0, float(value)))


def keyword_intent(message: str) -> Intent:
    """Local classification used when the model is unreachable or its reply is unusable."""
    slots = ExtractedSlots(near_me=bool(_NEAR_ME.search(message)))
    if _EVENT_WORDS.search(message):
        intent_type, confidence = IntentType.FIND_EVENTS, FALLBACK_CONFIDENCE
    elif _CLUB_WORDS.search(message):
        intent_type, confidence = IntentType.FIND_CLUBS, FALLBACK_CONFIDENCE
    else:
        intent_type, confidence = IntentType.GENERAL, GENERAL_CONFIDENCE
    return Intent(
        type=intent_type,
        confidence=confidence,
        slots=slots,
        query=message.strip() or None,
        source="keyword",
    )


def history_messages(history: Sequence[ChatTurn], limit: int) -> list[dict[str, str]]:
    return [{"role": turn.role, "content": turn.content} for turn in list(history)[-limit:]]


def parse_intent_payload(raw: str) -> Intent:
    """Turn raw classifier output into an Intent. Raises ValueError when unusable."""
    try:
        payload = IntentPayload.model_validate(extract_json_dict(raw))
    except ValidationError as exc:
        raise ValueError(f"intent payload invalid: {exc.error_count()} error(s)") from exc
    slots = payload.extracted_slots
    return Intent(
        type=payload.type,
        confidence=clamp_confidence(payload.confidence),
        slots=ExtractedSlots(
            event_name=slots.event_name,
            club_name=slots.club_name,
            location=slots.location,
            near_me=slots.near_me,
            date=slots.date,
            filters=dict(slots.filters),
        ),
        query=payload.query,
        source="model",
    )


class IntentResolver:
    def __init__(self, language: LanguageClient) -> None:
        self._language = language

    async def resolve(self, message: str, history: Sequence[ChatTurn] = ()) -> Intent:
        """Classify `message`; never raises."""
        digest = _fingerprint(message)
        messages = [*history_messages(history, HISTORY_TURNS), {"role": "user", "content": message}]
        try:
            raw = await self._language.classify_intent(intent_system_prompt(), messages)
            intent = parse_intent_payload(raw)
        except LLMUnavailable as exc:
            logger.warning("Intent model unavailable (%s): %s", digest, exc)
            intent = keyword_intent(message)
        except ValueError as exc:
            logger.warning("Intent reply unusable (%s): %s", digest, exc)
            intent = keyword_intent(message)
        except Exception:
            logger.exception("Intent classification crashed (%s)", digest)
            intent = keyword_intent(message)
        chat_intents_total.labels(intent=intent.type.value, source=intent.source).inc()
        logger.debug("Intent resolved %s -> %s", digest, intent.to_dict())
        return intent


__all__ = [
    "IntentResolver",
    "clamp_confidence",
    "keyword_intent",
    "parse_intent_payload",
]
