from __future__ import annotations

import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

Role = Literal["user", "assistant"]
EntityType = Literal["Club", "Event", "User"]
CardType = Literal["events", "clubs", "mixed"]
IntentSource = Literal["model", "keyword"]


class IntentType(str, Enum):
    FIND_EVENTS = "find_events"
    FILTER_EVENTS = "filter_events"
    FIND_CLUBS = "find_clubs"
    FILTER_CLUBS = "filter_clubs"
    EVENT_QUESTION = "event_question"
    CLUB_QUESTION = "club_question"
    MY_BOOKINGS = "my_bookings"
    BOOKING_STATUS = "booking_status"
    BOOKING_DETAILS = "booking_details"
    CLUB_REGISTRATION = "club_registration"
    POLICY_QUERY = "policy_query"
    BOOKING_HELP = "booking_help"
    DIRECTIONS = "directions"
    GENERAL = "general"


EVENT_INTENTS = frozenset({IntentType.FIND_EVENTS, IntentType.FILTER_EVENTS})
CLUB_INTENTS = frozenset({IntentType.FIND_CLUBS, IntentType.FILTER_CLUBS})
BOOKING_INTENTS = frozenset(
    {IntentType.MY_BOOKINGS, IntentType.BOOKING_STATUS, IntentType.BOOKING_DETAILS}
)


class FallbackTier(str, Enum):
    AI_PLAN = "ai-plan"
    RULE_PLAN = "rule-plan"
    GENERIC_LISTING = "generic-listing"


@dataclass(frozen=True, slots=True)
class ChatTurn:
    role: Role
    content: str
    timestamp: str | None = None
    # set on assistant turns that recommended or described one event
    referenced_event_id: str | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> ChatTurn:
        role = payload.get("role")
        if role not in ("user", "assistant"):
            raise ValueError(f"unknown chat role {role!r}")
        ts = payload.get("timestamp")
        ref = payload.get("referencedEventId")
        return cls(
            role=role,
            content=str(payload.get("content") or ""),
            timestamp=str(ts) if ts is not None else None,
            referenced_event_id=str(ref) if ref else None,
        )


@dataclass(frozen=True, slots=True)
class ExtractedSlots:
    event_name: str | None = None
    club_name: str | None = None
    location: str | None = None
    near_me: bool = False
    date: str | None = None
    filters: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"nearMe": self.near_me}
        if self.event_name:
            out["eventName"] = self.event_name
        if self.club_name:
            out["clubName"] = self.club_name
        if self.location:
            out["location"] = self.location
        if self.date:
            out["date"] = self.date
        if self.filters:
            out["filters"] = dict(self.filters)
        return out


@dataclass(frozen=True, slots=True)
class Intent:
    type: IntentType
    confidence: float
    slots: ExtractedSlots = field(default_factory=ExtractedSlots)
    query: str | None = None
    source: IntentSource = "model"

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "type": self.type.value,
            "confidence": self.confidence,
            "extractedSlots": self.slots.to_dict(),
        }
        if self.query:
            out["query"] = self.query
        return out


@dataclass(frozen=True, slots=True)
class UserLocation:
    latitude: float
    longitude: float


@dataclass(slots=True)
class QueryPlan:
    target_entity: EntityType
    predicate: dict[str, Any]
    populate: list[dict[str, Any]] = field(default_factory=list)
    limit: int = 10
    projection: str | None = None
    sort: list[tuple[str, int]] = field(default_factory=list)


@dataclass(slots=True)
class QueryResult:
    data: list[dict[str, Any]]
    entity_type: EntityType
    tier: FallbackTier


@dataclass(slots=True)
class RetrievedData:
    events: list[dict[str, Any]] = field(default_factory=list)
    clubs: list[dict[str, Any]] = field(default_factory=list)
    bookings: list[dict[str, Any]] = field(default_factory=list)
    tier: FallbackTier | None = None

    @property
    def empty(self) -> bool:
        return not (self.events or self.clubs or self.bookings)


@dataclass(slots=True)
class CardBlock:
    type: CardType
    title: str
    items: list[dict[str, Any]]

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "title": self.title, "items": list(self.items)}


@dataclass(slots=True)
class ChatRequest:
    message: Any
    history: tuple[ChatTurn, ...] = ()
    city: str | None = None
    user_location: UserLocation | None = None
    user_id: str | None = None
    event_id: str | None = None
    screen: str | None = None
    preferences: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ChatOutcome:
    """Everything the pipeline produced for one message."""

    response: str
    intent: Intent
    cards: list[CardBlock]
    response_type: int
    tier: FallbackTier | None = None
    referenced_event_id: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "response": self.response,
            "intent": self.intent.type.value,
            "confidence": self.intent.confidence,
            "cards": [card.to_dict() for card in self.cards],
            "responseType": self.response_type,
        }
        if self.referenced_event_id:
            payload["referencedEventId"] = self.referenced_event_id
        return payload


# ---------------------------------------------------------------------------
# Stream events
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class StreamEvent:
    terminal = False

    def to_wire(self) -> dict[str, Any]:
        raise NotImplementedError


@dataclass(frozen=True, slots=True)
class ConnectionEvent(StreamEvent):
    message: str = "Connected to Cavens AI"

    def to_wire(self) -> dict[str, Any]:
        return {"type": "connection", "message": self.message}


@dataclass(frozen=True, slots=True)
class ThinkingEvent(StreamEvent):
    message: str = "Thinking..."

    def to_wire(self) -> dict[str, Any]:
        return {"type": "thinking", "message": self.message}


@dataclass(frozen=True, slots=True)
class TokenEvent(StreamEvent):
    text: str
    is_final: bool = False

    def to_wire(self) -> dict[str, Any]:
        return {"type": "token", "token": self.text, "isComplete": self.is_final}


@dataclass(frozen=True, slots=True)
class HeartbeatEvent(StreamEvent):
    ts: int = field(default_factory=lambda: int(time.time() * 1000))

    def to_wire(self) -> dict[str, Any]:
        return {"type": "heartbeat", "ts": self.ts}


@dataclass(frozen=True, slots=True)
class CompleteEvent(StreamEvent):
    payload: dict[str, Any]
    terminal = True

    def to_wire(self) -> dict[str, Any]:
        return {"type": "complete", **self.payload}


@dataclass(frozen=True, slots=True)
class ErrorEvent(StreamEvent):
    message: str
    terminal = True

    def to_wire(self) -> dict[str, Any]:
        return {"type": "error", "message": self.message}


__all__ = [
    "BOOKING_INTENTS",
    "CLUB_INTENTS",
    "EVENT_INTENTS",
    "CardBlock",
    "ChatOutcome",
    "ChatRequest",
    "ChatTurn",
    "CompleteEvent",
    "ConnectionEvent",
    "EntityType",
    "ErrorEvent",
    "ExtractedSlots",
    "FallbackTier",
    "HeartbeatEvent",
    "Intent",
    "IntentType",
    "QueryPlan",
    "QueryResult",
    "RetrievedData",
    "StreamEvent",
    "ThinkingEvent",
    "TokenEvent",
    "UserLocation",
]
