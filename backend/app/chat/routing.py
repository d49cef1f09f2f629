from __future__ import annotations

from dataclasses import dataclass

from .prompts import RESPONSE_TYPE_CODES, policy_type
from .types import IntentType


@dataclass(frozen=True, slots=True)
class Route:
    composer: str
    response_kind: str
    uses_store: bool = False


ROUTES: dict[IntentType, Route] = {
    IntentType.FIND_EVENTS: Route("events", "events", uses_store=True),
    IntentType.FILTER_EVENTS: Route("events", "events", uses_store=True),
    IntentType.FIND_CLUBS: Route("clubs", "clubs", uses_store=True),
    IntentType.FILTER_CLUBS: Route("clubs", "clubs", uses_store=True),
    IntentType.EVENT_QUESTION: Route("event_question", "event_question", uses_store=True),
    IntentType.CLUB_QUESTION: Route("club_question", "club_question", uses_store=True),
    IntentType.MY_BOOKINGS: Route("my_bookings", "my_bookings", uses_store=True),
    IntentType.BOOKING_STATUS: Route("booking_status", "booking_status", uses_store=True),
    IntentType.BOOKING_DETAILS: Route("booking_details", "booking_details", uses_store=True),
    IntentType.CLUB_REGISTRATION: Route("club_registration", "club_registration"),
    IntentType.POLICY_QUERY: Route("policy", "booking_policies"),
    IntentType.BOOKING_HELP: Route("booking_help", "booking_help"),
    IntentType.DIRECTIONS: Route("directions", "directions"),
    IntentType.GENERAL: Route("general", "general"),
}

_missing = set(IntentType) - set(ROUTES)
if _missing:
    raise RuntimeError(f"No route for intents: {sorted(item.value for item in _missing)}")


def route_for(intent_type: IntentType) -> Route:
    return ROUTES[intent_type]


def response_type(intent_type: IntentType, message: str) -> int:
    kind = ROUTES[intent_type].response_kind
    if intent_type is IntentType.POLICY_QUERY:
        kind = {
            "refund": "refund_policy",
            "cancellation": "cancellation_policy",
        }.get(policy_type(message), "booking_policies")
    return RESPONSE_TYPE_CODES[kind]


__all__ = ["ROUTES", "Route", "response_type", "route_for"]
