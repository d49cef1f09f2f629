from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from .types import BOOKING_INTENTS, CLUB_INTENTS, EVENT_INTENTS, CardBlock, Intent, IntentType

MAX_CARD_ITEMS = 4

CARD_TITLES = {"events": "Upcoming Events", "clubs": "Popular Clubs", "mixed": "Your Bookings"}


def _lowest_price(event: Mapping[str, Any]) -> float | None:
    prices = [
        ticket.get("price")
        for ticket in event.get("tickets") or []
        if isinstance(ticket, Mapping) and isinstance(ticket.get("price"), (int, float))
    ]
    return min(prices) if prices else None


def event_card(event: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "id": event.get("_id"),
        "name": event.get("name"),
        "venue": event.get("venue"),
        "date": event.get("date"),
        "time": event.get("time"),
        "image": event.get("coverImage") or None,
        "price": _lowest_price(event),
        "distance": event.get("distanceText"),
    }


def club_card(club: Mapping[str, Any]) -> dict[str, Any]:
    photos = club.get("photos") or []
    return {
        "id": club.get("_id"),
        "name": club.get("name"),
        "city": club.get("city"),
        "typeOfVenue": club.get("typeOfVenue"),
        "rating": club.get("rating"),
        "image": photos[0] if photos else None,
        "distance": club.get("distanceText"),
    }


def booking_card(booking: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "id": booking.get("_id"),
        "name": booking.get("name"),
        "venue": booking.get("venue"),
        "date": booking.get("date"),
        "ticketType": booking.get("ticketType"),
        "quantity": booking.get("quantity"),
        "status": booking.get("bookingStatus"),
    }


def card_category(intent_type: IntentType) -> str | None:
    if intent_type in EVENT_INTENTS or intent_type is IntentType.EVENT_QUESTION:
        return "events"
    if intent_type in CLUB_INTENTS or intent_type is IntentType.CLUB_QUESTION:
        return "clubs"
    if intent_type in BOOKING_INTENTS:
        return "mixed"
    return None


def assemble_cards(
    intent: Intent,
    events: Sequence[Mapping[str, Any]] = (),
    clubs: Sequence[Mapping[str, Any]] = (),
    bookings: Sequence[Mapping[str, Any]] = (),
) -> list[CardBlock]:
    """At most one block, keyed by the intent's category, with at most four items.

    Works only on rows the planner already fetched.
    """
    category = card_category(intent.type)
    if category == "events":
        items = [event_card(event) for event in events[:MAX_CARD_ITEMS]]
    elif category == "clubs":
        items = [club_card(club) for club in clubs[:MAX_CARD_ITEMS]]
    elif category == "mixed":
        items = [booking_card(booking) for booking in bookings[:MAX_CARD_ITEMS]]
    else:
        return []
    if not items:
        return []
    return [CardBlock(type=category, title=CARD_TITLES[category], items=items)]  # type: ignore[arg-type]


__all__ = ["MAX_CARD_ITEMS", "assemble_cards", "card_category"]
