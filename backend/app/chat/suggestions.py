from __future__ import annotations

from typing import Any

from ..settings import settings
from ..storage import DocumentStore
from .planner import exact_name

MAX_SUGGESTIONS = 6
POPULAR_EVENTS_LIMIT = 3

SCREEN_SUGGESTIONS: dict[str, list[str]] = {
    "HOME": [
        "Find events near me",
        "What's happening tonight?",
        "Show me clubs in Dubai",
        "Events this weekend",
        "Best nightclubs for electronic music",
        "Events under AED 100",
    ],
    "MAP": [
        "Clubs within 5km",
        "Get directions to nearest club",
        "Show clubs by rating",
        "What's the parking situation?",
        "Show me club photos",
    ],
    "BOOKINGS": [
        "Show my upcoming events",
        "How do I cancel a booking?",
        "Can I transfer my ticket?",
        "What's the refund policy?",
        "How to show my QR code?",
    ],
    "PROFILE": [
        "View my booking history",
        "How to become a club owner?",
        "Contact support",
    ],
    "GENERAL": [
        "Find events near me",
        "Show me clubs in Dubai",
        "What's happening tonight?",
        "How do I book tickets?",
        "Events this weekend",
        "Contact support",
    ],
}


def screen_suggestions(screen: str | None, city: str | None = None) -> list[str]:
    """Screen prompts, led by city-specific ones when the city isn't the default."""
    key = (screen or "GENERAL").upper()
    suggestions = list(SCREEN_SUGGESTIONS.get(key, SCREEN_SUGGESTIONS["GENERAL"]))
    if city and city.strip().lower() != settings.DEFAULT_CITY.lower():
        suggestions = [f"Show me clubs in {city}", f"Find events in {city}", *suggestions]
    return suggestions[:MAX_SUGGESTIONS]


async def popular_events(store: DocumentStore, city: str) -> list[dict[str, Any]]:
    """Active events of approved clubs in the city, featured first."""
    clubs = await store.find(
        "clubs",
        {
            "isApproved": True,
            "city": exact_name(city),
            "events": {"$exists": True, "$not": {"$size": 0}},
        },
        projection="name events",
    )
    venue_by_event: dict[str, str] = {}
    for club in clubs:
        for event_id in club.get("events") or []:
            venue_by_event.setdefault(str(event_id), club.get("name") or "Unknown Venue")
    if not venue_by_event:
        return []
    events = await store.find(
        "events",
        {"_id": {"$in": list(venue_by_event)}, "status": "active"},
        sort=[("isFeatured", -1), ("featuredNumber", -1), ("createdAt", -1)],
        limit=POPULAR_EVENTS_LIMIT,
    )
    return [
        {
            "id": event["_id"],
            "name": event.get("name", ""),
            "venue": venue_by_event[event["_id"]],
            "date": event.get("date"),
        }
        for event in events
    ]


async def suggestions_for(
    store: DocumentStore, city: str | None = None, screen: str | None = None
) -> dict[str, Any]:
    city = (city or "").strip() or settings.DEFAULT_CITY
    popular = await popular_events(store, city)
    suggestions = screen_suggestions(screen, city)
    if popular and len(suggestions) < MAX_SUGGESTIONS:
        suggestions.append(f"Tell me about {popular[0]['name']}")
    return {"suggestions": suggestions, "popularEvents": popular}


__all__ = ["popular_events", "screen_suggestions", "suggestions_for"]
