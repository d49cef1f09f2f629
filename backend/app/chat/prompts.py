"""Prompt text and static knowledge used by the assistant."""

from __future__ import annotations

from textwrap import dedent

from .types import IntentType

ASSISTANT_PERSONA = "You are Cavens AI, a helpful assistant for a nightlife events app."

INTENT_DESCRIPTIONS: dict[IntentType, str] = {
    IntentType.FIND_EVENTS: "user wants to discover upcoming events or parties",
    IntentType.FILTER_EVENTS: "user narrows events by date, genre, price or venue",
    IntentType.FIND_CLUBS: "user wants to discover clubs or venues",
    IntentType.FILTER_CLUBS: "user narrows clubs by type, area or rating",
    IntentType.EVENT_QUESTION: "question about one specific event (time, tickets, dress code)",
    IntentType.CLUB_QUESTION: "question about one specific club or venue",
    IntentType.MY_BOOKINGS: "user wants to see their tickets or bookings",
    IntentType.BOOKING_STATUS: "user asks whether a booking is confirmed, paid or scanned",
    IntentType.BOOKING_DETAILS: "user asks about details of one booking",
    IntentType.CLUB_REGISTRATION: "venue owner wants to list a club on the app",
    IntentType.POLICY_QUERY: "refund, cancellation or other booking policy question",
    IntentType.BOOKING_HELP: "how to buy tickets, pay or fix a booking problem",
    IntentType.DIRECTIONS: "how to get to a venue",
    IntentType.GENERAL: "greetings, small talk or anything else",
}

INTENT_SYSTEM_PROMPT = dedent(
    """
    You classify messages sent to Cavens AI, the assistant of a nightlife events app.
    Reply with ONE JSON object and nothing else:
    {{"type": "<intent>", "confidence": <0..1>, "query": "<short search text or null>",
      "extractedSlots": {{"eventName": null, "clubName": null, "location": null,
                          "nearMe": false, "date": null, "filters": {{}}}}}}

    Allowed intents:
    {taxonomy}

    Rules:
    - Use ONLY the intents listed above.
    - nearMe is true when the user says "near me", "nearby" or "close to me".
    - location is a city or area name the user typed, never guessed.
    - eventName/clubName are set only when the user names one, or refers to one
      mentioned earlier in the conversation.
    """
).strip()


def intent_system_prompt() -> str:
    taxonomy = "\n".join(
        f"- {intent.value}: {description}" for intent, description in INTENT_DESCRIPTIONS.items()
    )
    return INTENT_SYSTEM_PROMPT.format(taxonomy=taxonomy)


SCHEMA_DESCRIPTION = dedent(
    """
    Collections (Mongo-style documents, ids are strings):

    Club {
      _id, name, city, address, phone, rating (0-5), photos[], typeOfVenue,
      clubDescription, operatingDays[], mapLink,
      isApproved (bool, only approved clubs are public),
      events[] -> Event ids
    }
    Event {
      _id, name, description, date ("YYYY-MM-DD"), time ("HH:MM"), djArtists,
      tickets[] -> Ticket ids, menuItems[] -> MenuItem ids,
      guestExperience { dressCode, entryRules[], parking }, coverImage,
      status ("active" | "inactive"), isFeatured (bool)
    }

    Common cities: Dubai, Abu Dhabi, Sharjah.
    Supported operators: $eq $ne $gt $gte $lt $lte $in $nin $exists $regex $options
    $size $not $or $and $nor. Populate paths: Club.events, Event.tickets, Event.menuItems.
    """
).strip()

QUERY_PLAN_SYSTEM_PROMPT = dedent(
    """
    You translate nightlife questions into read-only database queries.

    {schema}

    Reply with ONE JSON object:
    {{"model": "Club" | "Event", "query": {{...filter...}},
      "populate": [{{"path": "events", "match": {{...}}}}] or []}}

    Rules:
    - Only "Club" or "Event". Never users, orders or payments.
    - Clubs must include "isApproved": true.
    - Cities are matched case-insensitively with $regex and $options "i".
    - Today is {today}; upcoming events have date >= today and status "active".
    """
).strip()


SCREEN_CONTEXT: dict[str, str] = {
    "HOME": (
        "The user is on the home screen where featured events and popular venues are shown."
    ),
    "MAP": (
        "The user is on the map screen where clubs are shown on a map. Location-based help "
        "such as nearby clubs or directions fits well here."
    ),
    "BOOKINGS": (
        "The user is on the bookings screen where they manage tickets and see QR codes."
    ),
    "PROFILE": (
        "The user is on their profile screen with account settings and booking history."
    ),
}


def screen_context(screen: str | None) -> str:
    if not screen:
        return ""
    return SCREEN_CONTEXT.get(screen.upper(), "")


POLICY_KNOWLEDGE_BASE: dict[str, dict[str, object]] = {
    "refund": {
        "title": "REFUND POLICY",
        "status": "Cavens does not currently offer refunds for event tickets.",
        "alternatives": [
            "Transfer the ticket to a friend or family member",
            "Contact support when an event is cancelled or the venue has an issue",
            "Rescheduled events keep your ticket valid for the new date",
        ],
        "notes": ["All sales are final", "Check event details before booking"],
    },
    "cancellation": {
        "title": "CANCELLATION POLICY",
        "status": "Cavens does not currently allow ticket cancellations after purchase.",
        "alternatives": [
            "Transfer the ticket to a friend or family member",
            "Contact support when an event is cancelled or the venue has an issue",
            "Rescheduled events keep your ticket valid for the new date",
        ],
        "notes": ["All sales are final", "Tickets cannot be cancelled for change of mind"],
    },
    "general": {
        "title": "BOOKING POLICIES & TERMS",
        "sections": {
            "Ticket Sales": ["All ticket sales are final", "No refunds or cancellations after purchase"],
            "Event Attendance": [
                "Bring valid ID for age verification",
                "Follow venue dress codes and rules",
            ],
            "Ticket Transfer": ["Tickets can be shared from the bookings screen"],
            "Event Changes": [
                "Rescheduled events keep tickets valid",
                "Contact support if an event is cancelled",
            ],
            "Support": ["Support replies within 24 hours"],
        },
    },
}


def policy_type(message: str) -> str:
    lowered = message.lower()
    if "refund" in lowered or "money back" in lowered:
        return "refund"
    if "cancel" in lowered:
        return "cancellation"
    return "general"


def render_policy(kind: str) -> str:
    entry = POLICY_KNOWLEDGE_BASE.get(kind) or POLICY_KNOWLEDGE_BASE["general"]
    lines = [str(entry["title"])]
    if "status" in entry:
        lines.append(str(entry["status"]))
    for label in ("alternatives", "notes"):
        for point in entry.get(label, []) or []:  # type: ignore[union-attr]
            lines.append(f"- {point}")
    for section, points in (entry.get("sections") or {}).items():  # type: ignore[union-attr]
        lines.append(f"{section}:")
        lines.extend(f"- {point}" for point in points)
    return "\n".join(lines)


# response type codes understood by the mobile client
RESPONSE_TYPE_CODES: dict[str, int] = {
    "general": 0,
    "event_question": 1,
    "events": 2,
    "clubs": 3,
    "club_question": 4,
    "booking_help": 5,
    "directions": 6,
    "my_bookings": 7,
    "booking_status": 8,
    "booking_details": 9,
    "club_registration": 10,
    "refund_policy": 11,
    "cancellation_policy": 12,
    "booking_policies": 13,
}

APOLOGY = "Sorry, I encountered an error while processing your request."
