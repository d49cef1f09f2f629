"""Natural-language answers grounded in the rows the planner fetched."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from textwrap import dedent
from typing import Any

from ..openai_async import LLMUnavailable
from .language import LanguageClient
from .prompts import APOLOGY, ASSISTANT_PERSONA, policy_type, render_policy, screen_context
from .types import ChatTurn, Intent, RetrievedData, UserLocation

logger = logging.getLogger(__name__)

HISTORY_TURNS = 4
MAX_EVENTS_IN_PROMPT = 5
MAX_CLUBS_IN_PROMPT = 5

GROUNDING_RULES = (
    "Use ONLY the data given below. Never invent events, venues, prices, times or "
    "addresses. If a detail is not in the data, say you don't have it."
)


@dataclass(slots=True)
class CompositionContext:
    message: str
    intent: Intent
    city: str
    data: RetrievedData = field(default_factory=RetrievedData)
    history: Sequence[ChatTurn] = ()
    screen: str | None = None
    preferences: Mapping[str, Any] = field(default_factory=dict)
    user_location: UserLocation | None = None
    # the event a follow-up or explicit event id points at
    reference: Mapping[str, Any] | None = None
    club: Mapping[str, Any] | None = None
    has_user: bool = False


def _json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, default=str)


def _history_block(history: Sequence[ChatTurn]) -> str:
    turns = list(history)[-HISTORY_TURNS:]
    if not turns:
        return ""
    lines = "\n".join(f"{turn.role}: {turn.content}" for turn in turns)
    return f"Conversation History:\n{lines}"


def event_summary(event: Mapping[str, Any]) -> dict[str, Any]:
    summary = {
        "name": event.get("name"),
        "venue": event.get("venue"),
        "city": event.get("city"),
        "date": event.get("date"),
        "time": event.get("time"),
        "djArtists": event.get("djArtists"),
        "description": event.get("description"),
    }
    tickets = [
        {"name": ticket.get("name"), "price": ticket.get("price")}
        for ticket in event.get("tickets") or []
        if isinstance(ticket, Mapping)
    ]
    if tickets:
        summary["tickets"] = tickets
    experience = event.get("guestExperience")
    if isinstance(experience, Mapping):
        summary["guestExperience"] = dict(experience)
    if event.get("distanceText"):
        summary["distance"] = event["distanceText"]
    return {key: value for key, value in summary.items() if value not in (None, "", [])}


def club_summary(club: Mapping[str, Any]) -> dict[str, Any]:
    summary = {
        "name": club.get("name"),
        "city": club.get("city"),
        "typeOfVenue": club.get("typeOfVenue"),
        "rating": club.get("rating"),
        "address": club.get("address"),
        "phone": club.get("phone"),
        "operatingDays": club.get("operatingDays"),
        "description": club.get("clubDescription"),
        "distance": club.get("distanceText"),
    }
    upcoming = [event.get("name") for event in club.get("events") or [] if isinstance(event, Mapping)]
    if upcoming:
        summary["upcomingEvents"] = upcoming
    return {key: value for key, value in summary.items() if value not in (None, "", [])}


def _compose_prompt(*sections: str) -> str:
    return "\n\n".join(section.strip() for section in sections if section and section.strip())


def _events_prompt(ctx: CompositionContext) -> str:
    events = ctx.data.events[:MAX_EVENTS_IN_PROMPT]
    if not events:
        task = (
            f"No events are available in {ctx.city} right now. Politely explain that nothing "
            "is available and suggest checking back later or exploring clubs instead."
        )
        return _compose_prompt(ASSISTANT_PERSONA, _history_block(ctx.history), task)
    preferences = f"User preferences: {_json(dict(ctx.preferences))}" if ctx.preferences else ""
    task = dedent(
        """
        Recommend 1-3 of these events in a short, upbeat reply.
        Phrase every recommendation as "Check out <event name> at <venue name>".
        Mention date, time and distance when present.
        """
    )
    return _compose_prompt(
        ASSISTANT_PERSONA,
        _history_block(ctx.history),
        GROUNDING_RULES,
        preferences,
        f"Events in {ctx.city}:\n{_json([event_summary(event) for event in events])}",
        task,
    )


def _clubs_prompt(ctx: CompositionContext) -> str:
    clubs = ctx.data.clubs[:MAX_CLUBS_IN_PROMPT]
    if not clubs:
        task = (
            f"No approved clubs were found in {ctx.city}. Politely say so and suggest "
            "trying another city or checking back later."
        )
        return _compose_prompt(ASSISTANT_PERSONA, _history_block(ctx.history), task)
    return _compose_prompt(
        ASSISTANT_PERSONA,
        _history_block(ctx.history),
        GROUNDING_RULES,
        f"Clubs in {ctx.city}:\n{_json([club_summary(club) for club in clubs])}",
        "Recommend 1-3 of these clubs with one line each on why they fit.",
    )


def _event_question_prompt(ctx: CompositionContext) -> str:
    event = ctx.reference or (ctx.data.events[0] if ctx.data.events else None)
    if event is None:
        task = (
            "The user asked about an event, but I couldn't find that event. Start with "
            "\"I couldn't find that event\", then suggest browsing upcoming events."
        )
        return _compose_prompt(ASSISTANT_PERSONA, _history_block(ctx.history), task)
    return _compose_prompt(
        ASSISTANT_PERSONA,
        _history_block(ctx.history),
        GROUNDING_RULES,
        f"Event:\n{_json(event_summary(event))}",
        "Answer the user's question about this event in 2-3 sentences.",
    )


def _club_question_prompt(ctx: CompositionContext) -> str:
    club = ctx.club or (ctx.data.clubs[0] if ctx.data.clubs else None)
    if club is None:
        task = (
            "The user asked about a club, but I couldn't find that club. Start with "
            "\"I couldn't find that club\", then suggest browsing clubs in the app."
        )
        return _compose_prompt(ASSISTANT_PERSONA, _history_block(ctx.history), task)
    return _compose_prompt(
        ASSISTANT_PERSONA,
        _history_block(ctx.history),
        "ONLY use the club data below. " + GROUNDING_RULES,
        f"Club:\n{_json(club_summary(club))}",
        "Answer the user's question about this club in 2-3 sentences.",
    )


def _bookings_block(ctx: CompositionContext) -> str:
    if not ctx.has_user:
        return "The user is not signed in, so their bookings are not available."
    bookings = ctx.data.bookings[:3]
    if not bookings:
        return "The user has no paid bookings."
    return f"Bookings:\n{_json(bookings)}"


def _my_bookings_prompt(ctx: CompositionContext) -> str:
    return _compose_prompt(
        ASSISTANT_PERSONA,
        _history_block(ctx.history),
        GROUNDING_RULES,
        _bookings_block(ctx),
        "Summarize the user's bookings briefly. If there are none, suggest finding an event.",
    )


def _booking_status_prompt(ctx: CompositionContext) -> str:
    return _compose_prompt(
        ASSISTANT_PERSONA,
        _history_block(ctx.history),
        GROUNDING_RULES,
        _bookings_block(ctx),
        "Tell the user the status of their booking. 'paid' means confirmed and ready to "
        "use; tickets are scanned at the door with the QR code in the bookings screen.",
    )


def _booking_details_prompt(ctx: CompositionContext) -> str:
    return _compose_prompt(
        ASSISTANT_PERSONA,
        _history_block(ctx.history),
        GROUNDING_RULES,
        _bookings_block(ctx),
        "Give the details the user asked for (event, venue, date, ticket type, quantity).",
    )


def _booking_help_prompt(ctx: CompositionContext) -> str:
    return _compose_prompt(
        ASSISTANT_PERSONA,
        _history_block(ctx.history),
        screen_context(ctx.screen),
        dedent(
            """
            The user needs help with booking, tickets or payments. Guide them step by step:
            choosing an event, picking a ticket, paying securely in the app, and finding
            the QR code in the bookings screen. Tickets are non-refundable. For technical
            problems suggest contacting support.
            """
        ),
    )


def _directions_prompt(ctx: CompositionContext) -> str:
    venue: Mapping[str, Any] | None = ctx.club
    if venue is None and ctx.reference is not None:
        venue = {
            "name": ctx.reference.get("venue"),
            "city": ctx.reference.get("city"),
            "mapLink": ctx.reference.get("mapLink"),
        }
    where = ""
    if ctx.user_location is not None:
        where = (
            f"User location: {ctx.user_location.latitude:.5f}, {ctx.user_location.longitude:.5f}"
        )
    if venue is not None and venue.get("name"):
        target = f"Venue:\n{_json({k: v for k, v in dict(venue).items() if v})}"
        task = "Explain how to get there and point the user to the map link in the app."
    else:
        target = ""
        task = (
            "You don't know which venue the user means. Ask which club they want to reach, "
            "and mention the map screen shows directions for every venue."
        )
    if (ctx.screen or "").upper() == "MAP":
        task += " The user is on the map screen and can tap a venue for directions."
    return _compose_prompt(
        ASSISTANT_PERSONA, _history_block(ctx.history), GROUNDING_RULES, where, target, task
    )


def _club_registration_prompt(ctx: CompositionContext) -> str:
    return _compose_prompt(
        ASSISTANT_PERSONA,
        _history_block(ctx.history),
        dedent(
            """
            The user wants to list their club on Cavens. Walk them through it: sign up with
            a club account, complete the onboarding form (venue details, photos, map link,
            operating days), then wait for admin approval before the club appears in the app.
            Keep it encouraging and brief.
            """
        ),
    )


def _policy_prompt(ctx: CompositionContext) -> str:
    return _compose_prompt(
        ASSISTANT_PERSONA,
        _history_block(ctx.history),
        "Answer ONLY from this policy text:",
        render_policy(policy_type(ctx.message)),
        "Be clear and kind, and mention the alternatives when tickets can't be refunded.",
    )


def _general_prompt(ctx: CompositionContext) -> str:
    return _compose_prompt(
        ASSISTANT_PERSONA,
        _history_block(ctx.history),
        screen_context(ctx.screen),
        "Reply in a friendly, concise way. If the user isn't asking about events, chat "
        "lightly and steer them toward discovering events in the app.",
    )


PromptBuilder = Callable[[CompositionContext], str]

PROMPT_BUILDERS: dict[str, PromptBuilder] = {
    "events": _events_prompt,
    "clubs": _clubs_prompt,
    "event_question": _event_question_prompt,
    "club_question": _club_question_prompt,
    "my_bookings": _my_bookings_prompt,
    "booking_status": _booking_status_prompt,
    "booking_details": _booking_details_prompt,
    "booking_help": _booking_help_prompt,
    "directions": _directions_prompt,
    "club_registration": _club_registration_prompt,
    "policy": _policy_prompt,
    "general": _general_prompt,
}


class ResponseComposer:
    def __init__(self, language: LanguageClient) -> None:
        self._language = language

    async def compose(self, route: str, ctx: CompositionContext) -> str:
        """Return the answer text, or the fixed apology when generation fails."""
        try:
            system_prompt = PROMPT_BUILDERS[route](ctx)
            return await self._language.generate_text(system_prompt, ctx.message)
        except LLMUnavailable as exc:
            logger.warning("Response generation unavailable for %s: %s", route, exc)
        except Exception:
            logger.exception("Response generation failed for %s", route)
        return APOLOGY


__all__ = ["CompositionContext", "PROMPT_BUILDERS", "ResponseComposer", "event_summary"]
