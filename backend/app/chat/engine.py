from __future__ import annotations

import logging
import time
from dataclasses import replace
from datetime import date
from hashlib import sha256

import sentry_sdk

from ..metrics import chat_pipeline_duration_seconds
from ..storage import DocumentStore
from .cards import assemble_cards
from .composer import CompositionContext, ResponseComposer
from .errors import InputValidationError
from .followup import is_follow_up, resolve_reference
from .intent import IntentResolver
from .language import LanguageClient
from .planner import Clock, DistanceFn, QueryPlanner, effective_city
from .routing import response_type, route_for
from .types import BOOKING_INTENTS, ChatOutcome, ChatRequest, IntentType, RetrievedData

logger = logging.getLogger(__name__)

MESSAGE_REQUIRED = "Message is required and must be a string"

# intents a resolved follow-up reference turns into a question about that event
_REFERENCE_ANSWERABLE = frozenset({IntentType.GENERAL, IntentType.EVENT_QUESTION})


class ChatEngine:
    """Message in, grounded answer plus cards out. Holds no per-conversation state."""

    def __init__(
        self,
        store: DocumentStore,
        language: LanguageClient,
        *,
        distance_fn: DistanceFn | None = None,
        clock: Clock = date.today,
    ) -> None:
        self.store = store
        self.resolver = IntentResolver(language)
        self.planner = QueryPlanner(store, language, distance_fn=distance_fn, clock=clock)
        self.composer = ResponseComposer(language)

    @staticmethod
    def validate(request: ChatRequest) -> str:
        message = request.message
        if not isinstance(message, str) or not message.strip():
            raise InputValidationError(MESSAGE_REQUIRED)
        return message.strip()

    async def run(self, request: ChatRequest) -> ChatOutcome:
        """Run the whole pipeline once.

        Raises InputValidationError for a missing message and QueryChainExhausted
        when no query tier could produce a result set. Everything else degrades.
        """
        message = self.validate(request)
        started = time.perf_counter()
        digest = sha256(message.encode("utf-8")).hexdigest()[:10]
        sentry_sdk.add_breadcrumb(category="chat", message="message", data={"fp": digest})

        with sentry_sdk.start_span(op="chat.intent", name="resolve_intent"):
            intent = await self.resolver.resolve(message, request.history)

        reference = None
        if request.event_id:
            reference = await self.planner.event_details(request.event_id)
        elif is_follow_up(message):
            reference = await resolve_reference(request.history, self.planner)

        routed = intent.type
        if reference is not None and intent.type in _REFERENCE_ANSWERABLE:
            routed = IntentType.EVENT_QUESTION
        route = route_for(routed)
        city = effective_city(intent, request.city)

        data = RetrievedData()
        club = None
        if routed is IntentType.EVENT_QUESTION and reference is not None:
            data.events = [reference]
        elif route.uses_store and not (routed in BOOKING_INTENTS and not request.user_id):
            with sentry_sdk.start_span(op="chat.query", name=routed.value):
                data = await self.planner.retrieve(
                    message,
                    intent,
                    city,
                    user_location=request.user_location,
                    user_id=request.user_id,
                )
        if routed is IntentType.DIRECTIONS and intent.slots.club_name:
            club = await self.planner.find_club_by_name(intent.slots.club_name)

        context = CompositionContext(
            message=message,
            intent=intent,
            city=city,
            data=data,
            history=request.history,
            screen=request.screen,
            preferences=request.preferences,
            user_location=request.user_location,
            reference=reference,
            club=club,
            has_user=bool(request.user_id),
        )
        with sentry_sdk.start_span(op="chat.compose", name=route.composer):
            response = await self.composer.compose(route.composer, context)

        cards = assemble_cards(
            replace(intent, type=routed), data.events, data.clubs, data.bookings
        )
        referenced_event_id = None
        if routed is IntentType.EVENT_QUESTION and data.events:
            referenced_event_id = data.events[0].get("_id")

        elapsed = time.perf_counter() - started
        chat_pipeline_duration_seconds.observe(elapsed)
        logger.info(
            "Chat %s intent=%s routed=%s source=%s tier=%s events=%s clubs=%s bookings=%s %.0fms",
            digest,
            intent.type.value,
            routed.value,
            intent.source,
            data.tier.value if data.tier else "-",
            len(data.events),
            len(data.clubs),
            len(data.bookings),
            elapsed * 1000,
        )
        return ChatOutcome(
            response=response,
            intent=intent,
            cards=cards,
            response_type=response_type(routed, message),
            tier=data.tier,
            referenced_event_id=referenced_event_id,
        )


__all__ = ["ChatEngine", "MESSAGE_REQUIRED"]
