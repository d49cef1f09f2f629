"""Query planning and execution for data-backed intents.

Plans are tried in a fixed order: a plan proposed by the language model, a
rule plan chosen by intent type, and finally a plain listing of approved
clubs in the city. The first plan that executes without raising wins.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable, Mapping
from datetime import date
from typing import Any

from pydantic import ValidationError

from .. import geo_distance
from ..geo_distance import DistanceResult, DistanceUnavailable
from ..json_utils import extract_json_dict
from ..metrics import chat_query_tier_total
from ..openai_async import LLMUnavailable
from ..settings import settings
from ..storage import (
    REFERENCES,
    SUPPORTED_OPERATORS,
    DocumentStore,
    UnsupportedQuery,
    collection_for,
)
from .contracts import QueryPlanPayload
from .errors import PlanRejected, QueryChainExhausted
from .language import LanguageClient
from .prompts import QUERY_PLAN_SYSTEM_PROMPT, SCHEMA_DESCRIPTION
from .types import (
    BOOKING_INTENTS,
    CLUB_INTENTS,
    EVENT_INTENTS,
    FallbackTier,
    Intent,
    IntentType,
    QueryPlan,
    QueryResult,
    RetrievedData,
    UserLocation,
)

logger = logging.getLogger(__name__)

SENTINEL_DISTANCE = 1_000_000_000
MAX_AI_RESULTS = 10

CLUB_PROJECTION = (
    "name city address phone rating photos typeOfVenue clubDescription operatingDays "
    "mapLink events isApproved"
)
EVENT_PROJECTION = (
    "name description date time djArtists tickets menuItems guestExperience coverImage "
    "status isFeatured"
)
SAFE_PROJECTIONS = {"Club": CLUB_PROJECTION, "Event": EVENT_PROJECTION}
EVENT_DETAIL_POPULATE: list[dict[str, Any]] = [{"path": "tickets"}, {"path": "menuItems"}]

DistanceFn = Callable[..., Awaitable[DistanceResult]]
Clock = Callable[[], date]


def effective_city(intent: Intent, city: str | None) -> str:
    location = intent.slots.location
    if location and location.strip().lower() != "current" and not intent.slots.near_me:
        return location.strip()
    return (city or "").strip() or settings.DEFAULT_CITY


def exact_name(value: str) -> dict[str, str]:
    return {"$regex": f"^{re.escape(value.strip())}$", "$options": "i"}


def name_contains(value: str) -> dict[str, str]:
    return {"$regex": re.escape(value.strip()), "$options": "i"}


def extract_events_from_clubs(clubs: list[Mapping[str, Any]]) -> list[dict[str, Any]]:
    """Flatten populated club documents into events carrying their venue."""
    events: list[dict[str, Any]] = []
    for club in clubs:
        for event in club.get("events") or []:
            if not isinstance(event, Mapping):
                continue
            item = dict(event)
            item["venue"] = club.get("name")
            item["city"] = club.get("city")
            item["clubId"] = club.get("_id")
            item["mapLink"] = club.get("mapLink")
            if "distanceFromUser" in club:
                item["distanceFromUser"] = club["distanceFromUser"]
                item["distanceText"] = club.get("distanceText")
            events.append(item)
    return events


def attach_venue(event: dict[str, Any], club: Mapping[str, Any] | None) -> dict[str, Any]:
    if club is not None:
        event["venue"] = club.get("name")
        event["city"] = club.get("city")
        event["clubId"] = club.get("_id")
        event["mapLink"] = club.get("mapLink")
    else:
        event.setdefault("venue", None)
    return event


def booking_summaries(users: list[Mapping[str, Any]]) -> list[dict[str, Any]]:
    bookings: list[dict[str, Any]] = []
    for user in users[:1]:
        for order in user.get("orders") or []:
            if not isinstance(order, Mapping):
                continue
            event = order.get("event") if isinstance(order.get("event"), Mapping) else {}
            club = order.get("club") if isinstance(order.get("club"), Mapping) else {}
            ticket = order.get("ticket") if isinstance(order.get("ticket"), Mapping) else {}
            bookings.append(
                {
                    "_id": order.get("_id"),
                    "eventId": event.get("_id"),
                    "name": event.get("name"),
                    "venue": club.get("name"),
                    "date": event.get("date"),
                    "time": event.get("time"),
                    "ticketType": ticket.get("name"),
                    "price": ticket.get("price"),
                    "quantity": order.get("quantity"),
                    "bookingStatus": order.get("status"),
                    "isPaid": order.get("isPaid"),
                }
            )
    return bookings


def _check_operators(node: Any, where: str) -> None:
    if isinstance(node, Mapping):
        for key, value in node.items():
            if not isinstance(key, str):
                raise PlanRejected(f"non-string key in {where}")
            if key.startswith("$") and key not in SUPPORTED_OPERATORS:
                raise PlanRejected(f"operator {key} not allowed in {where}")
            _check_operators(value, where)
    elif isinstance(node, list):
        for item in node:
            _check_operators(item, where)


def _check_populate(collection: str, specs: list[Any]) -> list[dict[str, Any]]:
    checked: list[dict[str, Any]] = []
    for spec in specs:
        if isinstance(spec, str):
            spec = {"path": spec}
        if not isinstance(spec, Mapping) or not isinstance(spec.get("path"), str):
            raise PlanRejected(f"invalid populate entry {spec!r}")
        target = REFERENCES.get((collection, spec["path"]))
        if target is None or target not in {"events", "tickets", "menuItems"}:
            raise PlanRejected(f"populate path {spec['path']!r} not allowed on {collection}")
        entry: dict[str, Any] = {"path": spec["path"]}
        if spec.get("match") is not None:
            if not isinstance(spec["match"], Mapping):
                raise PlanRejected("populate match must be an object")
            _check_operators(spec["match"], "populate match")
            entry["match"] = dict(spec["match"])
        nested = spec.get("populate") or []
        if isinstance(nested, (str, Mapping)):
            nested = [nested]
        if nested:
            entry["populate"] = _check_populate(target, list(nested))
        checked.append(entry)
    return checked


class QueryPlanner:
    def __init__(
        self,
        store: DocumentStore,
        language: LanguageClient,
        *,
        distance_fn: DistanceFn | None = None,
        clock: Clock = date.today,
        limit: int | None = None,
    ) -> None:
        self._store = store
        self._language = language
        self._distance = distance_fn or geo_distance.distance
        self._clock = clock
        self._limit = min(limit or settings.CHAT_QUERY_LIMIT, MAX_AI_RESULTS)
        self._rules: dict[IntentType, Callable[[Intent, str, str | None], QueryPlan]] = {
            IntentType.FIND_EVENTS: self._events_rule,
            IntentType.FILTER_EVENTS: self._events_rule,
            IntentType.FIND_CLUBS: self._clubs_rule,
            IntentType.FILTER_CLUBS: self._clubs_rule,
            IntentType.EVENT_QUESTION: self._event_question_rule,
            IntentType.CLUB_QUESTION: self._club_question_rule,
            IntentType.MY_BOOKINGS: self._bookings_rule,
            IntentType.BOOKING_STATUS: self._bookings_rule,
            IntentType.BOOKING_DETAILS: self._bookings_rule,
        }

    def _today(self) -> str:
        return self._clock().isoformat()

    def _upcoming_events_match(self) -> dict[str, Any]:
        return {"status": "active", "date": {"$gte": self._today()}}

    # ------------------------------------------------------------------
    # Tier 1: model-proposed plan
    # ------------------------------------------------------------------

    async def ai_plan(self, message: str, intent: Intent, city: str) -> QueryPlan:
        system_prompt = QUERY_PLAN_SYSTEM_PROMPT.format(
            schema=SCHEMA_DESCRIPTION, today=self._today()
        )
        prompt = (
            f"User message: {message}\n"
            f"Intent: {intent.type.value}\n"
            f"Slots: {intent.slots.to_dict()}\n"
            f"City: {city}"
        )
        raw = await self._language.generate_text(
            system_prompt, prompt, max_tokens=settings.CHAT_PLAN_MAX_TOKENS
        )
        return self.validate_ai_plan(raw, intent, city)

    def validate_ai_plan(self, raw: str, intent: Intent, city: str) -> QueryPlan:
        try:
            payload = QueryPlanPayload.model_validate(extract_json_dict(raw))
        except (ValueError, ValidationError) as exc:
            raise PlanRejected(f"unusable query plan: {exc}") from exc
        _check_operators(payload.query, "query")
        collection = collection_for(payload.model)
        populate = _check_populate(collection, list(payload.populate))
        predicate = dict(payload.query)
        if payload.model == "Club":
            predicate["isApproved"] = True
            predicate.setdefault("city", exact_name(city))
            if intent.type in EVENT_INTENTS:
                paths = {spec["path"] for spec in populate}
                if "events" not in paths:
                    populate.append({"path": "events"})
                for spec in populate:
                    if spec["path"] == "events":
                        spec.setdefault("match", self._upcoming_events_match())
        elif intent.type in EVENT_INTENTS:
            predicate.setdefault("status", "active")
        return QueryPlan(
            target_entity=payload.model,
            predicate=predicate,
            populate=populate,
            limit=min(self._limit, MAX_AI_RESULTS),
            projection=SAFE_PROJECTIONS[payload.model],
        )

    # ------------------------------------------------------------------
    # Tier 2: rule plans
    # ------------------------------------------------------------------

    def rule_plan(self, intent: Intent, city: str, user_id: str | None = None) -> QueryPlan:
        builder = self._rules.get(intent.type)
        if builder is None:
            raise UnsupportedQuery(f"no rule plan for {intent.type.value}")
        return builder(intent, city, user_id)

    def _events_rule(self, intent: Intent, city: str, user_id: str | None) -> QueryPlan:
        match = self._upcoming_events_match()
        slot_date = intent.slots.date
        if slot_date and re.fullmatch(r"\d{4}-\d{2}-\d{2}", slot_date):
            match["date"] = slot_date
        return QueryPlan(
            target_entity="Club",
            predicate={
                "isApproved": True,
                "city": exact_name(city),
                "events": {"$exists": True, "$not": {"$size": 0}},
            },
            populate=[{"path": "events", "match": match, "populate": [{"path": "tickets"}]}],
            limit=self._limit,
            projection=CLUB_PROJECTION,
        )

    def _clubs_rule(self, intent: Intent, city: str, user_id: str | None) -> QueryPlan:
        predicate: dict[str, Any] = {"isApproved": True, "city": exact_name(city)}
        venue_type = intent.slots.filters.get("typeOfVenue") or intent.slots.filters.get("type")
        if isinstance(venue_type, str) and venue_type.strip():
            predicate["typeOfVenue"] = name_contains(venue_type)
        return QueryPlan(
            target_entity="Club",
            predicate=predicate,
            limit=self._limit,
            projection=CLUB_PROJECTION,
            sort=[("rating", -1)] if intent.type is IntentType.FILTER_CLUBS else [],
        )

    def _event_question_rule(self, intent: Intent, city: str, user_id: str | None) -> QueryPlan:
        name = intent.slots.event_name or intent.query
        if not name:
            raise PlanRejected("event question without an event name")
        return QueryPlan(
            target_entity="Event",
            predicate={"name": name_contains(name)},
            populate=list(EVENT_DETAIL_POPULATE),
            limit=1,
            projection=EVENT_PROJECTION,
        )

    def _club_question_rule(self, intent: Intent, city: str, user_id: str | None) -> QueryPlan:
        name = intent.slots.club_name or intent.query
        if not name:
            raise PlanRejected("club question without a club name")
        return QueryPlan(
            target_entity="Club",
            predicate={"isApproved": True, "name": name_contains(name)},
            populate=[{"path": "events", "match": self._upcoming_events_match()}],
            limit=1,
            projection=CLUB_PROJECTION,
        )

    def _bookings_rule(self, intent: Intent, city: str, user_id: str | None) -> QueryPlan:
        if not user_id:
            raise PlanRejected("booking lookup needs a user id")
        return QueryPlan(
            target_entity="User",
            predicate={"_id": user_id},
            populate=[
                {
                    "path": "orders",
                    "match": {"status": "paid"},
                    "populate": [{"path": "event"}, {"path": "club"}, {"path": "ticket"}],
                }
            ],
            limit=1,
        )

    # ------------------------------------------------------------------
    # Tier 3: generic listing
    # ------------------------------------------------------------------

    def generic_plan(self, city: str) -> QueryPlan:
        return QueryPlan(
            target_entity="Club",
            predicate={"isApproved": True, "city": exact_name(city)},
            limit=self._limit,
            projection=CLUB_PROJECTION,
        )

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(self, plan: QueryPlan) -> QueryResult:
        data = await self._store.find(
            collection_for(plan.target_entity),
            plan.predicate,
            projection=plan.projection,
            populate=plan.populate,
            sort=plan.sort,
            limit=plan.limit,
        )
        # tier is filled in by the caller
        return QueryResult(data=data, entity_type=plan.target_entity, tier=FallbackTier.GENERIC_LISTING)

    async def run(
        self, message: str, intent: Intent, city: str, *, user_id: str | None = None
    ) -> QueryResult:
        """Execute the fallback chain. Raises QueryChainExhausted when every tier fails."""
        failures: list[tuple[str, Exception]] = []

        async def ai_tier() -> QueryPlan:
            return await self.ai_plan(message, intent, city)

        async def rule_tier() -> QueryPlan:
            return self.rule_plan(intent, city, user_id)

        async def generic_tier() -> QueryPlan:
            return self.generic_plan(city)

        tiers: list[tuple[FallbackTier, Callable[[], Awaitable[QueryPlan]]]] = []
        # bookings are private to the user, so the model never writes their query
        if intent.type not in BOOKING_INTENTS:
            tiers.append((FallbackTier.AI_PLAN, ai_tier))
        tiers.append((FallbackTier.RULE_PLAN, rule_tier))
        tiers.append((FallbackTier.GENERIC_LISTING, generic_tier))

        for tier, build in tiers:
            try:
                plan = await build()
                result = await self.execute(plan)
            except (LLMUnavailable, ValueError) as exc:
                logger.warning("Query tier %s failed for %s: %s", tier.value, intent.type.value, exc)
                failures.append((tier.value, exc))
                continue
            except Exception as exc:
                logger.exception("Query tier %s crashed for %s", tier.value, intent.type.value)
                failures.append((tier.value, exc))
                continue
            result.tier = tier
            chat_query_tier_total.labels(tier=tier.value).inc()
            logger.info(
                "Query tier %s served %s (%s %s rows, city=%s)",
                tier.value,
                intent.type.value,
                len(result.data),
                result.entity_type,
                city,
            )
            return result
        raise QueryChainExhausted(failures)

    # ------------------------------------------------------------------
    # Post-processing
    # ------------------------------------------------------------------

    async def attach_distances(
        self, clubs: list[dict[str, Any]], location: UserLocation
    ) -> list[dict[str, Any]]:
        """Measure every club concurrently and sort nearest first; failures sort last."""

        async def measure(club: dict[str, Any]) -> dict[str, Any]:
            try:
                link = club.get("mapLink")
                if not link:
                    raise DistanceUnavailable("club has no map link")
                result = await self._distance(location.latitude, location.longitude, link)
            except Exception as exc:
                logger.warning("Distance for club %s unavailable: %s", club.get("_id"), exc)
                club["distanceFromUser"] = SENTINEL_DISTANCE
                club["distanceText"] = None
                return club
            club["distanceFromUser"] = result.meters
            club["distanceText"] = result.text
            if result.duration_text:
                club["durationText"] = result.duration_text
            return club

        measured = await asyncio.gather(*(measure(club) for club in clubs))
        return sorted(measured, key=lambda club: club["distanceFromUser"])

    async def venue_for_event(self, event_id: str) -> dict[str, Any] | None:
        return await self._store.find_one(
            "clubs", {"events": event_id, "isApproved": True}, projection=CLUB_PROJECTION
        )

    async def event_details(self, event_id: str) -> dict[str, Any] | None:
        event = await self._store.get("events", event_id, populate=EVENT_DETAIL_POPULATE)
        if event is None:
            return None
        return attach_venue(event, await self.venue_for_event(event_id))

    async def find_event_by_name(self, name: str, venue: str | None = None) -> dict[str, Any] | None:
        candidates = await self._store.find(
            "events", {"name": name_contains(name)}, populate=EVENT_DETAIL_POPULATE, limit=10
        )
        if not candidates:
            return None
        exact = [event for event in candidates if str(event.get("name", "")).lower() == name.lower()]
        ordered = exact or candidates
        for event in ordered:
            club = await self.venue_for_event(event["_id"])
            if venue is None or (club and str(club.get("name", "")).lower() == venue.lower()):
                return attach_venue(event, club)
        event = ordered[0]
        return attach_venue(event, await self.venue_for_event(event["_id"]))

    async def find_club_by_name(self, name: str) -> dict[str, Any] | None:
        return await self._store.find_one(
            "clubs", {"isApproved": True, "name": name_contains(name)}, projection=CLUB_PROJECTION
        )

    async def retrieve(
        self,
        message: str,
        intent: Intent,
        city: str,
        *,
        user_location: UserLocation | None = None,
        user_id: str | None = None,
    ) -> RetrievedData:
        """Run the chain and shape the rows into events, clubs and bookings."""
        result = await self.run(message, intent, city, user_id=user_id)
        retrieved = RetrievedData(tier=result.tier)
        near = intent.slots.near_me and user_location is not None

        if result.entity_type == "User":
            retrieved.bookings = booking_summaries(result.data)
            return retrieved

        if result.entity_type == "Event":
            events = []
            venues: dict[str, dict[str, Any]] = {}
            for event in result.data:
                club = await self.venue_for_event(event["_id"])
                # events of unapproved or deleted clubs stay private
                if club is None:
                    continue
                events.append(attach_venue(event, club))
                venues.setdefault(club["_id"], club)
            if near and venues:
                measured = await self.attach_distances(list(venues.values()), user_location)
                by_id = {club["_id"]: club for club in measured}
                for event in events:
                    club = by_id.get(event.get("clubId"))
                    event["distanceFromUser"] = club["distanceFromUser"] if club else SENTINEL_DISTANCE
                    event["distanceText"] = club.get("distanceText") if club else None
                events.sort(key=lambda event: event["distanceFromUser"])
            retrieved.events = events[: self._limit]
            return retrieved

        clubs = result.data
        if near:
            clubs = await self.attach_distances(clubs, user_location)
        if intent.type in EVENT_INTENTS or intent.type is IntentType.EVENT_QUESTION:
            events = extract_events_from_clubs(clubs)
            if near:
                events.sort(key=lambda event: event.get("distanceFromUser", SENTINEL_DISTANCE))
            retrieved.events = events[: self._limit]
        else:
            retrieved.clubs = clubs
        return retrieved


__all__ = [
    "SENTINEL_DISTANCE",
    "QueryPlanner",
    "attach_venue",
    "booking_summaries",
    "effective_city",
    "extract_events_from_clubs",
]
