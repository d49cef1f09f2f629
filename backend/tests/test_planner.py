import asyncio

import pytest
from backend.app.chat.errors import PlanRejected, QueryChainExhausted
from backend.app.chat.planner import (
    CLUB_PROJECTION,
    SENTINEL_DISTANCE,
    QueryPlanner,
    effective_city,
    extract_events_from_clubs,
)
from backend.app.chat.types import (
    ExtractedSlots,
    FallbackTier,
    Intent,
    IntentType,
    UserLocation,
)
from backend.app.geo_distance import DistanceResult, DistanceUnavailable
from backend.app.storage import UnsupportedQuery
from conftest import DUBAI_USER, TODAY, FakeLanguage, coordinate_distance


def _intent(kind, **slots):
    return Intent(type=kind, confidence=0.9, slots=ExtractedSlots(**slots))


def _planner(store, language=None, **kwargs):
    kwargs.setdefault("clock", lambda: TODAY)
    return QueryPlanner(store, language or FakeLanguage(), **kwargs)


def test_ai_plan_is_used_when_valid(store):
    language = FakeLanguage(
        plan={"model": "Event", "query": {"name": {"$regex": "house", "$options": "i"}}}
    )
    planner = _planner(store, language)
    result = asyncio.run(planner.run("house music", _intent(IntentType.FIND_EVENTS), "Dubai"))

    assert result.tier is FallbackTier.AI_PLAN
    assert result.entity_type == "Event"
    assert [event["_id"] for event in result.data] == ["evt-soho-house"]
    assert "Today is 2026-10-01" in language.of_kind("plan")[0]["system"]


def test_ai_club_plan_is_forced_to_approved_clubs_in_city(store):
    planner = _planner(store)
    plan = planner.validate_ai_plan(
        '{"model": "Club", "query": {"isApproved": false}}', _intent(IntentType.FIND_EVENTS), "Dubai"
    )
    assert plan.predicate["isApproved"] is True
    assert plan.predicate["city"] == {"$regex": "^Dubai$", "$options": "i"}
    events_spec = next(spec for spec in plan.populate if spec["path"] == "events")
    assert events_spec["match"] == {"status": "active", "date": {"$gte": "2026-10-01"}}
    assert plan.projection == CLUB_PROJECTION


@pytest.mark.parametrize(
    "raw",
    [
        '{"model": "User", "query": {}}',
        '{"model": "Event", "query": {"$where": "sleep(1000)"}}',
        '{"model": "Club", "query": {"name": {"$function": "x"}}}',
        '{"model": "Club", "populate": [{"path": "orders"}]}',
        "no plan today",
    ],
)
def test_unsafe_ai_plans_are_rejected(store, raw):
    with pytest.raises(PlanRejected):
        _planner(store).validate_ai_plan(raw, _intent(IntentType.FIND_CLUBS), "Dubai")


def test_model_outage_falls_back_to_rule_plan(store):
    planner = _planner(store, FakeLanguage(plan=None))
    result = asyncio.run(planner.run("events", _intent(IntentType.FIND_EVENTS), "Dubai"))

    assert result.tier is FallbackTier.RULE_PLAN
    assert result.entity_type in {"Club", "Event"}
    for club in result.data:
        assert club["isApproved"] is True
        assert club["city"] == "Dubai"


def test_rule_failure_falls_back_to_generic_listing(store, monkeypatch):
    planner = _planner(store, FakeLanguage(plan="not json"))

    def broken_rule(*args, **kwargs):
        raise UnsupportedQuery("rule table broken")

    monkeypatch.setattr(planner, "rule_plan", broken_rule)
    result = asyncio.run(planner.run("clubs", _intent(IntentType.FIND_CLUBS), "dubai"))

    assert result.tier is FallbackTier.GENERIC_LISTING
    assert result.entity_type == "Club"
    assert planner.generic_plan("dubai").predicate == {
        "isApproved": True,
        "city": {"$regex": "^dubai$", "$options": "i"},
    }
    assert {club["_id"] for club in result.data} == {
        "club-white-dubai",
        "club-soho-garden",
        "club-cove-beach",
    }


def test_every_tier_failing_raises(store, monkeypatch):
    planner = _planner(store, FakeLanguage(plan=None))

    def broken(*args, **kwargs):
        raise UnsupportedQuery("broken")

    monkeypatch.setattr(planner, "rule_plan", broken)
    monkeypatch.setattr(planner, "generic_plan", broken)

    with pytest.raises(QueryChainExhausted) as excinfo:
        asyncio.run(planner.run("clubs", _intent(IntentType.FIND_CLUBS), "Dubai"))
    assert [tier for tier, _ in excinfo.value.failures] == [
        "ai-plan",
        "rule-plan",
        "generic-listing",
    ]


def test_booking_intents_never_ask_the_model(store):
    language = FakeLanguage(plan={"model": "Club", "query": {}})
    planner = _planner(store, language)
    result = asyncio.run(
        planner.run("my tickets", _intent(IntentType.MY_BOOKINGS), "Dubai", user_id="user-layla")
    )

    assert result.tier is FallbackTier.RULE_PLAN
    assert result.entity_type == "User"
    assert language.of_kind("plan") == []
    assert [order["_id"] for order in result.data[0]["orders"]] == ["ord-1001"]


def test_filter_clubs_rule_uses_venue_type_and_rating(store):
    planner = _planner(store)
    plan = planner.rule_plan(
        _intent(IntentType.FILTER_CLUBS, filters={"typeOfVenue": "club"}), "Dubai"
    )
    assert plan.sort == [("rating", -1)]
    rows = asyncio.run(planner.execute(plan)).data
    assert [club["name"] for club in rows] == ["White Dubai", "Soho Garden", "Cove Beach"]


def test_distance_sort_puts_failures_last(store):
    meters = {"A": 5000, "C": 1200}

    async def distance_fn(lat, lng, link, **kwargs):
        if link not in meters:
            raise DistanceUnavailable("lookup failed")
        return DistanceResult(meters=meters[link], text=f"{meters[link] / 1000:.2f} km", method="test")

    planner = _planner(store, distance_fn=distance_fn)
    clubs = [
        {"_id": "a", "mapLink": "A"},
        {"_id": "b", "mapLink": "B"},
        {"_id": "c", "mapLink": "C"},
    ]
    ordered = asyncio.run(planner.attach_distances(clubs, UserLocation(*DUBAI_USER)))

    assert [club["_id"] for club in ordered] == ["c", "a", "b"]
    assert ordered[-1]["distanceFromUser"] == SENTINEL_DISTANCE
    assert ordered[0]["distanceText"] == "1.20 km"


def test_retrieve_near_me_events_sorted_by_venue_distance(store):
    planner = _planner(store, FakeLanguage(plan=None), distance_fn=coordinate_distance)
    data = asyncio.run(
        planner.retrieve(
            "events near me",
            _intent(IntentType.FIND_EVENTS, near_me=True),
            "Dubai",
            user_location=UserLocation(*DUBAI_USER),
        )
    )

    assert data.tier is FallbackTier.RULE_PLAN
    assert [event["name"] for event in data.events] == ["House Thursdays", "Techno Rooftop"]
    assert data.events[0]["venue"] == "Soho Garden"
    assert data.events[0]["distanceFromUser"] < data.events[1]["distanceFromUser"]
    assert data.clubs == []


def test_retrieve_event_rows_skip_unapproved_venues(store):
    store._collections["clubs"]["club-soho-garden"]["isApproved"] = False
    language = FakeLanguage(plan={"model": "Event", "query": {}})
    data = asyncio.run(
        _planner(store, language).retrieve("events", _intent(IntentType.FIND_EVENTS), "Dubai")
    )
    names = {event["name"] for event in data.events}
    assert "House Thursdays" not in names
    assert "Techno Rooftop" in names


def test_extract_events_from_clubs_carries_venue():
    clubs = [
        {
            "_id": "club-1",
            "name": "Club One",
            "city": "Dubai",
            "mapLink": "https://maps.google.com/?q=1,2",
            "distanceFromUser": 800,
            "distanceText": "0.80 km",
            "events": [{"_id": "e1", "name": "Opening"}, "unpopulated-id"],
        },
        {"_id": "club-2", "name": "Club Two", "events": []},
    ]
    events = extract_events_from_clubs(clubs)

    assert events == [
        {
            "_id": "e1",
            "name": "Opening",
            "venue": "Club One",
            "city": "Dubai",
            "clubId": "club-1",
            "mapLink": "https://maps.google.com/?q=1,2",
            "distanceFromUser": 800,
            "distanceText": "0.80 km",
        }
    ]


def test_effective_city():
    assert effective_city(_intent(IntentType.FIND_EVENTS, location="Abu Dhabi"), "Dubai") == "Abu Dhabi"
    assert effective_city(_intent(IntentType.FIND_EVENTS, location="current"), "Sharjah") == "Sharjah"
    assert effective_city(_intent(IntentType.FIND_EVENTS, location="Abu Dhabi", near_me=True), "Dubai") == "Dubai"
    assert effective_city(_intent(IntentType.FIND_EVENTS), None) == "Dubai"
