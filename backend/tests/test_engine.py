import asyncio

import pytest
from backend.app.chat.errors import InputValidationError, QueryChainExhausted
from backend.app.chat.types import ChatRequest, ChatTurn, FallbackTier, UserLocation
from backend.app.storage import UnsupportedQuery
from conftest import DUBAI_USER, FakeLanguage


def _run(engine, **request):
    return asyncio.run(engine.run(ChatRequest(**request)))


def _response_system(language):
    (call,) = language.of_kind("response")
    return call["system"]


def test_near_me_events_are_sorted_by_distance(make_engine):
    language = FakeLanguage(
        intent={"type": "find_events", "confidence": 0.9, "extractedSlots": {"nearMe": True}},
        plan=None,
    )
    outcome = _run(
        make_engine(language),
        message="any events near me?",
        city="Dubai",
        user_location=UserLocation(*DUBAI_USER),
    )

    assert outcome.tier is FallbackTier.RULE_PLAN
    assert outcome.response_type == 2
    (block,) = outcome.cards
    assert block.type == "events"
    assert [item["name"] for item in block.items] == ["House Thursdays", "Techno Rooftop"]
    assert all(item["distance"].endswith(" km") for item in block.items)
    assert outcome.referenced_event_id is None
    system = _response_system(language)
    assert "House Thursdays" in system
    assert "Sunset Sessions" not in system
    assert "Summer Closing" not in system


def test_location_slot_overrides_request_city(make_engine):
    language = FakeLanguage(
        intent={"type": "find_events", "confidence": 0.8, "extractedSlots": {"location": "Abu Dhabi"}},
        plan=None,
    )
    outcome = _run(make_engine(language), message="events in Abu Dhabi", city="Dubai")
    assert [item["name"] for item in outcome.cards[0].items] == ["Island Live"]


def test_empty_message_touches_no_collaborator(make_engine):
    language = FakeLanguage()
    engine = make_engine(language)
    with pytest.raises(InputValidationError):
        _run(engine, message="   ")
    with pytest.raises(InputValidationError):
        _run(engine, message={"text": "hi"})
    assert language.calls == []


def test_follow_up_answers_about_recommended_event(make_engine):
    language = FakeLanguage(intent=None, response="It starts at 22:00.")
    history = (
        ChatTurn(role="user", content="find events"),
        ChatTurn(role="assistant", content="Check out Techno Rooftop at White Dubai!"),
    )
    outcome = _run(make_engine(language), message="what time does it start?", history=history)

    system = _response_system(language)
    assert "Techno Rooftop" in system
    assert "22:00" in system
    assert "House Thursdays" not in system
    assert outcome.response == "It starts at 22:00."
    assert outcome.response_type == 1
    assert outcome.referenced_event_id == "evt-white-techno"
    assert outcome.to_payload()["referencedEventId"] == "evt-white-techno"
    # the reference is answered directly, no query plan is attempted
    assert language.of_kind("plan") == []


def test_explicit_event_id_is_used_as_reference(make_engine):
    language = FakeLanguage(intent={"type": "general", "confidence": 0.6})
    outcome = _run(make_engine(language), message="is there a dress code?", event_id="evt-soho-house")

    assert outcome.referenced_event_id == "evt-soho-house"
    assert "No sportswear" in _response_system(language)
    assert outcome.cards[0].items[0]["venue"] == "Soho Garden"


def test_bookings_show_only_paid_orders(make_engine):
    language = FakeLanguage(intent={"type": "my_bookings", "confidence": 0.95})
    outcome = _run(make_engine(language), message="show my tickets", user_id="user-layla")

    assert outcome.tier is FallbackTier.RULE_PLAN
    (block,) = outcome.cards
    assert block.type == "mixed"
    assert [item["id"] for item in block.items] == ["ord-1001"]
    assert block.items[0]["status"] == "paid"
    assert language.of_kind("plan") == []


def test_bookings_without_user_skip_the_store(make_engine):
    language = FakeLanguage(intent={"type": "booking_status", "confidence": 0.9})
    outcome = _run(make_engine(language), message="is my booking confirmed?")

    assert outcome.cards == []
    assert outcome.tier is None
    assert outcome.response_type == 8
    assert "not signed in" in _response_system(language)


@pytest.mark.parametrize(
    "message, code",
    [
        ("can I get a refund?", 11),
        ("how do I cancel my ticket", 12),
        ("what are your terms", 13),
    ],
)
def test_policy_response_types(make_engine, message, code):
    language = FakeLanguage(intent={"type": "policy_query", "confidence": 0.9})
    outcome = _run(make_engine(language), message=message)
    assert outcome.response_type == code
    assert outcome.cards == []


def test_model_outage_still_answers(make_engine):
    language = FakeLanguage(intent=None, plan=None, response=None)
    outcome = _run(make_engine(language), message="which clubs are good?", city="Dubai")

    assert outcome.intent.source == "keyword"
    assert outcome.response == "Sorry, I encountered an error while processing your request."
    assert outcome.tier is FallbackTier.RULE_PLAN
    assert {item["name"] for item in outcome.cards[0].items} == {
        "White Dubai",
        "Soho Garden",
        "Cove Beach",
    }


def test_exhausted_chain_propagates(make_engine, monkeypatch):
    language = FakeLanguage(intent={"type": "find_clubs", "confidence": 0.9}, plan=None)
    engine = make_engine(language)

    def broken(*args, **kwargs):
        raise UnsupportedQuery("store offline")

    monkeypatch.setattr(engine.planner, "rule_plan", broken)
    monkeypatch.setattr(engine.planner, "generic_plan", broken)
    with pytest.raises(QueryChainExhausted):
        _run(engine, message="clubs please")
    assert language.of_kind("response") == []
