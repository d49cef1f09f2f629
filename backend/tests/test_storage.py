import asyncio

import pytest
from backend.app.storage import DocumentStore, UnsupportedQuery, matches


def _docs(store, *args, **kwargs):
    return asyncio.run(store.find(*args, **kwargs))


def test_regex_city_and_boolean_filter(store):
    clubs = _docs(store, "clubs", {"isApproved": True, "city": {"$regex": "^dubai$", "$options": "i"}})
    assert {club["_id"] for club in clubs} == {
        "club-white-dubai",
        "club-soho-garden",
        "club-cove-beach",
    }


def test_array_membership_and_size():
    doc = {"events": ["a", "b"], "tags": []}
    assert matches(doc, {"events": "a"})
    assert not matches(doc, {"events": "z"})
    assert matches(doc, {"events": {"$exists": True, "$not": {"$size": 0}}})
    assert not matches(doc, {"tags": {"$not": {"$size": 0}}})
    assert not matches(doc, {"missing": {"$exists": True}})


def test_comparison_and_logical_operators():
    doc = {"date": "2026-11-20", "price": 150, "status": "active"}
    assert matches(doc, {"date": {"$gte": "2026-10-01"}, "price": {"$lt": 200}})
    assert matches(doc, {"$or": [{"status": "inactive"}, {"price": {"$in": [100, 150]}}]})
    assert not matches(doc, {"$and": [{"status": "active"}, {"price": {"$gt": 150}}]})
    assert matches(doc, {"status": {"$nin": ["inactive"]}, "price": {"$ne": 100}})
    assert matches(doc, {"guestExperience.dressCode": None})


def test_dotted_paths_reach_into_arrays():
    doc = {"tickets": [{"price": 150}, {"price": 2500}]}
    assert matches(doc, {"tickets.price": {"$gte": 2000}})
    assert not matches(doc, {"tickets.price": {"$lt": 100}})


@pytest.mark.parametrize(
    "query",
    [
        {"$where": "this.isApproved"},
        {"name": {"$function": "x"}},
        {"name": {"$regex": "x", "$options": "g"}},
        {"$or": []},
    ],
)
def test_unsupported_filters_raise(query):
    with pytest.raises(UnsupportedQuery):
        matches({"name": "x"}, query)


def test_populate_with_match_and_nested_populate(store):
    clubs = _docs(
        store,
        "clubs",
        {"_id": "club-white-dubai"},
        populate=[
            {
                "path": "events",
                "match": {"status": "active", "date": {"$gte": "2026-10-01"}},
                "populate": [{"path": "tickets"}],
            }
        ],
    )
    events = clubs[0]["events"]
    assert [event["_id"] for event in events] == ["evt-white-techno"]
    assert {ticket["name"] for ticket in events[0]["tickets"]} == {"General Admission", "VIP Table"}


def test_projection_keeps_id_and_skips_unselected_populate(store):
    clubs = _docs(store, "clubs", {"_id": "club-soho-garden"}, projection="name city", populate=["events"])
    assert clubs == [{"_id": "club-soho-garden", "name": "Soho Garden", "city": "Dubai"}]


def test_sort_and_limit(store):
    events = _docs(
        store,
        "events",
        {"status": "active"},
        sort=[("isFeatured", -1), ("featuredNumber", -1), ("createdAt", -1)],
        limit=3,
    )
    assert [event["_id"] for event in events] == [
        "evt-white-techno",
        "evt-soho-house",
        "evt-saadiyat-live",
    ]


def test_returned_documents_are_copies(store):
    first = asyncio.run(store.get("clubs", "club-white-dubai"))
    first["name"] = "changed"
    again = asyncio.run(store.get("clubs", "club-white-dubai"))
    assert again["name"] == "White Dubai"


def test_populate_rejects_non_reference(store):
    with pytest.raises(UnsupportedQuery):
        _docs(store, "clubs", {}, populate=["photos"])


def test_unknown_collection_and_missing_ids():
    with pytest.raises(UnsupportedQuery):
        asyncio.run(DocumentStore().find("payments"))
    with pytest.raises(ValueError):
        DocumentStore({"clubs": [{"name": "no id"}]})
