import pytest
from backend.app.chat.cards import MAX_CARD_ITEMS, assemble_cards, card_category
from backend.app.chat.types import Intent, IntentType


def _intent(kind):
    return Intent(type=kind, confidence=0.8)


def _events(count):
    return [
        {
            "_id": f"evt-{i}",
            "name": f"Event {i}",
            "venue": "White Dubai",
            "date": "2026-11-20",
            "time": "22:00",
            "coverImage": "",
            "tickets": [{"price": 300}, {"price": 150}, "unpopulated"],
            "distanceText": "1.20 km",
        }
        for i in range(count)
    ]


def test_event_cards_are_capped():
    (block,) = assemble_cards(_intent(IntentType.FIND_EVENTS), events=_events(7))

    assert block.type == "events"
    assert block.title == "Upcoming Events"
    assert len(block.items) == MAX_CARD_ITEMS == 4
    first = block.items[0]
    assert first["price"] == 150
    assert first["image"] is None
    assert first["distance"] == "1.20 km"


def test_club_cards_use_first_photo():
    clubs = [{"_id": "c1", "name": "Soho Garden", "photos": ["a.jpg", "b.jpg"], "rating": 4.4}]
    (block,) = assemble_cards(_intent(IntentType.FILTER_CLUBS), clubs=clubs)

    assert block.to_dict() == {
        "type": "clubs",
        "title": "Popular Clubs",
        "items": [
            {
                "id": "c1",
                "name": "Soho Garden",
                "city": None,
                "typeOfVenue": None,
                "rating": 4.4,
                "image": "a.jpg",
                "distance": None,
            }
        ],
    }


def test_booking_cards_are_mixed_block():
    bookings = [{"_id": "ord-1", "name": "Techno Rooftop", "bookingStatus": "paid", "quantity": 2}]
    (block,) = assemble_cards(_intent(IntentType.MY_BOOKINGS), bookings=bookings)
    assert block.type == "mixed"
    assert block.items[0]["status"] == "paid"


def test_no_rows_means_no_cards():
    assert assemble_cards(_intent(IntentType.FIND_EVENTS)) == []
    # rows of the wrong kind are not shown
    assert assemble_cards(_intent(IntentType.FIND_CLUBS), events=_events(2)) == []


@pytest.mark.parametrize(
    "kind",
    [
        IntentType.GENERAL,
        IntentType.POLICY_QUERY,
        IntentType.BOOKING_HELP,
        IntentType.CLUB_REGISTRATION,
        IntentType.DIRECTIONS,
    ],
)
def test_non_listing_intents_get_no_cards(kind):
    assert card_category(kind) is None
    assert assemble_cards(_intent(kind), events=_events(2), clubs=[{"_id": "c"}]) == []
