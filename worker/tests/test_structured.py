import json

import pytest

from harvester.core import structured
from harvester.core.models import Capture

from conftest import make_entity, make_payload


def test_safe_get_returns_none_on_any_miss():
    tree = [[1, [2, 3]], "x"]
    assert structured.safe_get(tree, 0, 1, 1) == 3
    assert structured.safe_get(tree, 0, 5) is None
    assert structured.safe_get(tree, 1, 0) is None
    assert structured.safe_get(None, 0) is None


def test_strip_prefix_only_removes_leading_guard():
    assert structured.strip_prefix(")]}'\n[1]") == "\n[1]"
    assert structured.strip_prefix("[1]") == "[1]"


def test_extract_listing_reads_every_mapped_field():
    entity = make_entity(
        "Acme Cafe",
        address="12 Briggate, Leeds LS1 6HD",
        phone="0113 496 0123",
        website="https://acme.example/",
        domain="acme.example",
        rating=4.6,
        reviews=231,
        category="Cafe",
        hours={"Monday": "7 AM–5 PM", "Sunday": "Closed"},
        place_id="ChIJ123",
        image="https://lh5.googleusercontent.com/p/abc",
    )

    listing = structured.extract_listing(entity)

    assert listing.name == "Acme Cafe"
    assert listing.address == "12 Briggate, Leeds LS1 6HD"
    assert listing.phone == "0113 496 0123"
    assert listing.website == "https://acme.example/"
    assert listing.domain == "acme.example"
    assert listing.rating == 4.6
    assert listing.rating_count == "231"
    assert listing.category == "Cafe"
    assert listing.hours == {"monday": "7 AM–5 PM", "sunday": "Closed"}
    assert listing.place_id == "ChIJ123"
    assert listing.image_url == "https://lh5.googleusercontent.com/p/abc"
    assert listing.source == "api"


def test_missing_fields_stay_empty():
    entity = [None] * 12
    entity[11] = "Bare Bakery"

    listing = structured.extract_listing(entity)

    assert listing.name == "Bare Bakery"
    assert listing.address == ""
    assert listing.phone == ""
    assert listing.rating is None
    assert listing.rating_count is None
    assert listing.hours == {}


def test_clean_name_replaces_quotes_and_commas():
    assert structured.clean_name('Joe\'s "Best", Pizza') == "Joe s  Best   Pizza"
    assert structured.clean_name(None) == ""


def test_wrapped_encodings_are_unwrapped():
    entity = make_entity("Acme Cafe")
    fifteen = [None] * 14 + [entity]
    pair = ["meta", make_entity("Beta Bar", address="2 Call Lane, Leeds")]
    body = make_payload([fifteen, pair])

    listings = structured.StructuredParser().parse_body(body)

    assert [listing.name for listing in listings] == ["Acme Cafe", "Beta Bar"]


def test_envelope_key_is_tried_first():
    inner = json.dumps([None] * 64 + [[make_entity("Envelope Diner")]])
    body = ")]}'\n" + json.dumps({"d": ")]}'" + inner, "c": 0})

    listings = structured.StructuredParser().parse_body(body)

    assert [listing.name for listing in listings] == ["Envelope Diner"]


def test_positional_lookups_fall_back_in_order():
    businesses = [make_entity("Fallback Grill")]
    body = ")]}'\n" + json.dumps([None, businesses, "padding" * 10])

    listings = structured.StructuredParser().parse_body(body)

    assert [listing.name for listing in listings] == ["Fallback Grill"]


def test_duplicate_name_and_address_dropped_within_a_pass():
    first = make_entity("Acme Cafe", address="1 Main Street, Leeds")
    second = make_entity("Acme Cafe", address="1 Main Street, Leeds", phone="0000")
    other_branch = make_entity("Acme Cafe", address="9 Park Row, Leeds")
    parser = structured.StructuredParser()

    listings = parser.parse(
        [Capture("a", make_payload([first, second])), Capture("b", make_payload([other_branch]))]
    )

    assert [listing.address for listing in listings] == ["1 Main Street, Leeds", "9 Park Row, Leeds"]


def test_bad_payloads_are_skipped_without_aborting_the_pass():
    parser = structured.StructuredParser()
    captures = [
        Capture("short", "{}"),
        Capture("garbage", ")]}'" + "not json at all " * 5),
        Capture("no-array", ")]}'\n" + json.dumps({"unrelated": "x" * 60})),
        Capture("good", make_payload([make_entity("Survivor Cafe")])),
    ]

    listings = parser.parse(captures)

    assert [listing.name for listing in listings] == ["Survivor Cafe"]


def test_parse_body_raises_parse_failure_for_undecodable_input():
    with pytest.raises(structured.ParseFailure):
        structured.StructuredParser().parse_body("x" * 80)
