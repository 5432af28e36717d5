"""Parser for intercepted Maps search payloads.

The payloads are deeply nested, positionally indexed JSON arrays with no
declared schema. Every location we rely on lives in the tables below so a
layout change is a table edit rather than a logic rewrite; every lookup is
optional and a miss simply leaves the field empty.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from harvester.core.models import DAY_BUCKETS, Capture, Listing

logger = logging.getLogger(__name__)

XSSI_PREFIX = ")]}'"
ENVELOPE_KEY = "d"
ENVELOPE_PREFIX_LENGTH = 4
ENVELOPE_INDEX = 64
MIN_PAYLOAD_LENGTH = 50

# Candidate locations of the business array, tried in order.
BUSINESS_ARRAY_PATHS: Tuple[Tuple[int, ...], ...] = (
    (64,),
    (0, 1),
    (0, 0, 1),
    (1,),
    (0,),
)

# (element length, slot holding the real entity) for wrapped encodings.
WRAPPED_SHAPES: Tuple[Tuple[int, int], ...] = (
    (15, 14),
    (2, 1),
)

FIELD_PATHS: Dict[str, Tuple[int, ...]] = {
    "name": (11,),
    "address": (39,),
    "website": (7, 0),
    "domain": (7, 1),
    "phone": (178, 0, 0),
    "image_url": (157,),
    "rating": (4, 7),
    "rating_count": (4, 8),
    "category": (13, 0),
    "hours": (34, 1),
    "place_id": (9,),
}

_NAME_NOISE = re.compile(r"[,'\"]")


class ParseFailure(ValueError):
    """Raised for a payload that is not decodable or has no business array."""


def safe_get(node: Any, *indices: int) -> Any:
    """Safely navigate nested list indexes; return None if any access fails."""
    current = node
    for index in indices:
        if not isinstance(current, (list, tuple)):
            return None
        if index < 0 or index >= len(current):
            return None
        current = current[index]
    return current


def strip_prefix(text: str, prefix: str = XSSI_PREFIX) -> str:
    return text[len(prefix):] if text.startswith(prefix) else text


def decode_payload(body: str) -> Any:
    if not body or len(body) < MIN_PAYLOAD_LENGTH:
        raise ParseFailure("payload too short")
    try:
        return json.loads(strip_prefix(body))
    except ValueError as exc:
        raise ParseFailure(f"payload is not JSON: {exc}") from exc


def _from_envelope(tree: Any) -> Optional[list]:
    if not isinstance(tree, dict):
        return None
    inner = tree.get(ENVELOPE_KEY)
    if not isinstance(inner, str):
        return None
    try:
        decoded = json.loads(inner[ENVELOPE_PREFIX_LENGTH:])
    except ValueError:
        logger.debug("Envelope %r did not hold JSON", ENVELOPE_KEY)
        return None
    candidate = safe_get(decoded, ENVELOPE_INDEX)
    if isinstance(candidate, list) and candidate:
        return candidate
    return None


def locate_business_array(tree: Any, paths: Sequence[Tuple[int, ...]] = BUSINESS_ARRAY_PATHS) -> Optional[list]:
    """Return the first non-empty list found by the envelope key or the positional lookups."""
    found = _from_envelope(tree)
    if found is not None:
        return found
    for path in paths:
        candidate = safe_get(tree, *path)
        if isinstance(candidate, list) and candidate:
            return candidate
    return None


def normalize_entity(element: Any) -> Optional[list]:
    """Unwrap alternate encodings where the entity sits one level deeper."""
    if not isinstance(element, list):
        return None
    for length, slot in WRAPPED_SHAPES:
        if len(element) == length and isinstance(element[slot], list):
            return element[slot]
    return element


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (str, int, float)):
        return str(value).strip()
    return ""


def _rating(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _rating_count(value: Any) -> Optional[str]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return str(int(value))
    digits = re.sub(r"\D", "", str(value))
    return digits or None


def _hours(value: Any) -> Dict[str, str]:
    hours: Dict[str, str] = {}
    if not isinstance(value, list):
        return hours
    for entry in value:
        day = safe_get(entry, 0)
        if not isinstance(day, str):
            continue
        bucket = day.strip().lower()
        if bucket not in DAY_BUCKETS:
            continue
        text = safe_get(entry, 1, 0)
        hours[bucket] = text if isinstance(text, str) else ""
    return hours


def clean_name(value: Any) -> str:
    if not isinstance(value, str):
        return ""
    return _NAME_NOISE.sub(" ", value).strip()


FIELD_CONVERTERS: Dict[str, Callable[[Any], Any]] = {
    "name": clean_name,
    "address": _text,
    "website": _text,
    "domain": _text,
    "phone": _text,
    "image_url": _text,
    "rating": _rating,
    "rating_count": _rating_count,
    "category": _text,
    "hours": _hours,
    "place_id": _text,
}


def extract_listing(entity: list) -> Optional[Listing]:
    fields = {key: FIELD_CONVERTERS[key](safe_get(entity, *path)) for key, path in FIELD_PATHS.items()}
    if not fields["name"]:
        return None
    return Listing(source="api", **fields)


class StructuredParser:
    """Turn captured payloads into listings, de-duplicating on name+address per pass."""

    def __init__(self, *, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger(__name__)

    def parse_body(self, body: str, seen: Optional[Set[str]] = None) -> List[Listing]:
        seen = seen if seen is not None else set()
        tree = decode_payload(body)
        businesses = locate_business_array(tree)
        if businesses is None:
            raise ParseFailure("no business array at any known location")

        listings: List[Listing] = []
        for element in businesses:
            entity = normalize_entity(element)
            if entity is None:
                continue
            listing = extract_listing(entity)
            if listing is None:
                continue
            key = listing.name + listing.address
            if key in seen:
                continue
            seen.add(key)
            listings.append(listing)
        return listings

    def parse(self, captures: Iterable[Capture]) -> List[Listing]:
        seen: Set[str] = set()
        listings: List[Listing] = []
        for capture in captures:
            try:
                listings.extend(self.parse_body(capture.body, seen))
            except ParseFailure as exc:
                self.logger.debug("Skipping payload from %s: %s", capture.source, exc)
        if listings:
            self.logger.info("Extracted %s businesses from captured payloads", len(listings))
        return listings
