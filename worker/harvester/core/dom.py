"""Selector-driven extraction of listings from rendered result markup."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from bs4 import BeautifulSoup, Tag

from harvester.core.models import Listing
from harvester.core.scroll import LISTING_SELECTORS

logger = logging.getLogger(__name__)

MAPS_ORIGIN = "https://www.google.com"
PLACE_LINK_SELECTOR = 'a[href*="/maps/place"]'
DATA_VALUE_SELECTOR = "[data-value]"

_DECIMAL = re.compile(r"\d+\.\d+")
_NUMBER = re.compile(r"([0-9.]+)")
_COUNT = re.compile(r"(\d[\d,]*)")


def _text(element: Tag) -> str:
    return element.get_text(" ", strip=True)


def _label_or_text(element: Tag) -> str:
    return (element.get("aria-label") or "").strip() or _text(element)


def _name(element: Tag) -> Optional[str]:
    text = _text(element)
    return text if len(text) > 1 else None


def _rating(element: Tag) -> Optional[float]:
    match = _NUMBER.search(_label_or_text(element))
    if not match:
        return None
    try:
        value = float(match.group(1))
    except ValueError:
        return None
    return value if 0 <= value <= 5 else None


def _rating_count(element: Tag) -> Optional[str]:
    match = _COUNT.search(_label_or_text(element))
    return match.group(1).replace(",", "") if match else None


def _category(element: Tag) -> Optional[str]:
    text = _text(element)
    if not text or "★" in text or _DECIMAL.search(text):
        return None
    return text.split("·")[0].strip() or None


def _address(element: Tag) -> Optional[str]:
    text = _text(element)
    if len(text) <= 10 or "★" in text or "Directions" in text:
        return None
    return text


@dataclass(frozen=True)
class ExtractionRule:
    selector: str
    extract: Callable[[Tag], Optional[Any]]

    def apply(self, listing: Tag) -> Optional[Any]:
        element = listing.select_one(self.selector)
        if element is None:
            return None
        return self.extract(element)


def _rules(selectors: Sequence[str], extract: Callable[[Tag], Optional[Any]]) -> List[ExtractionRule]:
    return [ExtractionRule(selector, extract) for selector in selectors]


FIELD_RULES: Dict[str, List[ExtractionRule]] = {
    "name": _rules(
        [
            'div[class*="fontHeadlineSmall"]',
            "h3",
            ".fontHeadlineSmall",
            'div[class*="qBF1Pd"]',
            'span[class*="fontHeadlineSmall"]',
            "[data-value] > div > div:first-child",
            ".section-result-title",
            'a[href*="/maps/place"] > div',
            'div[role="button"] > div > div:first-child',
        ],
        _name,
    ),
    "rating": _rules(
        [
            'span[aria-label*="star"]',
            'span[role="img"][aria-label*="star"]',
            'div[class*="MW4etd"]',
            ".section-result-rating",
        ],
        _rating,
    ),
    "rating_count": _rules(
        [
            'span[aria-label*="reviews"]',
            'span[aria-label*="review"]',
            'button[aria-label*="reviews"]',
            ".section-result-num-reviews",
        ],
        _rating_count,
    ),
    "category": _rules(
        [
            'div[class*="fontBodyMedium"]',
            'span[class*="categoryText"]',
            ".section-result-details > div:first-child",
            'div[class*="W4Efsd"]:not([class*="fontHeadline"])',
            '[data-value] span[class*="fontBodyMedium"]',
        ],
        _category,
    ),
    "address": _rules(
        [
            ".section-result-location",
            'div[class*="fontBodySmall"]',
            'span[class*="fontBodySmall"]',
        ],
        _address,
    ),
}


def first_match(listing: Tag, rules: Sequence[ExtractionRule]) -> Optional[Any]:
    for rule in rules:
        value = rule.apply(listing)
        if value is not None and value != "":
            return value
    return None


def _absolute(href: str) -> str:
    return href if href.startswith("http") else f"{MAPS_ORIGIN}{href}"


def resolve_detail_url(listing: Tag) -> str:
    """Detail link from a place anchor, or rebuilt from a data-value attribute."""
    for selector in (PLACE_LINK_SELECTOR, DATA_VALUE_SELECTOR):
        element = listing.select_one(selector) or listing.css.closest(selector)
        if element is None:
            continue
        href = element.get("href")
        if not href and element.get("data-value"):
            href = f"/maps/place/{element['data-value']}"
        if href:
            return _absolute(href)
    return ""


def find_listing_elements(soup: BeautifulSoup, selectors: Sequence[str] = LISTING_SELECTORS) -> List[Tag]:
    """Union of all selector hits, each element once, in discovery order."""
    seen = set()
    elements: List[Tag] = []
    for selector in selectors:
        for element in soup.select(selector):
            if id(element) in seen:
                continue
            seen.add(id(element))
            elements.append(element)
    return elements


class DomParser:
    def __init__(
        self,
        *,
        field_rules: Optional[Dict[str, List[ExtractionRule]]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.field_rules = field_rules or FIELD_RULES
        self.logger = logger or logging.getLogger(__name__)

    def parse_listing(self, element: Tag) -> Optional[Listing]:
        name = first_match(element, self.field_rules["name"])
        if not name:
            return None
        listing = Listing(name=name, source="dom")
        listing.rating = first_match(element, self.field_rules["rating"])
        listing.rating_count = first_match(element, self.field_rules["rating_count"])
        listing.category = first_match(element, self.field_rules["category"]) or ""
        listing.address = first_match(element, self.field_rules["address"]) or ""
        listing.detail_url = resolve_detail_url(element)
        return listing

    def parse(self, html: str) -> List[Listing]:
        if not html:
            return []
        soup = BeautifulSoup(html, "html.parser")
        elements = find_listing_elements(soup)
        self.logger.debug("Found %s potential listing elements", len(elements))

        listings: List[Listing] = []
        seen_names = set()
        for element in elements:
            try:
                listing = self.parse_listing(element)
            except Exception as exc:  # noqa: BLE001
                self.logger.debug("Skipping listing element: %s", exc)
                continue
            if listing is None or listing.name in seen_names:
                continue
            seen_names.add(listing.name)
            listings.append(listing)

        self.logger.info("Extracted %s listings from result markup", len(listings))
        return listings
