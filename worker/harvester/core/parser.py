"""Single entry point over both extraction channels."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from harvester.core.dom import DomParser
from harvester.core.models import Capture, Listing
from harvester.core.structured import StructuredParser

logger = logging.getLogger(__name__)

_FILLABLE = ("address", "category", "rating", "rating_count", "detail_url")


def name_key(name: str) -> str:
    return "".join(name.split()).lower()


def fill_missing(target: Listing, donor: Listing) -> None:
    for field_name in _FILLABLE:
        if getattr(target, field_name) in (None, "") and getattr(donor, field_name) not in (None, ""):
            setattr(target, field_name, getattr(donor, field_name))


class RecordParser:
    """Union of structured-payload and markup listings for one session.

    Structured listings come first. A markup listing naming a business the
    payloads already produced only fills that listing's empty fields.
    """

    def __init__(
        self,
        *,
        structured: Optional[StructuredParser] = None,
        dom: Optional[DomParser] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.logger = logger or logging.getLogger(__name__)
        self.structured = structured or StructuredParser(logger=self.logger)
        self.dom = dom or DomParser(logger=self.logger)

    def parse(self, captures: Iterable[Capture], html: str = "") -> List[Listing]:
        listings = self.structured.parse(captures)
        by_name: Dict[str, Listing] = {}
        for listing in listings:
            by_name.setdefault(name_key(listing.name), listing)

        merged = 0
        for listing in self.dom.parse(html):
            existing = by_name.get(name_key(listing.name))
            if existing is not None:
                fill_missing(existing, listing)
                merged += 1
                continue
            by_name[name_key(listing.name)] = listing
            listings.append(listing)

        self.logger.info(
            "Parsed %s listings (%s merged from markup into payload listings)", len(listings), merged
        )
        return listings
