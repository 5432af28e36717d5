"""Core data models shared by the harvesting pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

DAY_BUCKETS = ("sunday", "monday", "tuesday", "wednesday", "thursday", "friday", "saturday")


@dataclass(slots=True)
class Capture:
    """Raw text of one intercepted listing/detail response."""

    source: str
    body: str


@dataclass(slots=True)
class Listing:
    """Partial business record produced by either extraction channel.

    Only `name` is guaranteed; everything else is whatever the collapsed
    result view or the intercepted payload happened to carry.
    """

    name: str
    address: str = ""
    phone: str = ""
    website: str = ""
    domain: str = ""
    category: str = ""
    rating: Optional[float] = None
    rating_count: Optional[str] = None
    hours: Dict[str, str] = field(default_factory=dict)
    hours_text: str = ""
    image_url: str = ""
    photos: List[str] = field(default_factory=list)
    place_id: str = ""
    detail_url: str = ""
    source: str = "api"

    def is_complete(self) -> bool:
        return bool(self.name and self.phone and self.website and self.address)

    def missing_fields(self) -> List[str]:
        missing = [name for name in ("phone", "website", "address") if not getattr(self, name)]
        if not self.hours and not self.hours_text:
            missing.append("hours")
        return missing


@dataclass(slots=True)
class BusinessRecord:
    """Canonical output unit handed back to callers."""

    name: str
    phone: str = ""
    rating: float = 0.0
    rating_count: str = "0"
    address: str = ""
    category: str = ""
    website: str = ""
    hours_of_operation: str = ""
    photos: List[str] = field(default_factory=list)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "phone": self.phone,
            "rating": self.rating,
            "ratingCount": self.rating_count,
            "address": self.address,
            "category": self.category,
            "website": self.website,
            "hoursOfOperation": self.hours_of_operation,
            "photos": list(self.photos),
        }


@dataclass(slots=True)
class HarvestOutcome:
    count: int
    reason: str


@dataclass
class HarvestSession:
    """State for one query attempt; created at navigation, dropped after emission."""

    query: str
    captures: List[Capture] = field(default_factory=list)
    listings: List[Listing] = field(default_factory=list)
    stagnant_cycles: int = 0
    scroll_attempts: int = 0

    def add_capture(self, source: str, body: str) -> None:
        self.captures.append(Capture(source=source, body=body))


@dataclass(slots=True)
class ScrapeResult:
    records: List[BusinessRecord] = field(default_factory=list)
    total_records: int = 0
    new_records: int = 0
    duplicates_skipped: int = 0

    def to_payload(self) -> Dict[str, Any]:
        return {
            "data": [record.to_payload() for record in self.records],
            "totalRecords": self.total_records,
            "newRecords": self.new_records,
            "duplicatesSkipped": self.duplicates_skipped,
        }


@dataclass(slots=True)
class BatchResult:
    """Per-query results plus the master set de-duplicated across all of them."""

    results: Dict[str, ScrapeResult] = field(default_factory=dict)
    master: ScrapeResult = field(default_factory=ScrapeResult)
