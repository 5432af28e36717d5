"""Utilities for turning harvested listings into validated business records."""

import logging
import re
from typing import Iterable, List

from harvester.core.models import DAY_BUCKETS, BusinessRecord, Listing

logger = logging.getLogger(__name__)

MAX_PHOTOS = 3
_COUNT = re.compile(r"^\d+$")


def format_hours(listing: Listing) -> str:
    if listing.hours:
        return "; ".join(f"{day}: {listing.hours[day]}" for day in DAY_BUCKETS if day in listing.hours)
    return listing.hours_text or ""


def _photos(listing: Listing) -> List[str]:
    photos = [url for url in listing.photos if url]
    if not photos and listing.image_url:
        photos = [listing.image_url]
    return photos[:MAX_PHOTOS]


def to_business_record(listing: Listing) -> BusinessRecord:
    return BusinessRecord(
        name=listing.name or "",
        phone=listing.phone or "",
        rating=listing.rating if listing.rating is not None else 0.0,
        rating_count=listing.rating_count or "0",
        address=listing.address or "",
        category=listing.category or "",
        website=listing.website or "",
        hours_of_operation=format_hours(listing),
        photos=_photos(listing),
    )


def validate_record(record: BusinessRecord) -> List[str]:
    errors = []
    if not record.name or not record.name.strip():
        errors.append("Name is required")
    try:
        rating = float(record.rating)
    except (TypeError, ValueError):
        rating = None
    if rating is None or not 0 <= rating <= 5:
        errors.append("Invalid rating")
    if record.rating_count and not _COUNT.match(str(record.rating_count).strip()):
        errors.append("Invalid rating count")
    return errors


def build_records(listings: Iterable[Listing]) -> List[BusinessRecord]:
    """Convert listings and drop the ones that fail validation."""
    records: List[BusinessRecord] = []
    for listing in listings:
        record = to_business_record(listing)
        errors = validate_record(record)
        if errors:
            logger.warning("Invalid data: %s, %s", record.name, ", ".join(errors))
            continue
        records.append(record)
    return records
