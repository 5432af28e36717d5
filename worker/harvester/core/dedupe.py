"""Identity-key de-duplication of business records, within and across batches."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from harvester.core.models import BusinessRecord

logger = logging.getLogger(__name__)

MIN_PHONE_KEY_DIGITS = 10

_WHITESPACE = re.compile(r"\s+")
_NON_DIGIT = re.compile(r"\D")


def composite_key(name: str, phone: str) -> str:
    return f"{_WHITESPACE.sub('', name or '').lower()}|{_NON_DIGIT.sub('', phone or '')}"


def identity_keys(record: BusinessRecord) -> List[str]:
    """Composite name|phone key, plus the bare phone digits when there are at least ten."""
    keys = [composite_key(record.name, record.phone)]
    digits = _NON_DIGIT.sub("", record.phone or "")
    if len(digits) >= MIN_PHONE_KEY_DIGITS:
        keys.append(digits)
    return keys


@dataclass
class DedupeResult:
    kept: List[BusinessRecord] = field(default_factory=list)
    duplicate_count: int = 0


class Deduplicator:
    """Keeps the first record per identity; state accumulates across dedupe() calls."""

    def __init__(self, *, logger: Optional[logging.Logger] = None) -> None:
        self.seen: Dict[str, str] = {}
        self.logger = logger or logging.getLogger(__name__)

    def is_duplicate(self, record: BusinessRecord) -> bool:
        return any(key in self.seen for key in identity_keys(record))

    def add(self, record: BusinessRecord) -> bool:
        """Register the record; False when it collides with an earlier one."""
        keys = identity_keys(record)
        if any(key in self.seen for key in keys):
            self.logger.debug("Skipping duplicate: %s", record.name)
            return False
        for key in keys:
            self.seen[key] = record.name
        return True

    def dedupe(self, records: Iterable[BusinessRecord]) -> DedupeResult:
        result = DedupeResult()
        for record in records:
            if self.add(record):
                result.kept.append(record)
            else:
                result.duplicate_count += 1
        if result.duplicate_count:
            self.logger.info("Dropped %s duplicate records", result.duplicate_count)
        return result


def dedupe(records: Iterable[BusinessRecord]) -> DedupeResult:
    return Deduplicator().dedupe(records)
