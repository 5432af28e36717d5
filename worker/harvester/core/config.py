"""Application configuration helpers."""

import logging
import os
from dataclasses import dataclass, replace
from functools import lru_cache
from typing import Any

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

TRUE_VALUES = {"1", "true", "yes", "y"}


class ConfigError(RuntimeError):
    """Raised when an environment value cannot be interpreted."""


@dataclass(frozen=True)
class Settings:
    max_results: int = 136
    headless: bool = True
    parallel_limit: int = 1
    enrichment_limit: int = 2
    retries: int = 2
    delay_min_ms: int = 2000
    delay_max_ms: int = 5000
    include_photos: bool = False
    screenshot_dir: str = "."
    results_callback_url: str = ""
    worker_port: int = 9000


@dataclass(frozen=True)
class ScrapeOptions:
    """Per-call knobs for a harvest; derived from Settings unless overridden."""

    max_results: int = 136
    headless: bool = True
    parallel_limit: int = 1
    enrichment_limit: int = 2
    retries: int = 2
    delay_min_ms: int = 2000
    delay_max_ms: int = 5000
    include_photos: bool = False
    screenshot_dir: str = "."

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: Any) -> "ScrapeOptions":
        options = cls(
            max_results=settings.max_results,
            headless=settings.headless,
            parallel_limit=settings.parallel_limit,
            enrichment_limit=settings.enrichment_limit,
            retries=settings.retries,
            delay_min_ms=settings.delay_min_ms,
            delay_max_ms=settings.delay_max_ms,
            include_photos=settings.include_photos,
            screenshot_dir=settings.screenshot_dir,
        )
        cleaned = {key: value for key, value in overrides.items() if value is not None}
        return replace(options, **cleaned) if cleaned else options


def _env_int(name: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    return value


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in TRUE_VALUES


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from environment variables with sensible defaults."""
    load_dotenv()

    delay_min_ms = _env_int("HARVEST_DELAY_MIN_MS", 2000)
    delay_max_ms = _env_int("HARVEST_DELAY_MAX_MS", 5000)
    if delay_max_ms < delay_min_ms:
        logger.warning(
            "HARVEST_DELAY_MAX_MS (%s) is below HARVEST_DELAY_MIN_MS (%s); using the minimum for both.",
            delay_max_ms,
            delay_min_ms,
        )
        delay_max_ms = delay_min_ms

    results_callback_url = os.getenv("RESULTS_CALLBACK_URL", "")
    if not results_callback_url:
        logger.info("RESULTS_CALLBACK_URL is not configured; results are only returned to the caller.")

    return Settings(
        max_results=_env_int("HARVEST_MAX_RESULTS", 136, minimum=1),
        headless=_env_bool("HARVEST_HEADLESS", True),
        parallel_limit=_env_int("HARVEST_PARALLEL_LIMIT", 1, minimum=1),
        enrichment_limit=_env_int("HARVEST_ENRICHMENT_LIMIT", 2, minimum=1),
        retries=_env_int("HARVEST_RETRIES", 2),
        delay_min_ms=delay_min_ms,
        delay_max_ms=delay_max_ms,
        include_photos=_env_bool("HARVEST_INCLUDE_PHOTOS", False),
        screenshot_dir=os.getenv("HARVEST_SCREENSHOT_DIR", "."),
        results_callback_url=results_callback_url,
        worker_port=_env_int("WORKER_PORT", 9000, minimum=1),
    )
