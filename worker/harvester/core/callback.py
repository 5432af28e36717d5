"""Delivery of finished harvest results to a caller-supplied callback URL."""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 10
FAILED_DIR = Path(__file__).resolve().parents[2].joinpath("data", "failed")


def _build_session() -> requests.Session:
    session = requests.Session()
    retries = Retry(
        total=3,
        backoff_factor=1,
        status_forcelist=(500, 502, 503, 504),
        allowed_methods=("POST", "GET"),
    )
    session.mount("http://", HTTPAdapter(max_retries=retries))
    session.mount("https://", HTTPAdapter(max_retries=retries))
    return session


def save_failed_payload(payload: Dict[str, Any], failed_dir: Path = FAILED_DIR) -> Optional[Path]:
    """Persist a payload that could not be delivered so scripts/replay_failed.py can resend it."""
    try:
        failed_dir.mkdir(parents=True, exist_ok=True)
        path = failed_dir.joinpath(f"failed-{int(time.time() * 1000)}.json")
        with path.open("w", encoding="utf-8") as fh:
            json.dump(payload, fh, ensure_ascii=False, indent=2)
    except OSError as exc:
        logger.error("Failed to save undelivered payload to disk: %s", exc)
        return None
    logger.info("Saved undelivered payload to %s", path)
    return path


def post_results(
    callback_url: str,
    payload: Dict[str, Any],
    *,
    session: Optional[requests.Session] = None,
    failed_dir: Path = FAILED_DIR,
) -> Optional[requests.Response]:
    """POST results to the callback; undelivered payloads are written to disk instead of raising.

    Returns the response (2xx or not) or None when the request never completed.
    """
    session = session or _build_session()
    envelope = {"callback_url": callback_url, "payload": payload}
    try:
        response = session.post(callback_url, json=payload, timeout=REQUEST_TIMEOUT)
    except requests.RequestException as exc:
        logger.error("Failed to call results callback %s: %s", callback_url, exc)
        save_failed_payload(envelope, failed_dir)
        return None

    if not 200 <= response.status_code < 300:
        logger.error(
            "Results callback returned non-2xx status (%s): %s", response.status_code, response.text[:500]
        )
        save_failed_payload({**envelope, "status": response.status_code}, failed_dir)
    return response


def replay_failed_payloads(
    failed_dir: Path = FAILED_DIR,
    *,
    session: Optional[requests.Session] = None,
) -> Tuple[int, int]:
    """Resend saved payloads; delivered files are removed. Returns (replayed, still_failing)."""
    if not failed_dir.is_dir():
        logger.info("No failed folder at %s", failed_dir)
        return 0, 0

    session = session or _build_session()
    replayed = failing = 0
    for path in sorted(failed_dir.glob("failed-*.json")):
        try:
            with path.open("r", encoding="utf-8") as fh:
                envelope = json.load(fh)
            response = session.post(envelope["callback_url"], json=envelope["payload"], timeout=REQUEST_TIMEOUT)
            response.raise_for_status()
        except (OSError, ValueError, KeyError, requests.RequestException) as exc:
            logger.warning("Failed to replay %s: %s", path.name, exc)
            failing += 1
            continue
        path.unlink()
        replayed += 1
        logger.info("Replayed %s => %s", path.name, response.status_code)
    return replayed, failing
