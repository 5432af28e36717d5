"""HTTP entrypoint that triggers Maps harvest jobs (Cloud Run friendly)."""

from __future__ import annotations

import asyncio
import logging
import os
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict

from flask import Flask, jsonify, request

from harvester.core.callback import post_results
from harvester.core.config import TRUE_VALUES, ScrapeOptions, get_settings
from harvester.jobs.pipeline import scrape_query

# ---------- Logging ----------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)

# ---------- App & executor ----------
app = Flask(__name__)
_executor = ThreadPoolExecutor(max_workers=4)

# ---------- Routes ----------


@app.get("/")
def root() -> Any:
    """Simple root to avoid 404 on GET /"""
    return "ok", 200


@app.get("/healthz")
def healthcheck() -> Any:
    """Lightweight health endpoint; only reads env-based settings."""
    settings = get_settings()
    return (
        jsonify(
            {
                "status": "ok",
                "worker_port_config": getattr(settings, "worker_port", None),
                "revision": os.getenv("K_REVISION", "unknown"),
            }
        ),
        200,
    )


def _positive_int(payload: Dict[str, Any], key: str, *, allow_zero: bool = False):
    raw = payload.get(key)
    if raw is None:
        return None
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ValueError(f"{key} must be numeric")
    if value < 0 or (value == 0 and not allow_zero):
        raise ValueError(f"{key} must be {'non-negative' if allow_zero else 'positive'}")
    return value


def _flag(payload: Dict[str, Any], key: str, default: bool) -> bool:
    raw = payload.get(key)
    if raw is None:
        return default
    if isinstance(raw, str):
        return raw.strip().lower() in TRUE_VALUES
    return bool(raw)


@app.post("/scrape")
def scrape() -> Any:
    """
    Harvest a single query.
    Required JSON field: query
    Optional: maxResults, retries, parallelLimit (int), headless, includePhotos (bool),
    callback_url (queue the job and POST the result there instead of waiting)
    """
    payload: Dict[str, Any] = request.get_json(silent=True) or {}

    query = str(payload.get("query") or "").strip()
    if not query:
        return jsonify({"error": "Query required"}), 400

    try:
        max_results = _positive_int(payload, "maxResults")
        retries = _positive_int(payload, "retries", allow_zero=True)
        parallel_limit = _positive_int(payload, "parallelLimit")
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 400

    options = ScrapeOptions.from_settings(
        get_settings(),
        max_results=max_results if max_results is not None else 20,
        retries=retries if retries is not None else 3,
        enrichment_limit=parallel_limit,
        headless=_flag(payload, "headless", True),
        include_photos=_flag(payload, "includePhotos", False),
    )

    callback_url = str(payload.get("callback_url") or get_settings().results_callback_url or "").strip()
    if payload.get("callback_url"):
        job_args = dict(query=query, options=options, callback_url=callback_url)
        logger.info("Queueing harvest job: query=%s callback=%s", query, callback_url)
        _executor.submit(_run_job_safe, job_args)
        return jsonify({"data": {"status": "queued"}}), 202

    try:
        result = asyncio.run(scrape_query(query, options))
    except Exception as exc:  # noqa: BLE001
        logger.exception("Harvest failed for %s: %s", query, exc)
        return jsonify({"error": str(exc)}), 500

    response_payload = result.to_payload()
    if callback_url:
        post_results(callback_url, {"query": query, **response_payload})
    return jsonify(response_payload), 200


# ---------- Internals ----------


def _run_job_safe(job_args: Dict[str, Any]) -> None:
    query = job_args["query"]
    try:
        result = asyncio.run(scrape_query(query, job_args["options"]))
    except Exception as exc:  # noqa: BLE001
        logger.exception("Harvest job failed: %s", exc)
        return
    post_results(job_args["callback_url"], {"query": query, **result.to_payload()})


def main() -> None:
    """Cloud Run injects PORT; fall back to WORKER_PORT locally."""
    env_port = os.getenv("PORT")
    logger.info("[BOOT] ENV PORT=%s", env_port)

    port = int(env_port or get_settings().worker_port)
    logger.info("[BOOT] Binding on 0.0.0.0:%d", port)
    app.run(host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
