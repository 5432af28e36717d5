"""CLI job that harvests one or more Maps queries and prints or saves the merged records."""

import argparse
import asyncio
import json
import logging
from pathlib import Path
from typing import List, Optional

from harvester.core.config import ScrapeOptions, get_settings
from harvester.core.models import BatchResult
from harvester.jobs.pipeline import scrape_many

logger = logging.getLogger(__name__)


def load_keywords(path: str) -> List[str]:
    """Read one query per line, ignoring blank lines."""
    keyword_file = Path(path)
    if not keyword_file.is_file():
        raise FileNotFoundError(f"{path} not found; create it with one keyword per line")
    queries = [line.strip() for line in keyword_file.read_text(encoding="utf-8").splitlines()]
    queries = [query for query in queries if query]
    if not queries:
        raise ValueError(f"{path} contains no keywords")
    return queries


def collect_queries(args: argparse.Namespace) -> List[str]:
    queries = [query.strip() for query in args.queries if query.strip()]
    if args.keywords_file:
        queries.extend(load_keywords(args.keywords_file))
    if not queries:
        raise ValueError("Provide at least one query or a keywords file")
    return queries


def run_query_job(queries: List[str], options: ScrapeOptions, output: Optional[str] = None) -> BatchResult:
    logger.info("Starting batch scrape of %d queries", len(queries))
    batch = asyncio.run(scrape_many(queries, options))

    for query, result in batch.results.items():
        logger.info(
            "%s: %d records, %d duplicates skipped", query, result.total_records, result.duplicates_skipped
        )

    if output:
        output_path = Path(output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with output_path.open("w", encoding="utf-8") as fh:
            json.dump(batch.master.to_payload(), fh, ensure_ascii=False, indent=2)
        logger.info("Saved %d unique records to %s", batch.master.total_records, output_path)

    logger.info("Batch scraping complete! Total unique records: %d", batch.master.total_records)
    return batch


def build_parser() -> argparse.ArgumentParser:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Harvest business listings from Google Maps searches")
    parser.add_argument("queries", nargs="*", default=[], help="Keywords or Google Maps search URLs")
    parser.add_argument("--keywords-file", dest="keywords_file", help="File with one keyword per line")
    parser.add_argument(
        "--max-results",
        dest="max_results",
        type=int,
        default=settings.max_results,
        help="Maximum results per query",
    )
    parser.add_argument(
        "--parallel",
        dest="parallel_limit",
        type=int,
        default=settings.parallel_limit,
        help="Queries harvested at the same time",
    )
    parser.add_argument(
        "--enrichment-limit",
        dest="enrichment_limit",
        type=int,
        default=settings.enrichment_limit,
        help="Concurrent detail-page visits per query (capped at 3)",
    )
    parser.add_argument("--retries", dest="retries", type=int, default=settings.retries)
    parser.add_argument(
        "--headed",
        dest="headless",
        action="store_false",
        default=settings.headless,
        help="Show the browser window",
    )
    parser.add_argument(
        "--include-photos",
        dest="include_photos",
        action="store_true",
        default=settings.include_photos,
        help="Collect up to three photo URLs per record",
    )
    parser.add_argument("--output", dest="output", help="Write the merged records as JSON to this path")
    return parser


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    parser = build_parser()
    args = parser.parse_args()

    try:
        queries = collect_queries(args)
    except (OSError, ValueError) as exc:
        parser.error(str(exc))

    options = ScrapeOptions.from_settings(
        get_settings(),
        max_results=args.max_results,
        parallel_limit=args.parallel_limit,
        enrichment_limit=args.enrichment_limit,
        retries=args.retries,
        headless=args.headless,
        include_photos=args.include_photos,
    )
    run_query_job(queries, options, output=args.output)


if __name__ == "__main__":
    main()
