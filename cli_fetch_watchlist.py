#!/usr/bin/env python3
"""
IMDb Watchlist Fetch CLI

Fetches one public IMDb watchlist and writes it as JSON.

Usage:
    python cli_fetch_watchlist.py --user-id ur12345678
    python cli_fetch_watchlist.py --user-id ur12345678 --output watchlist.json --no-enrich
"""

import argparse
import json
import sys
from datetime import datetime

from dotenv import load_dotenv

from runner.logging_setup import get_logger
from scrape_imdb.errors import ExhaustedRetries
from scrape_imdb.imdb_config import WatchlistConfig
from scrape_imdb.imdb_diagnostics import FileDiagnosticsSink
from scrape_imdb.proxy_pool import ProxyPool
from scrape_imdb.session_store import SessionStore
from scrape_imdb.tmdb_enrichment import build_enricher
from scrape_imdb.watchlist_scraper import WatchlistScraper

# Load environment variables
load_dotenv()

# Initialize logger
logger = get_logger("cli_imdb")


def build_scraper(config: WatchlistConfig, enrich: bool = True) -> WatchlistScraper:
    """Wire a WatchlistScraper from configuration."""
    proxy_pool = None
    if config.paths.proxy_file:
        proxy_pool = ProxyPool.from_file(config.paths.proxy_file)
    else:
        pool = ProxyPool.from_env()
        proxy_pool = pool if len(pool) else None

    diagnostics = None
    if config.paths.diagnostics_dir:
        diagnostics = FileDiagnosticsSink(config.paths.diagnostics_dir)

    return WatchlistScraper(
        config=config,
        session_store=SessionStore(config.paths.session_dir),
        proxy_pool=proxy_pool,
        enricher=build_enricher(config.enrichment) if enrich else None,
        diagnostics=diagnostics,
    )


def write_output(items, output_path=None) -> None:
    payload = json.dumps([item.to_dict() for item in items], indent=2, ensure_ascii=False)
    if output_path:
        with open(output_path, "w", encoding="utf-8") as f:
            f.write(payload + "\n")
        logger.info(f"Wrote {len(items)} items to {output_path}")
    else:
        sys.stdout.write(payload + "\n")


def main(argv=None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Fetch a public IMDb watchlist as JSON",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Fetch to stdout
  python cli_fetch_watchlist.py --user-id ur12345678

  # Save to a file, skip TMDB enrichment
  python cli_fetch_watchlist.py --user-id ur12345678 --output watchlist.json --no-enrich

  # Bigger retry budget for a flaky network
  python cli_fetch_watchlist.py --user-id ur12345678 --max-attempts 5

Environment:
  TMDB_API_KEY       enables enrichment (posters, ratings, runtime)
  IMDB_PROXY_FILE    one proxy per line (host:port[:user:pass] or URL)
  IMDB_HEADLESS      false to watch the browser
        """
    )

    parser.add_argument(
        "--user-id",
        type=str,
        required=True,
        help="IMDb user id (e.g., 'ur12345678')",
    )
    parser.add_argument(
        "--force-refresh",
        action="store_true",
        help="Bypass any cached result",
    )
    parser.add_argument(
        "--no-enrich",
        action="store_true",
        help="Skip TMDB enrichment",
    )
    parser.add_argument(
        "--max-attempts",
        type=int,
        default=None,
        help="Maximum extraction attempts (default: IMDB_MAX_ATTEMPTS or 3)",
    )
    parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="Write JSON to this file (default: stdout)",
    )

    args = parser.parse_args(argv)

    try:
        config = WatchlistConfig.from_env()
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        return 2
    if args.max_attempts is not None:
        config.retry.max_attempts = args.max_attempts

    if not config.validate():
        logger.error(f"Invalid configuration: {config.summary()}")
        return 2

    logger.info(f"Started: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    logger.info(f"Configuration: {config.summary()}")

    try:
        scraper = build_scraper(config, enrich=not args.no_enrich)
        items = scraper.scrape(args.user_id, force_refresh=args.force_refresh)
    except ValueError as e:
        logger.error(str(e))
        return 2
    except FileNotFoundError as e:
        logger.error(f"Proxy file not found: {e}")
        return 2
    except ExhaustedRetries as e:
        logger.error(f"Watchlist extraction failed after retries: {e}")
        return 1

    write_output(items, args.output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
