"""
Trend Outlier Engine — Command-line entry point.

Runs one collection pass per invocation. Scheduling (cron, systemd timer)
and retries on SourceUnavailable are the caller's job.

  1. Fetch trending (or keyword search) videos for a cohort
  2. Compute the cohort baseline
  3. Flag outliers
  4. Write one snapshot and refresh the outlier ledger

Usage:
  python main.py collect                          # default region from settings.yaml
  python main.py collect --region US --category GAMING --max-results 25
  python main.py search "budget travel" --region IN
  python main.py categories --region US
  python main.py outliers --region IN --type view_spike
  python main.py serve --port 8080
"""

import argparse
import json
import logging
import sqlite3
import sys

import config
from database_migrations import connect, run_migrations
from engine_settings import SettingsValidationError, load_settings
from errors import EngineError


def setup_logging():
    """Configure console logging with timestamps."""
    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def parse_args(argv=None):
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(
        description="Trend Outlier Engine — YouTube trend snapshots and outlier ledger"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    collect = sub.add_parser("collect", help="Collect one trending snapshot")
    collect.add_argument("--region", "-r", default=None,
                         help="ISO 3166-1 alpha-2 region code (default from settings)")
    collect.add_argument("--category", "-c", default=None,
                         help="Category id or name, e.g. 20 or GAMING")
    collect.add_argument("--max-results", "-n", type=int, default=None,
                         help="Videos to fetch (clamped to the configured ceiling)")
    collect.add_argument("--type", dest="snapshot_type", default=None,
                         help="Snapshot type label (default from settings)")

    search = sub.add_parser("search", help="Collect a keyword search snapshot")
    search.add_argument("keyword")
    search.add_argument("--region", "-r", default=None)
    search.add_argument("--max-results", "-n", type=int, default=None)

    categories = sub.add_parser("categories", help="List upstream video categories")
    categories.add_argument("--region", "-r", default=None)

    outliers = sub.add_parser("outliers", help="Show ledger entries")
    outliers.add_argument("--region", "-r", default=None)
    outliers.add_argument("--type", dest="outlier_type", default=None)
    outliers.add_argument("--limit", type=int, default=20)
    outliers.add_argument("--include-false-positives", action="store_true")

    serve = sub.add_parser("serve", help="Run the JSON API server")
    serve.add_argument("--host", default=config.API_HOST)
    serve.add_argument("--port", type=int, default=config.API_PORT)
    serve.add_argument("--debug", action="store_true")

    sub.add_parser("migrate", help="Create database tables and exit")

    return parser.parse_args(argv)


def _check_credentials(logger):
    """
    Run a diagnostic check on API credentials at startup.
    Logs clear warnings if credentials are missing so failures aren't silent.
    """
    try:
        conn = connect()
        try:
            rows = conn.execute("SELECT service FROM api_credentials").fetchall()
        finally:
            conn.close()
    except sqlite3.Error as e:
        logger.debug(f"Credential lookup failed: {e}")
        rows = []

    if rows:
        logger.info(f"Credentials in database: {', '.join(r[0] for r in rows)}")

    if not config.get_api_key('youtube'):
        logger.error(
            "CREDENTIAL DIAGNOSTIC: YOUTUBE_API_KEY is not set in "
            "database or environment. Collection WILL fail."
        )


def _build_trend_collector(settings):
    from collectors.youtube import create_youtube_collector
    from outlier_ledger import OutlierLedger
    from snapshot_store import SnapshotStore
    from trend_collector import TrendCollector

    return TrendCollector(
        create_youtube_collector(),
        SnapshotStore(flagged_limit=settings.flagged_per_snapshot),
        OutlierLedger(),
        settings,
    )


def _print_result(result):
    snapshot = result.snapshot
    print(f"\nSnapshot {snapshot.id} ({snapshot.captured_at})")
    print(f"  Cohort:      {snapshot.region_code}/{snapshot.category_id or 'all'}"
          f"/{snapshot.snapshot_type}")
    print(f"  Videos:      {snapshot.total_videos}")
    print(f"  Avg views:   {snapshot.avg_views:,.0f}  (median {snapshot.median_views:,.0f})")
    print(f"  Engagement:  {snapshot.avg_engagement_rate:.2%}")
    print(f"  Outliers:    {snapshot.outlier_count}")
    for f in result.flagged[:10]:
        print(f"    #{f.rank_position:<3} {f.verdict.primary_type:<17} "
              f"{f.sample.views:>12,} views  {f.sample.title[:60]}")


def run_command(args) -> int:
    logger = logging.getLogger("main")
    settings = load_settings()

    if args.command == "migrate":
        run_migrations()
        return 0

    run_migrations()

    if args.command == "serve":
        from api_server import app

        app.config["ENGINE_SETTINGS"] = settings
        logger.info(f"API server starting on http://{args.host}:{args.port}")
        app.run(host=args.host, port=args.port, debug=args.debug)
        return 0

    if args.command == "outliers":
        from collectors.youtube import validate_region_code
        from outlier_ledger import OutlierLedger

        region = validate_region_code(args.region or settings.default_region)
        records, total = OutlierLedger().list_outliers(
            region, outlier_type=args.outlier_type,
            exclude_false_positive=not args.include_false_positives,
            limit=args.limit,
        )
        print(json.dumps({"outliers": [r.to_dict() for r in records], "total": total},
                         indent=2, default=str))
        return 0

    _check_credentials(logger)
    collector = _build_trend_collector(settings)

    if args.command == "categories":
        print(json.dumps(collector.list_categories(args.region), indent=2))
        return 0

    if args.command == "search":
        result = collector.collect_search(
            args.keyword, region_code=args.region, max_results=args.max_results,
        )
    else:
        result = collector.collect_trending(
            region_code=args.region,
            category_id=args.category,
            max_results=args.max_results,
            snapshot_type=args.snapshot_type,
        )
    _print_result(result)
    return 0


def main(argv=None):
    setup_logging()
    args = parse_args(argv)
    logger = logging.getLogger("main")
    try:
        code = run_command(args)
    except SettingsValidationError as e:
        logger.error(f"Invalid settings: {e}")
        code = 2
    except EngineError as e:
        logger.error(f"{args.command} failed: {e}")
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
