import sys
import json
import logging
from pathlib import Path

# Add project root to sys.path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from config import get_settings
from core.database import get_db, init_db
from etl.errors import IngestionError
from etl.import_service import ImportOptions, import_csv_feed, ingest_products
from etl.maintenance import cleanup_demo_products, reinfer_categories
from etl.parsers import FEED_DIALECTS, get_dialect, parse_csv
from etl.providers import fetch_feed_csv, run_providers

logger = logging.getLogger(__name__)


def read_source(source, timeout=20):
    """CSV/JSON text from a local path or an http(s) URL."""
    if source.startswith(('http://', 'https://')):
        return fetch_feed_csv(source, timeout=timeout)
    return Path(source).read_text(encoding='utf-8-sig')


def run_feed(args, settings):
    content = read_source(args.source)
    if args.dry_run:
        parsed = parse_csv(content, args.provider).raise_for_header()
        print(f"Dry run: {len(parsed.rows)} importable rows of {parsed.total_data_rows}")
        print(json.dumps(parsed.stats.to_dict(), indent=2, default=str))
        return 0

    dialect = get_dialect(args.provider)
    options = ImportOptions(
        source=dialect.source,
        default_country_code=args.country,
        validate_urls=args.validate_urls,
        affiliate_provider=dialect.affiliate_provider,
        batch_size=args.batch_size,
    )
    with get_db() as session:
        summary = import_csv_feed(content, args.provider, session, options=options, settings=settings)
    print(summary.model_dump_json(indent=2))
    return 0 if summary.failed_rows == 0 else 2


def run_json(args, settings):
    payload = read_source(args.source)
    with get_db() as session:
        result = ingest_products(payload, session, settings=settings)
    print(result.model_dump_json(indent=2))
    return 0


def main(argv=None):
    import argparse
    parser = argparse.ArgumentParser(description="Load product feeds into the price-comparison catalog.")
    parser.add_argument("source", nargs="?", help="CSV/JSON file path or URL to import.")
    parser.add_argument("--provider", choices=sorted(FEED_DIALECTS), default="profitshare",
                        help="CSV dialect of the feed.")
    parser.add_argument("--json", action="store_true", help="Treat the source as a JSON product payload.")
    parser.add_argument("--country", default=None, help="Fallback country code for listings.")
    parser.add_argument("--batch-size", type=int, default=None, help="Rows per batch.")
    parser.add_argument("--validate-urls", action="store_true", help="Reject listings with malformed URLs.")
    parser.add_argument("--dry-run", action="store_true", help="Parse only, don't write to DB.")
    parser.add_argument("--fetch-providers", action="store_true", help="Fetch from enabled API providers.")
    parser.add_argument("--query", default="", help="Search query for API providers.")
    parser.add_argument("--reinfer", action="store_true", help="Re-infer categories of all products.")
    parser.add_argument("--cleanup-demo", action="store_true", help="Delete demo/synthetic products.")
    parser.add_argument("--init-db", action="store_true", help="Create tables before loading.")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    settings = get_settings()

    if args.init_db:
        init_db()

    exit_code = 0
    try:
        if args.source:
            if not args.json and not settings.enable_affiliate_import:
                logger.error("Affiliate import is disabled (ENABLE_AFFILIATE_IMPORT)")
                return 3
            exit_code = run_json(args, settings) if args.json else run_feed(args, settings)

        if args.fetch_providers:
            with get_db() as session:
                outcomes = run_providers(session, settings, query=args.query)
            for outcome in outcomes:
                print(f"{outcome.provider_id}: {outcome.status} ({outcome.ingested} ingested) {outcome.message or ''}")

        if args.reinfer or args.cleanup_demo:
            with get_db() as session:
                if args.cleanup_demo:
                    print(cleanup_demo_products(session, dry_run=args.dry_run))
                if args.reinfer:
                    print(reinfer_categories(session, dry_run=args.dry_run))
    except IngestionError as exc:
        logger.error(f"Import aborted: {exc}")
        return 1
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
