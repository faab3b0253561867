"""Command line entry point for a catalog sync run.

Exit codes: 0 when the run finished (or paused via --max-pages), 1 when it
aborted on a fatal error such as a failed page fetch.
"""

import argparse
import logging
import sys

from pydantic import ValidationError

from cinecatalog.client.client import CatalogClient
from cinecatalog.config.settings import AppSettings, CatalogApiSettings, DatabaseSettings
from cinecatalog.persistence.engine import DatabaseManager
from cinecatalog.pipeline.worker import CatalogSyncWorker, SyncOptions

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Synchronize the local catalog with the upstream catalog API"
    )
    parser.add_argument("--run-id", type=str, help="Resume an existing run")
    parser.add_argument("--max-pages", type=int, help="Stop after this many pages")
    parser.add_argument("--start-page", type=int, help="Override the first page to request")
    parser.add_argument(
        "--invalid-log",
        type=str,
        default="invalid-contents.log",
        help="JSON-lines file for items rejected by validation",
    )
    parser.add_argument(
        "--create-schema",
        action="store_true",
        help="Create missing tables before syncing",
    )
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    app_settings = AppSettings()
    logging.basicConfig(
        level=getattr(logging, app_settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        api_settings = CatalogApiSettings()
    except ValidationError as e:
        logger.error("Invalid catalog API configuration (is CATALOG_API_TOKEN set?): %s", e)
        return 1

    try:
        db = DatabaseManager(DatabaseSettings())
    except Exception:
        logger.exception("Invalid database configuration, aborting run")
        return 1

    try:
        if args.create_schema:
            db.create_schema()

        worker = CatalogSyncWorker(db_manager=db, catalog_client=CatalogClient(api_settings))
        report = worker.run_sync(
            options=SyncOptions(
                max_pages=args.max_pages,
                start_page=args.start_page,
                page_delay_seconds=api_settings.page_delay_seconds,
                invalid_log_path=args.invalid_log,
            ),
            run_id=args.run_id,
        )
    except Exception:
        logger.exception("Fatal sync error, aborting run")
        return 1
    finally:
        db.dispose()

    logger.info(
        "Sync %s run_id=%s pages=%d synced=%d skipped=%d failed=%d",
        "finished" if report.completed else "paused",
        report.run_id,
        report.pages_processed,
        report.items_synced,
        report.items_skipped,
        report.items_failed,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
