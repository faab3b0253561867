"""
Catalog sync worker.

Purpose
- Page through the upstream content listing.
- Validate and extract every item on a page.
- Persist each item, atomically per item:
  content type -> content -> genre/country/voice author joins -> ratings -> seasons
- Checkpoint the run ledger after every page.

Hard invariants
- Never keep a DB transaction open during HTTP.
- Pages are fetched and processed strictly sequentially, one item at a time.
- A bad item (validation or transaction error) never aborts the page or the run.
- A failed page fetch aborts the run: the ledger is marked failed and the
  error is re-raised for the caller to turn into a non-zero exit.

Operational behavior
- The page count is read from the first fetched page's meta.pages.
- A fixed delay separates page requests; there is no per-item delay.
- Supports resumable runs via run_id reuse: the worker continues from the
  ledger's last_page + 1.
- Supports chunked runs via max_pages (run is not marked completed).
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

from pydantic import ValidationError

from cinecatalog.client.client import CatalogClient
from cinecatalog.client.extract import extract_content, validate_content
from cinecatalog.persistence.engine import DatabaseManager
from cinecatalog.persistence.stores.catalog import CatalogStore
from cinecatalog.pipeline.ledger import SyncRunLedgerStore

logger = logging.getLogger(__name__)


def _utcnow_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass(frozen=True)
class SyncOptions:
    """
    Run options for the sync worker.

    max_pages:
        If set, stop after processing this many pages even if more remain.
        This is a "pause" feature (run is not marked completed).
    start_page:
        Explicit first page. Defaults to the ledger resume point (1 for new runs).
    page_delay_seconds:
        Pause between two page requests.
    invalid_log_path:
        If set, every rejected item is appended there as a JSON line.
    chunk_size:
        Passed to CatalogStore for batched upserts.
    """

    max_pages: int | None = None
    start_page: int | None = None
    page_delay_seconds: float = 2.0
    invalid_log_path: str | None = None
    chunk_size: int = 500


@dataclass
class SyncReport:
    run_id: str
    total_pages: int = 0
    pages_processed: int = 0
    items_synced: int = 0
    items_skipped: int = 0
    items_failed: int = 0
    completed: bool = False


class CatalogSyncWorker:
    """
    Page-crawl worker for the upstream content listing.

    It is not a scheduler and does not manage concurrency. It executes one run.
    """

    def __init__(
        self,
        *,
        db_manager: DatabaseManager,
        catalog_client: CatalogClient,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """
        Args:
            db_manager: Provides SQLAlchemy Session context manager.
            catalog_client: Thin HTTP client for the upstream API.
            sleep: Delay function used between pages.
        """
        self._db = db_manager
        self._client = catalog_client
        self._sleep = sleep

    def run_sync(
        self,
        *,
        options: SyncOptions | None = None,
        run_id: str | None = None,
    ) -> SyncReport:
        """
        Execute a sync run.

        Args:
            options: SyncOptions controlling paging, delays and logging.
            run_id: Optional run id to resume. If omitted, a new run is created.

        Returns:
            SyncReport with counters for this invocation.
        """
        opt = options or SyncOptions()
        run_id = run_id or str(uuid.uuid4())
        report = SyncReport(run_id=run_id)

        # Handshake: ensure ledger row exists and load resume page.
        with self._db.get_session() as session:
            with session.begin():
                ledger = SyncRunLedgerStore(session)
                ledger.ensure_started(run_id=run_id)
                resume_page = ledger.get_resume_page(run_id)
                previous_run_id = ledger.latest_completed_run_id()

        start_page = opt.start_page or resume_page

        logger.info(
            "CATALOG_SYNC_START run_id=%s start_page=%d max_pages=%s previous_completed_run=%s",
            run_id,
            start_page,
            opt.max_pages,
            previous_run_id,
        )

        try:
            first = self._client.fetch_page(start_page)
            total_pages = int(first["meta"]["pages"])
            report.total_pages = total_pages

            logger.info("CATALOG_SYNC_TOTAL_PAGES run_id=%s total_pages=%d", run_id, total_pages)

            if start_page > total_pages:
                with self._db.get_session() as session:
                    with session.begin():
                        SyncRunLedgerStore(session).mark_completed(run_id=run_id)
                report.completed = True
                logger.info("CATALOG_SYNC_NOTHING_TO_DO run_id=%s total_pages=%d", run_id, total_pages)
                return report

            for page in range(start_page, total_pages + 1):
                if opt.max_pages is not None and report.pages_processed >= opt.max_pages:
                    logger.info(
                        "CATALOG_SYNC_STOP_MAX_PAGES run_id=%s pages_done=%d",
                        run_id,
                        report.pages_processed,
                    )
                    break

                if page == start_page:
                    response = first
                else:
                    if opt.page_delay_seconds > 0:
                        self._sleep(opt.page_delay_seconds)
                    response = self._client.fetch_page(page)

                self._process_page(run_id, page, total_pages, response, opt, report)

            else:
                report.completed = True
                logger.info(
                    "CATALOG_SYNC_DONE run_id=%s pages=%d synced=%d skipped=%d failed=%d",
                    run_id,
                    report.pages_processed,
                    report.items_synced,
                    report.items_skipped,
                    report.items_failed,
                )

        except Exception as e:
            # Mark failed in a separate small transaction, then re-raise.
            err = f"{type(e).__name__}: {e}"
            with self._db.get_session() as session:
                with session.begin():
                    SyncRunLedgerStore(session).mark_failed(run_id=run_id, error=err)
            logger.exception("CATALOG_SYNC_FAILED run_id=%s error=%s", run_id, err)
            raise

        return report

    def _process_page(
        self,
        run_id: str,
        page: int,
        total_pages: int,
        response: dict[str, Any],
        opt: SyncOptions,
        report: SyncReport,
    ) -> None:
        items = response.get("data") or []
        synced = skipped = failed = 0

        page_t0 = time.perf_counter()

        for raw in items:
            outcome = self._process_item(run_id, raw, opt)
            if outcome == "synced":
                synced += 1
            elif outcome == "skipped":
                skipped += 1
            else:
                failed += 1

        with self._db.get_session() as session:
            with session.begin():
                SyncRunLedgerStore(session).checkpoint_after_page(
                    run_id=run_id,
                    page=page,
                    total_pages=total_pages,
                    synced=synced,
                    skipped=skipped,
                    failed=failed,
                )

        report.pages_processed += 1
        report.items_synced += synced
        report.items_skipped += skipped
        report.items_failed += failed

        logger.info(
            "CATALOG_SYNC_PAGE_OK run_id=%s page=%d/%d items=%d synced=%d skipped=%d failed=%d persist_ms=%.2f",
            run_id,
            page,
            total_pages,
            len(items),
            synced,
            skipped,
            failed,
            (time.perf_counter() - page_t0) * 1000.0,
        )

    def _process_item(self, run_id: str, raw: Any, opt: SyncOptions) -> str:
        """
        Validate, extract and persist one item in its own transaction.

        Returns "synced", "skipped" (rejected before any write) or "failed"
        (transaction rolled back).
        """
        reason = validate_content(raw)
        if reason is not None:
            self._record_invalid(raw, reason, opt)
            return "skipped"

        try:
            bundle = extract_content(raw)
        except ValidationError as e:
            self._record_invalid(raw, f"malformed: {e.error_count()} field error(s)", opt)
            return "skipped"
        except Exception as e:
            self._record_invalid(raw, f"malformed: {e}", opt)
            return "skipped"

        try:
            with self._db.get_session() as session:
                with session.begin():
                    CatalogStore(session, chunk_size=opt.chunk_size).upsert_bundle(
                        bundle, synced_at=_utcnow_naive(), run_id=run_id
                    )
        except Exception as e:
            logger.error(
                "CATALOG_SYNC_ITEM_FAILED run_id=%s id=%s error=%s: %s",
                run_id,
                bundle.content.id,
                type(e).__name__,
                e,
            )
            return "failed"

        return "synced"

    @staticmethod
    def _record_invalid(raw: Any, reason: str, opt: SyncOptions) -> None:
        content_id = raw.get("id") if isinstance(raw, dict) else None
        logger.warning("CATALOG_SYNC_ITEM_INVALID id=%s reason=%s", content_id, reason)

        if opt.invalid_log_path:
            with open(opt.invalid_log_path, "a", encoding="utf-8") as fh:
                fh.write(json.dumps({"id": content_id, "reason": reason}, ensure_ascii=False) + "\n")
