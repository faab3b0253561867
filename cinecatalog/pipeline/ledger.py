"""
Run ledger for catalog syncs: one `sync_runs` row per run, updated in place.

A run moves started -> running -> completed, or to failed when a page fetch
aborts it. `last_page` is the resume point; it only moves once every item of
that page was attempted, so a crashed run re-requests the unfinished page.

Callers own the transaction. There is no locking: two workers sharing a
run_id would race on the counters.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from cinecatalog.persistence.tables import SyncRun

logger = logging.getLogger(__name__)

STATUS_STARTED = "started"
STATUS_RUNNING = "running"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"


def _now() -> datetime:
    # sync_runs uses naive DateTime columns holding UTC
    return datetime.now(timezone.utc).replace(tzinfo=None)


class SyncRunLedgerStore:
    """
    Intended use:
        with db.get_session() as session:
            with session.begin():
                SyncRunLedgerStore(session).checkpoint_after_page(
                    run_id=run_id, page=3, total_pages=40, synced=98, skipped=2, failed=0
                )
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, run_id: str) -> SyncRun | None:
        return self._session.get(SyncRun, run_id)

    def ensure_started(self, *, run_id: str, started_at: datetime | None = None) -> SyncRun:
        """
        Return the ledger row for `run_id`, inserting a fresh one if needed.

        Resuming an existing run leaves its counters and status alone.
        """
        existing = self.get(run_id)
        if existing is not None:
            logger.info(
                "catalog_ledger_resume run_id=%s status=%s last_page=%d",
                run_id,
                existing.status,
                existing.last_page,
            )
            return existing

        run = SyncRun(
            run_id=run_id,
            status=STATUS_STARTED,
            started_at=started_at or _now(),
            last_page=0,
            pages_processed=0,
            items_synced=0,
            items_skipped=0,
            items_failed=0,
        )
        self._session.add(run)
        self._session.flush()

        logger.info("catalog_ledger_run_started run_id=%s", run_id)
        return run

    def get_resume_page(self, run_id: str) -> int:
        run = self.get(run_id)
        return 1 if run is None else run.last_page + 1

    def checkpoint_after_page(
        self,
        *,
        run_id: str,
        page: int,
        total_pages: int,
        synced: int,
        skipped: int,
        failed: int,
    ) -> None:
        """
        Record a finished page and add its item outcomes to the run totals.

        Args:
            page: The page just processed; becomes the new resume point.
            total_pages: Upstream page count. Reaching it completes the run.
            synced, skipped, failed: Item outcomes on this page.
        """
        finished = page >= total_pages
        status = STATUS_COMPLETED if finished else STATUS_RUNNING

        self._update(
            run_id,
            status=status,
            ended_at=_now() if finished else None,
            last_error=None,
            total_pages=total_pages,
            last_page=page,
            pages_processed=SyncRun.pages_processed + 1,
            items_synced=SyncRun.items_synced + synced,
            items_skipped=SyncRun.items_skipped + skipped,
            items_failed=SyncRun.items_failed + failed,
        )

        logger.info(
            "catalog_ledger_checkpoint run_id=%s page=%d/%d synced+=%d skipped+=%d failed+=%d status=%s",
            run_id,
            page,
            total_pages,
            synced,
            skipped,
            failed,
            status,
        )

    def mark_failed(self, *, run_id: str, error: str, ended_at: datetime | None = None) -> None:
        """
        Close the run with an error summary. The checkpoint is kept so the
        same run_id can be resumed later.
        """
        self._update(run_id, status=STATUS_FAILED, ended_at=ended_at or _now(), last_error=error)
        logger.warning("catalog_ledger_failed run_id=%s error=%s", run_id, error)

    def mark_completed(self, *, run_id: str, ended_at: datetime | None = None) -> None:
        self._update(run_id, status=STATUS_COMPLETED, ended_at=ended_at or _now(), last_error=None)
        logger.info("catalog_ledger_completed run_id=%s", run_id)

    def latest_completed_run_id(self) -> str | None:
        """
        The most recently finished full run.

        Contents whose last_seen_run_id differs from it were missing from that
        snapshot.
        """
        return self._session.execute(
            select(SyncRun.run_id)
            .where(SyncRun.status == STATUS_COMPLETED)
            .order_by(SyncRun.ended_at.desc(), SyncRun.started_at.desc())
            .limit(1)
        ).scalar_one_or_none()

    def _update(self, run_id: str, **values) -> None:
        self._session.execute(update(SyncRun).where(SyncRun.run_id == run_id).values(**values))
