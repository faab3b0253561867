import json

import pytest
import requests
import responses
from responses import matchers
from sqlalchemy import func, select

from cinecatalog.client.client import CatalogClient
from cinecatalog.persistence.tables import Content, ContentGenre, ContentSeason, Rating, SyncRun
from cinecatalog.pipeline.ledger import STATUS_COMPLETED, STATUS_FAILED, STATUS_RUNNING
from cinecatalog.pipeline.worker import CatalogSyncWorker, SyncOptions

from conftest import API_URL, COMEDY, SERIES, make_item


# --- FIXTURES ---
@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def worker(db, api_settings, sleeps, monkeypatch):
    monkeypatch.setattr(CatalogClient.fetch_page.retry, "sleep", lambda seconds: None)
    return CatalogSyncWorker(
        db_manager=db,
        catalog_client=CatalogClient(api_settings),
        sleep=sleeps.append,
    )


def add_page(page, items, pages, status=200):
    body = {"pagination": {"type": "page", "order": "DESC", "sortBy": "year", "pageSize": 2, "page": page}}
    responses.add(
        responses.POST,
        API_URL,
        json={"data": items, "meta": {"pages": pages, "total": 0}},
        status=status,
        match=[matchers.json_params_matcher(body)],
    )


def count(db, model):
    with db.get_session() as session:
        return session.execute(select(func.count()).select_from(model)).scalar_one()


def ledger_row(db, run_id):
    with db.get_session() as session:
        return session.get(SyncRun, run_id)


PAGE_1 = [
    make_item(id=2, year=None),
    make_item(id=1, genres=[COMEDY]),
]
PAGE_2 = [
    make_item(id=3, contentType=SERIES, episodesBySeason={"1": 10, "2": 8}),
]


# --- 1. POSITIVE TESTING ---
@responses.activate
def test_full_run_syncs_every_page(db, worker, sleeps, tmp_path):
    add_page(1, PAGE_1, pages=2)
    add_page(2, PAGE_2, pages=2)
    invalid_log = tmp_path / "invalid.log"

    report = worker.run_sync(
        options=SyncOptions(invalid_log_path=str(invalid_log)), run_id="run-1"
    )

    assert report.completed
    assert (report.pages_processed, report.items_synced, report.items_skipped) == (2, 2, 1)
    assert count(db, Content) == 2
    assert count(db, ContentSeason) == 2

    row = ledger_row(db, "run-1")
    assert row.status == STATUS_COMPLETED
    assert row.total_pages == 2
    assert row.last_page == 2

    assert [json.loads(line) for line in invalid_log.read_text().splitlines()] == [
        {"id": 2, "reason": "missing year"}
    ]


@responses.activate
def test_delay_separates_pages_not_items(worker, sleeps):
    add_page(1, PAGE_1, pages=3)
    add_page(2, PAGE_2, pages=3)
    add_page(3, [make_item(id=4), make_item(id=5)], pages=3)

    worker.run_sync(options=SyncOptions(page_delay_seconds=2.0))

    assert sleeps == [2.0, 2.0]


# --- 2. IDEMPOTENCE ---
@responses.activate
def test_rerun_on_unchanged_data_keeps_row_counts(db, worker):
    add_page(1, PAGE_1, pages=2)
    add_page(2, PAGE_2, pages=2)

    worker.run_sync(run_id="first")
    before = [count(db, m) for m in (Content, ContentGenre, Rating, ContentSeason)]
    worker.run_sync(run_id="second")

    assert [count(db, m) for m in (Content, ContentGenre, Rating, ContentSeason)] == before


# --- 3. NEGATIVE TESTING (The Fragility) ---
@responses.activate
def test_item_failure_does_not_stop_the_page(db, worker):
    # Logic: Same slug under a new type id violates content_types.slug and
    # rolls back only that item.
    clashing_type = {"id": 99, "name": "Film", "slug": "movie"}
    add_page(
        1,
        [make_item(id=1), make_item(id=2, contentType=clashing_type), make_item(id=3)],
        pages=1,
    )

    report = worker.run_sync(run_id="run-1")

    assert report.completed
    assert (report.items_synced, report.items_failed) == (2, 1)
    with db.get_session() as session:
        assert session.get(Content, 2) is None
        assert session.get(Content, 3) is not None
    assert ledger_row(db, "run-1").items_failed == 1


@responses.activate
def test_malformed_item_is_skipped_and_the_next_one_synced(db, worker, tmp_path):
    # Logic: genres arrives as a bare int, which extraction cannot map.
    add_page(1, [make_item(id=1, genres=5), make_item(id=2)], pages=1)
    invalid_log = tmp_path / "invalid.log"

    report = worker.run_sync(
        options=SyncOptions(invalid_log_path=str(invalid_log)), run_id="run-1"
    )

    assert report.completed
    assert (report.items_synced, report.items_skipped, report.items_failed) == (1, 1, 0)
    with db.get_session() as session:
        assert session.get(Content, 1) is None
        assert session.get(Content, 2) is not None
    assert ledger_row(db, "run-1").status == STATUS_COMPLETED
    assert json.loads(invalid_log.read_text())["id"] == 1


@responses.activate
def test_page_fetch_failure_is_fatal(db, worker):
    add_page(1, PAGE_1, pages=2)
    add_page(2, [], pages=2, status=401)

    with pytest.raises(requests.exceptions.HTTPError):
        worker.run_sync(run_id="run-1")

    row = ledger_row(db, "run-1")
    assert row.status == STATUS_FAILED
    assert row.last_page == 1
    assert "HTTPError" in row.last_error
    # Page 1 was committed before the failure
    assert count(db, Content) == 1


# --- 4. THE BRANCHES (pause / resume) ---
@responses.activate
def test_max_pages_pauses_and_run_id_resumes(db, worker):
    add_page(1, PAGE_1, pages=2)
    add_page(2, PAGE_2, pages=2)

    paused = worker.run_sync(options=SyncOptions(max_pages=1), run_id="run-1")

    assert not paused.completed
    assert ledger_row(db, "run-1").status == STATUS_RUNNING
    assert count(db, Content) == 1

    resumed = worker.run_sync(run_id="run-1")

    assert resumed.completed
    assert resumed.pages_processed == 1
    assert ledger_row(db, "run-1").status == STATUS_COMPLETED
    assert count(db, Content) == 2
    requested = [json.loads(c.request.body)["pagination"]["page"] for c in responses.calls]
    assert requested == [1, 2]


@responses.activate
def test_start_page_past_the_end_completes_immediately(db, worker):
    add_page(5, [], pages=2)

    report = worker.run_sync(options=SyncOptions(start_page=5), run_id="run-1")

    assert report.completed
    assert report.pages_processed == 0
    assert ledger_row(db, "run-1").status == STATUS_COMPLETED
