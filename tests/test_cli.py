import pytest
import responses
from sqlalchemy import create_engine, text

from cinecatalog.client.client import CatalogClient
from cinecatalog.pipeline import cli

from conftest import API_URL, make_item


@pytest.fixture
def env(tmp_path, monkeypatch):
    db_path = tmp_path / "cli.db"
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{db_path}")
    monkeypatch.setenv("CATALOG_API_TOKEN", "cli_token")
    monkeypatch.setenv("CATALOG_API_URL", API_URL)
    monkeypatch.setenv("CATALOG_PAGE_DELAY_SECONDS", "0")
    monkeypatch.setattr(CatalogClient.fetch_page.retry, "sleep", lambda seconds: None)
    return db_path


def test_missing_token_exits_with_error(env, monkeypatch):
    monkeypatch.delenv("CATALOG_API_TOKEN")

    assert cli.main(["--create-schema"]) == 1


@responses.activate
def test_sync_run_exits_zero(env):
    responses.add(
        responses.POST,
        API_URL,
        json={"data": [make_item(id=1), make_item(id=2, year=None)], "meta": {"pages": 1, "total": 2}},
    )

    assert cli.main(["--create-schema", "--run-id", "cli-run", "--invalid-log", "rejected.log"]) == 0

    engine = create_engine(f"sqlite:///{env}")
    with engine.connect() as conn:
        assert conn.execute(text("SELECT COUNT(*) FROM contents")).scalar_one() == 1
        assert conn.execute(text("SELECT status FROM sync_runs WHERE run_id = 'cli-run'")).scalar_one() == "completed"
    engine.dispose()
    assert (env.parent / "rejected.log").read_text().count("\n") == 1


@responses.activate
def test_fatal_fetch_error_exits_one(env):
    responses.add(responses.POST, API_URL, status=500)

    assert cli.main(["--create-schema", "--run-id", "cli-run"]) == 1
    assert len(responses.calls) == 3


def test_unparseable_database_url_exits_with_error(env, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "not a database url")

    assert cli.main([]) == 1


def test_schema_failure_exits_one_and_logs_the_traceback(env, monkeypatch, tmp_path, caplog):
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'missing' / 'cli.db'}")

    assert cli.main(["--create-schema"]) == 1
    fatal = [r for r in caplog.records if r.getMessage() == "Fatal sync error, aborting run"]
    assert fatal and fatal[0].exc_info is not None
