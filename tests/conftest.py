from datetime import datetime

import pytest

from cinecatalog.client.extract import extract_content
from cinecatalog.config.settings import CatalogApiSettings, DatabaseSettings
from cinecatalog.persistence.engine import DatabaseManager
from cinecatalog.persistence.stores.catalog import CatalogStore

API_URL = "https://catalog.test/v1/contents"

MOVIE = {"id": 1, "name": "Movie", "slug": "movie"}
SERIES = {"id": 2, "name": "Series", "slug": "series"}

DRAMA = {"id": 1, "name": "Drama", "slug": "drama"}
COMEDY = {"id": 2, "name": "Comedy", "slug": "comedy"}
HORROR = {"id": 3, "name": "Horror", "slug": "horror"}

USA = {"id": 10, "name": "USA", "slug": "usa"}
UK = {"id": 11, "name": "UK", "slug": "uk"}
FRANCE = {"id": 12, "name": "France", "slug": "france"}


def make_item(**overrides):
    """A minimal valid upstream content item; keyword args override fields."""
    item = {
        "id": 1,
        "title": "Movie A",
        "originalTitle": None,
        "description": "A film.",
        "posterUrl": "https://img.test/1.jpg",
        "year": 2005,
        "duration": 120,
        "contentType": MOVIE,
        "genres": [DRAMA],
        "countries": [USA],
        "voiceAuthorsV2": [{"id": 100, "name": "Studio One"}],
        "ratings": {"imdb": {"rating": 7.5, "votes": 1000}},
        "isLgbt": False,
        "createdAt": "01.02.2023 10:00:00",
        "updatedAt": "01.02.2023 10:00:00",
    }
    item.update(overrides)
    return item


CATALOG = [
    make_item(
        id=1,
        title="Movie A",
        description="x" * 300,
        year=2005,
        duration=120,
        genres=[DRAMA, COMEDY],
        countries=[USA],
        ratings={"imdb": {"rating": 7.5, "votes": 1000}, "kinopoisk": {"rating": 8.0, "votes": 5000}},
    ),
    make_item(
        id=2,
        title="Movie B",
        year=2008,
        duration=90,
        posterUrl="",
        genres=[DRAMA],
        countries=[USA, UK],
        ratings={"imdb": {"rating": 6.0, "votes": 300}},
    ),
    make_item(
        id=3,
        title="Series C",
        year=2020,
        duration=45,
        contentType=SERIES,
        genres=[COMEDY],
        countries=[UK],
        isLgbt=True,
        seasonsCount=2,
        episodesBySeason={"1": 10, "2": 8},
        ratings={"kinopoisk": {"rating": 7.0, "votes": 700}},
    ),
    make_item(
        id=4,
        title="Movie D",
        year=1995,
        duration=100,
        genres=[HORROR],
        countries=[FRANCE],
        ratings={},
    ),
    make_item(
        id=5,
        title="100% Love_Story",
        year=2010,
        duration=110,
        genres=[DRAMA, COMEDY, HORROR],
        countries=[USA],
        ratings={"imdb": {"rating": 5.5, "votes": 50}},
    ),
]


def seed(db, items):
    for raw in items:
        with db.get_session() as session:
            with session.begin():
                CatalogStore(session).upsert_bundle(
                    extract_content(raw), synced_at=datetime(2024, 1, 1), run_id="seed"
                )


@pytest.fixture
def db(tmp_path):
    manager = DatabaseManager(DatabaseSettings(database_url=f"sqlite:///{tmp_path / 'catalog.db'}"))
    manager.create_schema()
    yield manager
    manager.dispose()


@pytest.fixture
def seeded_db(db):
    seed(db, CATALOG)
    return db


@pytest.fixture
def api_settings():
    return CatalogApiSettings(
        api_token="test_token",
        api_url=API_URL,
        page_size=2,
        timeout_seconds=5,
        page_delay_seconds=2.0,
    )
