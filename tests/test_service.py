import threading
from datetime import datetime

import pytest

from cinecatalog.services.content import ContentService

from conftest import make_item, seed


@pytest.fixture
def service(seeded_db):
    return ContentService(seeded_db)


def ids(result):
    return [row["id"] for row in result["data"]]


# --- 1. FILTERED BROWSE ---
def test_defaults_sort_by_year_desc(service):
    result = service.get_filtered_content({})

    assert ids(result) == [3, 5, 2, 1, 4]
    assert result["meta"] == {
        "page": 1,
        "per_page": 20,
        "total": 5,
        "total_pages": 1,
        "has_next_page": False,
        "has_prev_page": False,
    }


def test_genres_match_all_requested(service):
    result = service.get_filtered_content({"genres": [1, 2]})

    assert sorted(ids(result)) == [1, 5]


def test_countries_match_any_requested_without_duplicates(service):
    # Logic: Movie B has both countries and must still appear once.
    result = service.get_filtered_content({"countries": [10, 11]})

    assert sorted(ids(result)) == [1, 2, 3, 5]
    assert result["meta"]["total"] == 4


def test_year_range_and_pagination_meta(service):
    result = service.get_filtered_content(
        {"years": {"min": 2000, "max": 2010}, "pagination": {"page": 2, "per_page": 2}}
    )

    assert ids(result) == [1]
    assert result["meta"]["total"] == 3
    assert result["meta"]["total_pages"] == 2
    assert result["meta"]["has_prev_page"]
    assert not result["meta"]["has_next_page"]


def test_rating_source_without_bounds_does_not_filter(service):
    result = service.get_filtered_content({"rating": {"source": "imdb"}})

    assert result["meta"]["total"] == 5


def test_rating_bounds_filter_on_the_source(service):
    result = service.get_filtered_content({"rating": {"source": "imdb", "min": 7}})

    assert ids(result) == [1]


def test_lgbt_false_excludes_flagged_items(service):
    result = service.get_filtered_content({"is_lgbt": False})

    assert 3 not in ids(result)
    assert result["meta"]["total"] == 4


def test_search_treats_wildcards_literally(service):
    result = service.get_filtered_content({"search": {"query": "_", "fields": ["title"]}})

    assert ids(result) == [5]


def test_combined_facets(service):
    result = service.get_filtered_content(
        {
            "genres": [1],
            "countries": [10],
            "content_types": [1],
            "duration": {"min": 100},
            "sort": {"field": "title", "order": "ASC"},
        }
    )

    assert ids(result) == [5, 1]


def test_data_and_count_queries_run_concurrently(service, monkeypatch):
    # Logic: each query waits for the other at the barrier; run one after
    # the other they would time out.
    barrier = threading.Barrier(2, timeout=5)
    fetch_rows, fetch_scalar = service._fetch_rows, service._fetch_scalar

    def rows_at_barrier(stmt, params):
        barrier.wait()
        return fetch_rows(stmt, params)

    def count_at_barrier(stmt, params):
        barrier.wait()
        return fetch_scalar(stmt, params)

    monkeypatch.setattr(service, "_fetch_rows", rows_at_barrier)
    monkeypatch.setattr(service, "_fetch_scalar", count_at_barrier)

    result = service.get_filtered_content({"genres": [1]})

    assert sorted(ids(result)) == [1, 2, 5]
    assert result["meta"]["total"] == 3


def test_count_failure_fails_the_whole_call(service, monkeypatch):
    def broken_count(stmt, params):
        raise RuntimeError("count failed")

    monkeypatch.setattr(service, "_fetch_scalar", broken_count)

    with pytest.raises(RuntimeError, match="count failed"):
        service.get_filtered_content({})


# --- 2. DETAIL ---
def test_content_detail_aggregates_relations(service):
    content = service.get_content_by_id(1)

    assert content["content_type_name"] == "Movie"
    assert content["content_type_slug"] == "movie"
    assert sorted(content["genres"]) == ["Comedy", "Drama"]
    assert content["countries"] == ["USA"]
    assert content["voice_authors"] == ["Studio One"]
    assert content["ratings"] == {
        "imdb": {"rating": 7.5, "votes": 1000},
        "kinopoisk": {"rating": 8.0, "votes": 5000},
    }


def test_content_detail_lists_seasons(service):
    content = service.get_content_by_id(3)

    assert content["seasons"] == {1: 10, 2: 8}
    assert content["is_lgbt"] is True


def test_content_detail_missing_returns_none(service):
    assert service.get_content_by_id(999999999) is None


# --- 3. SIMILARITY ---
def test_similar_content_scores_genres_twice(service):
    # Scores against item 1: item 5 = 2*2 + 1, item 2 = 2*1 + 1, item 3 = 2*1 + 0.
    # Item 4 shares nothing.
    similar = service.get_similar_content(1)

    assert [row["id"] for row in similar] == [5, 2, 3]


def test_similar_content_respects_limit(service):
    assert [row["id"] for row in service.get_similar_content(1, limit=1)] == [5]


def test_similar_content_of_unknown_id_is_empty(service):
    assert service.get_similar_content(424242) == []


# --- 4. LIST ENDPOINTS ---
def test_search_by_title_orders_and_truncates(service):
    results = service.search_by_title("movie")

    assert [r["id"] for r in results] == [2, 1, 4]
    movie_a = next(r for r in results if r["id"] == 1)
    assert movie_a["description"] == "x" * 200 + "..."
    movie_b = next(r for r in results if r["id"] == 2)
    assert movie_b["description"] == "A film."


def test_search_by_title_exact(service):
    assert [r["id"] for r in service.search_by_title("Movie", exact=True)] == []
    assert [r["id"] for r in service.search_by_title("Movie D", exact=True)] == [4]


def test_advanced_search_has_poster(service):
    assert [r["id"] for r in service.advanced_search(year=2008, has_poster=True)] == []
    assert [r["id"] for r in service.advanced_search(min_year=2005, max_year=2010)] == [5, 2, 1]


def test_popular_covers_the_last_five_years(service):
    results = service.get_popular(now=datetime(2024, 6, 1))

    assert [r["id"] for r in results] == [3]


def test_contents_by_type(service):
    result = service.get_contents_by_type("movie", sort_by="nonsense", sort_order="asc", limit=2)

    assert [r["id"] for r in result["data"]] == [4, 1]
    assert result["total"] == 4
    assert result["content_type"] == {"id": 1, "name": "Movie", "slug": "movie"}
    assert service.get_contents_by_type("anime") is None


def test_stats_and_available_filters(service):
    stats = service.get_content_stats()

    assert stats["total"] == 5
    assert stats["by_type"] == [{"name": "Movie", "count": 4}, {"name": "Series", "count": 1}]

    filters = service.get_available_filters()
    assert [g["name"] for g in filters["genres"]] == ["Comedy", "Drama", "Horror"]
    assert filters["rating_sources"] == ["imdb", "kinopoisk"]
    assert filters["years"] == {"min": 1995, "max": 2020}


def test_genre_and_country_facets_differ_for_the_same_id_count(service):
    # Logic: Two ids each. Genres need both, countries accept either.
    genres = service.get_filtered_content({"genres": [1, 3]})
    countries = service.get_filtered_content({"countries": [10, 12]})

    assert sorted(ids(genres)) == [5]
    assert sorted(ids(countries)) == [1, 2, 4, 5]


def test_similar_content_ignores_same_year_without_overlap(seeded_db, service):
    seed(seeded_db, [make_item(id=6, title="Same Year", year=2005, genres=[], countries=[])])

    assert 6 not in [row["id"] for row in service.get_similar_content(1)]
