import pytest

from cinecatalog.query.builder import (
    QueryBuilder,
    QueryState,
    escape_like,
    render_select,
    with_genres,
    with_years,
)


def _body(sql):
    return sql.split(" FROM ", 1)[1].split(" ORDER BY ")[0].split(" LIMIT ")[0]


# --- 1. NO-OPS ---
def test_empty_builder_selects_everything():
    sql, params = QueryBuilder().build()

    assert sql == "SELECT DISTINCT c.* FROM contents c"
    assert params == []


def test_empty_inputs_are_no_ops():
    builder = (
        QueryBuilder()
        .filter_by_genres([])
        .filter_by_countries(None)
        .filter_by_voice_authors([])
        .filter_by_content_types(None)
        .filter_by_years(None, None)
        .filter_by_duration(None, None)
        .filter_by_rating(None, 1, 9)
        .filter_by_lgbt(None)
        .search("", ["title"])
    )

    assert builder.build() == QueryBuilder().build()


def test_lgbt_false_still_filters():
    sql, params = QueryBuilder().filter_by_lgbt(False).build()

    assert "c.is_lgbt = ?" in sql
    assert params == [False]


# --- 2. FACETS ---
def test_single_genre_is_an_inner_join():
    sql, params = QueryBuilder().filter_by_genres([7]).build()

    assert "INNER JOIN content_genres cg0 ON c.id = cg0.content_id AND cg0.genre_id = ?" in sql
    assert params == [7]


def test_multiple_genres_require_all_of_them():
    sql, params = QueryBuilder().filter_by_genres([1, 2, 3]).build()

    assert "HAVING COUNT(DISTINCT genre_id) = ?" in sql
    assert params == [1, 2, 3, 3]


def test_countries_match_any():
    sql, params = QueryBuilder().filter_by_countries([10, 11]).build()

    assert "INNER JOIN content_countries cc0 ON c.id = cc0.content_id" in sql
    assert "cc0.country_id IN (?,?)" in sql
    assert params == [10, 11]


def test_rating_without_bounds_only_joins():
    sql, params = QueryBuilder().filter_by_rating("imdb").build()

    assert "LEFT JOIN ratings r0 ON c.id = r0.content_id AND r0.source = ?" in sql
    assert "WHERE" not in sql
    assert params == ["imdb"]


def test_rating_bounds_are_independent():
    sql, params = QueryBuilder().filter_by_rating("kinopoisk", None, 8.5).build()

    assert "(r0.rating <= ?)" in sql
    assert params == ["kinopoisk", 8.5]


def test_repeated_facets_get_distinct_aliases():
    sql, _ = QueryBuilder().filter_by_countries([1]).filter_by_voice_authors([2]).build()

    assert "cc0" in sql
    assert "cva1" in sql


# --- 3. PARAMETER LOCKSTEP ---
@pytest.mark.parametrize(
    "steps",
    [
        lambda b: b.filter_by_years(2000, 2010).filter_by_genres([5]),
        lambda b: b.filter_by_genres([5]).filter_by_years(2000, 2010),
        lambda b: b.filter_by_lgbt(True).filter_by_rating("imdb", 7, 9).filter_by_countries([1, 2]),
        lambda b: b.search("matrix").filter_by_genres([1, 2]).filter_by_content_types([3]).paginate(3, 10),
        lambda b: b.filter_by_duration(60, None).filter_by_voice_authors([4, 4, 5]).sort("title", "ASC"),
    ],
)
def test_placeholders_and_params_stay_in_lockstep(steps):
    built = steps(QueryBuilder()).build()

    assert built.sql.count("?") == len(built.params)
    statement, binds = built.to_statement()
    assert "?" not in str(statement)
    assert list(binds.values()) == built.params


def test_params_follow_sql_order_not_call_order():
    # Logic: The year predicate is applied first but rendered after the join.
    _, params = QueryBuilder().filter_by_years(2000, None).filter_by_genres([5]).build()

    assert params == [5, 2000]


def test_count_query_shares_joins_and_where():
    builder = (
        QueryBuilder()
        .filter_by_genres([1, 2])
        .filter_by_countries([10])
        .filter_by_years(1990, None)
        .sort("year")
        .paginate(2, 5)
    )
    data_sql, data_params = builder.build()
    count_sql, count_params = builder.build_count()

    assert count_sql.startswith("SELECT COUNT(DISTINCT c.id) AS total FROM")
    assert _body(count_sql) == _body(data_sql)
    assert data_params[: len(count_params)] == count_params
    assert data_params[len(count_params):] == [5, 5]


# --- 4. SORT / PAGINATION / SEARCH ---
def test_invalid_sort_is_dropped():
    sql, _ = QueryBuilder().sort("title; DROP TABLE contents", "ASC").sort("year", "sideways").build()

    assert "ORDER BY" not in sql


def test_sort_terms_accumulate():
    sql, _ = QueryBuilder().sort("year", "desc").sort("title", "ASC").build()

    assert sql.endswith("ORDER BY c.year DESC, c.title ASC")


def test_pagination_is_bound_and_clamped():
    sql, params = QueryBuilder().paginate(0, -5).build()

    assert sql.endswith("LIMIT ? OFFSET ?")
    assert params == [1, 0]
    _, params = QueryBuilder().paginate(3, 25).build()
    assert params == [25, 50]


def test_search_escapes_wildcards_and_drops_unknown_fields():
    sql, params = QueryBuilder().search("50%_off", ["title", "password"]).build()

    assert "LOWER(c.title) LIKE ? ESCAPE '!'" in sql
    assert "password" not in sql
    assert params == ["%50!%!_off%"]


def test_escape_like_escapes_the_escape_character():
    assert escape_like("a!b") == "a!!b"


# --- 5. PURITY ---
def test_with_functions_do_not_mutate_their_input():
    state = QueryState()
    narrowed = with_years(with_genres(state, [1]), 2000, None)

    assert state == QueryState()
    assert len(narrowed.joins) == 1
    assert render_select(state).params == []
