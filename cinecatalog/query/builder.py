"""
Filter query builder for multi-facet content search.

Queries are assembled from an immutable intermediate representation:

    QueryState(joins, predicates, order_by, limit, offset)

Every join and predicate is a Fragment carrying its own SQL text and the
values for the `?` placeholders inside it. Filter functions are pure: they
return a new QueryState and never touch the one they were given. Parameters
are collected only at render time, walking fragments in the same order their
SQL is emitted, so placeholder order and value order cannot drift apart no
matter in which order filters were applied.

No value is ever interpolated into SQL text. Identifiers that do come from
callers (sort field, search fields) are checked against allow-lists and
dropped when unknown.

Facet semantics:
- genres: AND. Content must carry every requested genre.
- countries, voice authors: OR. Content matching any requested id.
The asymmetry is intentional and pinned by tests.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Iterable, NamedTuple, Sequence

from sqlalchemy import TextClause, text

CONTENT_TABLE = "contents c"

SORTABLE_FIELDS = ("year", "created_at", "updated_at", "title")
SORT_ORDERS = ("ASC", "DESC")
SEARCHABLE_FIELDS = ("title", "original_title", "description")

DEFAULT_PAGE = 1
DEFAULT_PER_PAGE = 20

LIKE_ESCAPE = "!"


@dataclass(frozen=True)
class Fragment:
    sql: str
    params: tuple[Any, ...] = ()


@dataclass(frozen=True)
class QueryState:
    joins: tuple[Fragment, ...] = ()
    predicates: tuple[Fragment, ...] = ()
    order_by: tuple[str, ...] = ()
    limit: int | None = None
    offset: int | None = None


class BuiltQuery(NamedTuple):
    sql: str
    params: list[Any]

    def to_statement(self) -> tuple[TextClause, dict[str, Any]]:
        """
        Convert `?` placeholders into SQLAlchemy named binds (:p0, :p1, ...)
        so the query runs on any driver paramstyle.
        """
        pieces = self.sql.split("?")
        if len(pieces) - 1 != len(self.params):
            raise ValueError(
                f"placeholder/parameter mismatch: {len(pieces) - 1} placeholders, {len(self.params)} params"
            )

        sql = pieces[0] + "".join(
            f":p{i}{piece}" for i, piece in enumerate(pieces[1:])
        )
        return text(sql), {f"p{i}": value for i, value in enumerate(self.params)}


# -----------------------------------------------------------------------------
# Pure state transitions
# -----------------------------------------------------------------------------


def _unique(ids: Iterable[Any] | None) -> list[Any]:
    if not ids:
        return []
    seen = []
    for value in ids:
        if value is not None and value not in seen:
            seen.append(value)
    return seen


def _placeholders(n: int) -> str:
    return ",".join("?" * n)


def _add_join(state: QueryState, fragment: Fragment) -> QueryState:
    return replace(state, joins=state.joins + (fragment,))


def _add_predicate(state: QueryState, fragment: Fragment) -> QueryState:
    return replace(state, predicates=state.predicates + (fragment,))


def _alias(prefix: str, state: QueryState) -> str:
    # Positional aliases keep repeated applications of the same filter apart
    return f"{prefix}{len(state.joins)}"


def _range(state: QueryState, column: str, low: Any, high: Any) -> QueryState:
    conditions = []
    params = []
    if low is not None:
        conditions.append(f"{column} >= ?")
        params.append(low)
    if high is not None:
        conditions.append(f"{column} <= ?")
        params.append(high)
    if not conditions:
        return state
    return _add_predicate(state, Fragment(f"({' AND '.join(conditions)})", tuple(params)))


def with_genres(state: QueryState, genre_ids: Sequence[Any] | None) -> QueryState:
    """
    Restrict to content tagged with ALL of the given genres.
    """
    ids = _unique(genre_ids)
    if not ids:
        return state

    alias = _alias("cg", state)
    if len(ids) == 1:
        return _add_join(
            state,
            Fragment(
                f"INNER JOIN content_genres {alias} ON c.id = {alias}.content_id AND {alias}.genre_id = ?",
                (ids[0],),
            ),
        )

    subquery = (
        "SELECT content_id FROM content_genres "
        f"WHERE genre_id IN ({_placeholders(len(ids))}) "
        "GROUP BY content_id "
        "HAVING COUNT(DISTINCT genre_id) = ?"
    )
    return _add_join(
        state,
        Fragment(
            f"INNER JOIN ({subquery}) {alias} ON c.id = {alias}.content_id",
            (*ids, len(ids)),
        ),
    )


def _with_any_of(
    state: QueryState, ids: Sequence[Any] | None, table: str, column: str, prefix: str
) -> QueryState:
    values = _unique(ids)
    if not values:
        return state

    alias = _alias(prefix, state)
    state = _add_join(state, Fragment(f"INNER JOIN {table} {alias} ON c.id = {alias}.content_id"))
    return _add_predicate(
        state,
        Fragment(f"{alias}.{column} IN ({_placeholders(len(values))})", tuple(values)),
    )


def with_countries(state: QueryState, country_ids: Sequence[Any] | None) -> QueryState:
    """
    Restrict to content from ANY of the given countries.
    """
    return _with_any_of(state, country_ids, "content_countries", "country_id", "cc")


def with_voice_authors(state: QueryState, author_ids: Sequence[Any] | None) -> QueryState:
    """
    Restrict to content voiced by ANY of the given voice authors.
    """
    return _with_any_of(state, author_ids, "content_voice_authors", "voice_author_id", "cva")


def with_content_types(state: QueryState, type_ids: Sequence[Any] | None) -> QueryState:
    ids = _unique(type_ids)
    if not ids:
        return state
    return _add_predicate(
        state, Fragment(f"c.content_type_id IN ({_placeholders(len(ids))})", tuple(ids))
    )


def with_years(state: QueryState, min_year: int | None, max_year: int | None) -> QueryState:
    return _range(state, "c.year", min_year, max_year)


def with_duration(state: QueryState, min_minutes: int | None, max_minutes: int | None) -> QueryState:
    return _range(state, "c.duration", min_minutes, max_minutes)


def with_rating(
    state: QueryState,
    source: str | None,
    min_rating: float | None = None,
    max_rating: float | None = None,
) -> QueryState:
    """
    Left join the rating row of `source`; bounds, when given, filter on it.

    Without bounds the join has no filtering effect.
    """
    if not source:
        return state

    alias = _alias("r", state)
    state = _add_join(
        state,
        Fragment(
            f"LEFT JOIN ratings {alias} ON c.id = {alias}.content_id AND {alias}.source = ?",
            (source,),
        ),
    )
    return _range(state, f"{alias}.rating", min_rating, max_rating)


def with_lgbt(state: QueryState, is_lgbt: bool | None) -> QueryState:
    if is_lgbt is None:
        return state
    return _add_predicate(state, Fragment("c.is_lgbt = ?", (bool(is_lgbt),)))


def escape_like(value: str) -> str:
    return (
        value.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )


def with_search(
    state: QueryState,
    query: str | None,
    fields: Sequence[str] | None = SEARCHABLE_FIELDS,
) -> QueryState:
    """
    Case-insensitive substring match of `query` on any of `fields`.
    """
    if not query:
        return state

    columns = [f for f in _unique(fields) if f in SEARCHABLE_FIELDS]
    if not columns:
        return state

    pattern = f"%{escape_like(query.lower())}%"
    conditions = [f"LOWER(c.{column}) LIKE ? ESCAPE '{LIKE_ESCAPE}'" for column in columns]
    return _add_predicate(
        state,
        Fragment(f"({' OR '.join(conditions)})", (pattern,) * len(columns)),
    )


def with_sort(state: QueryState, field: str | None, order: str | None = "DESC") -> QueryState:
    """
    Append an ORDER BY term. Unknown fields or orders are silently ignored.
    """
    direction = (order or "DESC").upper()
    if field not in SORTABLE_FIELDS or direction not in SORT_ORDERS:
        return state
    return replace(state, order_by=state.order_by + (f"c.{field} {direction}",))


def with_page(state: QueryState, page: int | None = DEFAULT_PAGE, per_page: int | None = DEFAULT_PER_PAGE) -> QueryState:
    page = max(int(page or DEFAULT_PAGE), 1)
    per_page = max(int(per_page or DEFAULT_PER_PAGE), 1)
    return replace(state, limit=per_page, offset=(page - 1) * per_page)


# -----------------------------------------------------------------------------
# Rendering
# -----------------------------------------------------------------------------


def _render_body(state: QueryState) -> tuple[str, list[Any]]:
    sql = f" FROM {CONTENT_TABLE}"
    params: list[Any] = []

    for join in state.joins:
        sql += f" {join.sql}"
        params.extend(join.params)

    if state.predicates:
        sql += " WHERE " + " AND ".join(p.sql for p in state.predicates)
        for predicate in state.predicates:
            params.extend(predicate.params)

    return sql, params


def render_select(state: QueryState) -> BuiltQuery:
    body, params = _render_body(state)
    # DISTINCT: OR-facet joins match a row once per matching id
    sql = "SELECT DISTINCT c.*" + body

    if state.order_by:
        sql += " ORDER BY " + ", ".join(state.order_by)

    if state.limit is not None:
        sql += " LIMIT ?"
        params.append(state.limit)
        if state.offset is not None:
            sql += " OFFSET ?"
            params.append(state.offset)

    return BuiltQuery(sql, params)


def render_count(state: QueryState) -> BuiltQuery:
    body, params = _render_body(state)
    return BuiltQuery("SELECT COUNT(DISTINCT c.id) AS total" + body, params)


# -----------------------------------------------------------------------------
# Fluent facade
# -----------------------------------------------------------------------------


class QueryBuilder:
    """
    Fluent wrapper around QueryState.

        sql, params = (
            QueryBuilder()
            .filter_by_genres([1, 2])
            .filter_by_years(2000, 2010)
            .sort("year", "DESC")
            .paginate(1, 20)
            .build()
        )
    """

    def __init__(self, state: QueryState | None = None) -> None:
        self._state = state or QueryState()

    @property
    def state(self) -> QueryState:
        return self._state

    def _apply(self, state: QueryState) -> "QueryBuilder":
        self._state = state
        return self

    def filter_by_genres(self, genre_ids):
        return self._apply(with_genres(self._state, genre_ids))

    def filter_by_countries(self, country_ids):
        return self._apply(with_countries(self._state, country_ids))

    def filter_by_voice_authors(self, author_ids):
        return self._apply(with_voice_authors(self._state, author_ids))

    def filter_by_content_types(self, type_ids):
        return self._apply(with_content_types(self._state, type_ids))

    def filter_by_years(self, min_year=None, max_year=None):
        return self._apply(with_years(self._state, min_year, max_year))

    def filter_by_duration(self, min_minutes=None, max_minutes=None):
        return self._apply(with_duration(self._state, min_minutes, max_minutes))

    def filter_by_rating(self, source, min_rating=None, max_rating=None):
        return self._apply(with_rating(self._state, source, min_rating, max_rating))

    def filter_by_lgbt(self, is_lgbt):
        return self._apply(with_lgbt(self._state, is_lgbt))

    def search(self, query, fields=SEARCHABLE_FIELDS):
        return self._apply(with_search(self._state, query, fields))

    def sort(self, field, order="DESC"):
        return self._apply(with_sort(self._state, field, order))

    def paginate(self, page=DEFAULT_PAGE, per_page=DEFAULT_PER_PAGE):
        return self._apply(with_page(self._state, page, per_page))

    def build(self) -> BuiltQuery:
        return render_select(self._state)

    def build_count(self) -> BuiltQuery:
        return render_count(self._state)
