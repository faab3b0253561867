"""
Read side of the catalog.

ContentService turns filter descriptions into builder queries, aggregates the
detail view of one item, scores similar items, and serves the simpler list
endpoints (title search, advanced search, popular, content types).

Database errors are never caught here; they propagate to the API layer.
"""

from __future__ import annotations

import logging
import math
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Any

from sqlalchemy import case, distinct, func, or_, select, text
from sqlalchemy.orm import Session

from cinecatalog.persistence.engine import DatabaseManager
from cinecatalog.persistence.tables import (
    Content,
    ContentCountry,
    ContentGenre,
    ContentSeason,
    ContentType,
    ContentVoiceAuthor,
    Country,
    Genre,
    Rating,
    VoiceAuthor,
)
from cinecatalog.query.builder import (
    DEFAULT_PAGE,
    DEFAULT_PER_PAGE,
    LIKE_ESCAPE,
    SEARCHABLE_FIELDS,
    QueryBuilder,
    escape_like,
)

logger = logging.getLogger(__name__)

CONTENT_COLUMNS = Content.__table__.c

MAX_LIST_LIMIT = 100
QUICK_SEARCH_MIN_CHARS = 2
DESCRIPTION_PREVIEW_CHARS = 200
POPULAR_YEARS_WINDOW = 5
TYPE_SORT_FIELDS = ("year", "title", "created_at")

SIMILAR_SQL = text(
    """
    SELECT scored.* FROM (
        SELECT
            c.*,
            (
                SELECT COUNT(*)
                FROM content_genres cg1
                INNER JOIN content_genres cg2 ON cg1.genre_id = cg2.genre_id
                WHERE cg1.content_id = c.id AND cg2.content_id = :content_id
            ) AS genre_matches,
            (
                SELECT COUNT(*)
                FROM content_countries cc1
                INNER JOIN content_countries cc2 ON cc1.country_id = cc2.country_id
                WHERE cc1.content_id = c.id AND cc2.content_id = :content_id
            ) AS country_matches
        FROM contents c
        WHERE c.id != :content_id
    ) scored
    WHERE scored.genre_matches > 0 OR scored.country_matches > 0
    ORDER BY (scored.genre_matches * 2 + scored.country_matches) DESC, scored.year DESC
    LIMIT :limit
    """
)


def _row(mapping) -> dict[str, Any]:
    """
    Plain dict for a result row. Raw-SQL rows come back untyped, so the
    boolean flag is normalized here.
    """
    d = dict(mapping)
    if "is_lgbt" in d and d["is_lgbt"] is not None:
        d["is_lgbt"] = bool(d["is_lgbt"])
    return d


def _split(value: str | None) -> list[str]:
    if not value:
        return []
    return [part for part in value.split(",") if part]


def _preview(description: str | None) -> str | None:
    if not description:
        return None
    if len(description) <= DESCRIPTION_PREVIEW_CHARS:
        return description
    return description[:DESCRIPTION_PREVIEW_CHARS] + "..."


def _title_like(value: str):
    pattern = f"%{escape_like(value)}%"
    return or_(
        Content.title.ilike(pattern, escape=LIKE_ESCAPE),
        Content.original_title.ilike(pattern, escape=LIKE_ESCAPE),
    )


class ContentService:
    """
    Intended use:
        service = ContentService(db_manager)
        page = service.get_filtered_content({"genres": [1, 2], "pagination": {"page": 2}})
    """

    def __init__(self, db_manager: DatabaseManager) -> None:
        self._db = db_manager

    # ---------------------------------------------------------------------
    # Filtered browse
    # ---------------------------------------------------------------------

    @staticmethod
    def build_filter_query(filters: dict[str, Any]) -> QueryBuilder:
        """
        Map a filter description onto a QueryBuilder.

        Keys: genres, countries, voice_authors, content_types, years{min,max},
        duration{min,max}, rating{source,min,max}, is_lgbt,
        search{query,fields}, sort{field,order}, pagination{page,per_page}.
        """
        builder = QueryBuilder()

        builder.filter_by_genres(filters.get("genres"))
        builder.filter_by_countries(filters.get("countries"))
        builder.filter_by_voice_authors(filters.get("voice_authors"))
        builder.filter_by_content_types(filters.get("content_types"))

        years = filters.get("years") or {}
        builder.filter_by_years(years.get("min"), years.get("max"))

        duration = filters.get("duration") or {}
        builder.filter_by_duration(duration.get("min"), duration.get("max"))

        rating = filters.get("rating") or {}
        builder.filter_by_rating(rating.get("source"), rating.get("min"), rating.get("max"))

        builder.filter_by_lgbt(filters.get("is_lgbt"))

        search = filters.get("search") or {}
        if search.get("query"):
            builder.search(search["query"], search.get("fields") or SEARCHABLE_FIELDS)

        sort = filters.get("sort")
        if sort:
            builder.sort(sort.get("field"), sort.get("order") or "DESC")
        else:
            builder.sort("year", "DESC")

        pagination = filters.get("pagination") or {}
        builder.paginate(
            pagination.get("page") or DEFAULT_PAGE,
            pagination.get("per_page") or DEFAULT_PER_PAGE,
        )
        return builder

    def get_filtered_content(self, filters: dict[str, Any] | None = None) -> dict[str, Any]:
        """
        Run the data and count queries for a filter description.

        The two queries run concurrently, each on its own pooled connection; a
        failure of either fails the whole call.

        Returns:
            {"data": [...], "meta": {page, per_page, total, total_pages,
             has_next_page, has_prev_page}}
        """
        filters = filters or {}
        builder = self.build_filter_query(filters)
        state = builder.state

        page = (state.offset // state.limit) + 1
        per_page = state.limit

        select_stmt, select_params = builder.build().to_statement()
        count_stmt, count_params = builder.build_count().to_statement()

        start = time.perf_counter()
        with ThreadPoolExecutor(max_workers=2) as executor:
            rows_future = executor.submit(self._fetch_rows, select_stmt, select_params)
            total_future = executor.submit(self._fetch_scalar, count_stmt, count_params)
            rows = rows_future.result()
            total = total_future.result() or 0

        logger.debug(
            "CATALOG_FILTER_QUERY joins=%d predicates=%d total=%d latency_ms=%.2f",
            len(state.joins),
            len(state.predicates),
            total,
            (time.perf_counter() - start) * 1000.0,
        )

        total_pages = math.ceil(total / per_page)
        return {
            "data": [_row(r) for r in rows],
            "meta": {
                "page": page,
                "per_page": per_page,
                "total": total,
                "total_pages": total_pages,
                "has_next_page": page < total_pages,
                "has_prev_page": page > 1,
            },
        }

    def _fetch_rows(self, stmt, params: dict[str, Any]):
        with self._db.get_session() as session:
            return session.execute(stmt, params).mappings().all()

    def _fetch_scalar(self, stmt, params: dict[str, Any]):
        with self._db.get_session() as session:
            return session.execute(stmt, params).scalar_one()

    # ---------------------------------------------------------------------
    # Detail and similarity
    # ---------------------------------------------------------------------

    def get_content_by_id(self, content_id: int) -> dict[str, Any] | None:
        """
        Content row with its type, flattened relation names, ratings keyed by
        source and episode counts keyed by season. None when absent.
        """
        stmt = (
            select(
                *CONTENT_COLUMNS,
                ContentType.name.label("content_type_name"),
                ContentType.slug.label("content_type_slug"),
                func.group_concat(distinct(Genre.name)).label("genres"),
                func.group_concat(distinct(Country.name)).label("countries"),
                func.group_concat(distinct(VoiceAuthor.name)).label("voice_authors"),
            )
            .select_from(Content)
            .outerjoin(ContentType, Content.content_type_id == ContentType.id)
            .outerjoin(ContentGenre, Content.id == ContentGenre.content_id)
            .outerjoin(Genre, ContentGenre.genre_id == Genre.id)
            .outerjoin(ContentCountry, Content.id == ContentCountry.content_id)
            .outerjoin(Country, ContentCountry.country_id == Country.id)
            .outerjoin(ContentVoiceAuthor, Content.id == ContentVoiceAuthor.content_id)
            .outerjoin(VoiceAuthor, ContentVoiceAuthor.voice_author_id == VoiceAuthor.id)
            .where(Content.id == content_id)
            .group_by(Content.id)
        )

        with self._db.get_session() as session:
            row = session.execute(stmt).mappings().first()
            if row is None:
                return None

            ratings = session.execute(
                select(Rating.source, Rating.rating, Rating.votes)
                .where(Rating.content_id == content_id)
                .order_by(Rating.source)
            ).all()
            seasons = session.execute(
                select(ContentSeason.season_number, ContentSeason.episodes_count)
                .where(ContentSeason.content_id == content_id)
                .order_by(ContentSeason.season_number)
            ).all()

        content = _row(row)
        content["genres"] = _split(content["genres"])
        content["countries"] = _split(content["countries"])
        content["voice_authors"] = _split(content["voice_authors"])
        content["ratings"] = {
            source: {"rating": rating, "votes": votes} for source, rating, votes in ratings
        }
        content["seasons"] = {number: episodes for number, episodes in seasons}
        return content

    def get_similar_content(self, content_id: int, limit: int = 10) -> list[dict[str, Any]]:
        """
        Items sharing genres or countries with `content_id`, best overlap first.

        Score is 2 x shared genres + shared countries; items without any overlap
        are excluded, as is the item itself.
        """
        with self._db.get_session() as session:
            rows = session.execute(
                SIMILAR_SQL, {"content_id": content_id, "limit": int(limit)}
            ).mappings().all()
        return [_row(r) for r in rows]

    # ---------------------------------------------------------------------
    # List endpoints
    # ---------------------------------------------------------------------

    def search_by_title(
        self,
        title: str,
        *,
        limit: int = 20,
        offset: int = 0,
        exact: bool = False,
    ) -> list[dict[str, Any]]:
        """
        Title/original title search with description previews.
        """
        term = title.strip()
        if exact:
            condition = or_(Content.title == term, Content.original_title == term)
        else:
            condition = _title_like(term)

        stmt = (
            select(
                Content.id,
                Content.title,
                Content.original_title,
                Content.year,
                Content.poster_url,
                Content.description,
                Content.duration,
                Content.age_restriction,
                Content.video_quality,
                Content.player_url,
            )
            .where(condition)
            .order_by(Content.year.desc(), Content.title.asc())
            .limit(min(limit, MAX_LIST_LIMIT))
            .offset(offset)
        )

        with self._db.get_session() as session:
            rows = session.execute(stmt).mappings().all()

        results = []
        for r in rows:
            item = dict(r)
            item["description"] = _preview(item["description"])
            results.append(item)
        return results

    def quick_search(self, query: str, *, limit: int = 10) -> list[dict[str, Any]]:
        """
        Substring search over title, original title and description, ranked by
        where the term matched: title 3, original title 2, description 1.

        Terms shorter than two characters return nothing.
        """
        term = (query or "").strip()
        if len(term) < QUICK_SEARCH_MIN_CHARS:
            return []

        pattern = f"%{escape_like(term)}%"
        in_title = Content.title.ilike(pattern, escape=LIKE_ESCAPE)
        in_original = Content.original_title.ilike(pattern, escape=LIKE_ESCAPE)
        in_description = Content.description.ilike(pattern, escape=LIKE_ESCAPE)
        relevance = (
            case((in_title, 3), else_=0)
            + case((in_original, 2), else_=0)
            + case((in_description, 1), else_=0)
        ).label("relevance")

        stmt = (
            select(
                Content.id,
                Content.title,
                Content.original_title,
                Content.poster_url,
                Content.year,
                Content.description,
                relevance,
            )
            .where(or_(in_title, in_original, in_description))
            .order_by(relevance.desc(), Content.year.desc(), Content.id.asc())
            .limit(min(limit, MAX_LIST_LIMIT))
        )

        with self._db.get_session() as session:
            return [dict(r) for r in session.execute(stmt).mappings().all()]

    def advanced_search(
        self,
        *,
        title: str | None = None,
        year: int | None = None,
        min_year: int | None = None,
        max_year: int | None = None,
        content_type_id: int | None = None,
        has_poster: bool = False,
        limit: int = 20,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """
        Composable filters over plain content columns. An exact year wins over
        the min/max range.
        """
        stmt = select(Content.__table__)

        if title:
            stmt = stmt.where(_title_like(title.strip()))

        if year is not None:
            stmt = stmt.where(Content.year == year)
        else:
            if min_year is not None:
                stmt = stmt.where(Content.year >= min_year)
            if max_year is not None:
                stmt = stmt.where(Content.year <= max_year)

        if content_type_id is not None:
            stmt = stmt.where(Content.content_type_id == content_type_id)

        if has_poster:
            stmt = stmt.where(Content.poster_url.is_not(None), Content.poster_url != "")

        stmt = (
            stmt.order_by(Content.year.desc(), Content.id.desc())
            .limit(min(limit, MAX_LIST_LIMIT))
            .offset(offset)
        )

        with self._db.get_session() as session:
            return [dict(r) for r in session.execute(stmt).mappings().all()]

    def get_popular(self, limit: int = 10, *, now: datetime | None = None) -> list[dict[str, Any]]:
        """
        Content from the last five years, newest first.
        """
        current_year = (now or datetime.now()).year
        stmt = (
            select(Content.__table__)
            .where(Content.year >= current_year - POPULAR_YEARS_WINDOW)
            .order_by(Content.year.desc(), Content.created_at.desc())
            .limit(min(limit, MAX_LIST_LIMIT))
        )
        with self._db.get_session() as session:
            return [dict(r) for r in session.execute(stmt).mappings().all()]

    # ---------------------------------------------------------------------
    # Content types
    # ---------------------------------------------------------------------

    def list_content_types(self) -> list[dict[str, Any]]:
        with self._db.get_session() as session:
            rows = session.execute(
                select(ContentType.__table__).order_by(ContentType.id)
            ).mappings().all()
        return [dict(r) for r in rows]

    def get_content_type(self, slug: str) -> dict[str, Any] | None:
        with self._db.get_session() as session:
            row = session.execute(
                select(ContentType.__table__).where(ContentType.slug == slug)
            ).mappings().first()
        return dict(row) if row else None

    def get_contents_by_type(
        self,
        slug: str,
        *,
        limit: int = 20,
        offset: int = 0,
        year: int | None = None,
        sort_by: str = "year",
        sort_order: str = "desc",
    ) -> dict[str, Any] | None:
        """
        Paginated content of one type. Unknown sort fields fall back to year.

        Returns None when the type does not exist.
        """
        sort_field = sort_by if sort_by in TYPE_SORT_FIELDS else "year"
        column = CONTENT_COLUMNS[sort_field]
        ordering = column.asc() if (sort_order or "").lower() == "asc" else column.desc()

        with self._db.get_session() as session:
            content_type = session.execute(
                select(ContentType.id, ContentType.name).where(ContentType.slug == slug)
            ).first()
            if content_type is None:
                return None

            conditions = [Content.content_type_id == content_type.id]
            if year is not None:
                conditions.append(Content.year == year)

            rows = session.execute(
                select(Content.__table__)
                .where(*conditions)
                .order_by(ordering)
                .limit(min(limit, MAX_LIST_LIMIT))
                .offset(offset)
            ).mappings().all()
            total = session.execute(
                select(func.count()).select_from(Content).where(*conditions)
            ).scalar_one()

        return {
            "data": [dict(r) for r in rows],
            "total": total,
            "content_type": {"id": content_type.id, "name": content_type.name, "slug": slug},
        }

    # ---------------------------------------------------------------------
    # Aggregates
    # ---------------------------------------------------------------------

    def get_content_stats(self) -> dict[str, Any]:
        with self._db.get_session() as session:
            total = session.execute(select(func.count()).select_from(Content)).scalar_one()

            by_year = session.execute(
                select(Content.year, func.count().label("count"))
                .where(Content.year > 0)
                .group_by(Content.year)
                .order_by(Content.year.desc())
            ).mappings().all()

            by_type = session.execute(
                select(ContentType.name, func.count().label("count"))
                .select_from(Content)
                .join(ContentType, Content.content_type_id == ContentType.id)
                .group_by(ContentType.id, ContentType.name)
                .order_by(ContentType.id)
            ).mappings().all()

        return {
            "total": total,
            "by_year": [dict(r) for r in by_year],
            "by_type": [dict(r) for r in by_type],
        }

    def get_available_filters(self) -> dict[str, Any]:
        """
        Values the frontend offers in its filter panel.
        """
        with self._db.get_session() as session:
            return {
                "genres": _lookup_rows(session, Genre, with_slug=True),
                "countries": _lookup_rows(session, Country, with_slug=True),
                "voice_authors": _lookup_rows(session, VoiceAuthor, with_slug=False),
                "content_types": [
                    dict(r)
                    for r in session.execute(
                        select(ContentType.__table__).order_by(ContentType.id)
                    ).mappings().all()
                ],
                "rating_sources": list(
                    session.execute(
                        select(Rating.source).distinct().order_by(Rating.source)
                    ).scalars()
                ),
                "years": dict(
                    session.execute(
                        select(
                            func.min(Content.year).label("min"),
                            func.max(Content.year).label("max"),
                        ).where(Content.year > 0)
                    ).mappings().one()
                ),
            }


def _lookup_rows(session: Session, model, *, with_slug: bool) -> list[dict[str, Any]]:
    columns = [model.id, model.name]
    if with_slug:
        columns.append(model.slug)
    rows = session.execute(select(*columns).order_by(model.name)).mappings().all()
    return [dict(r) for r in rows]
