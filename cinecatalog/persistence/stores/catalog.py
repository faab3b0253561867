"""
Catalog store (persistence only).

This module persists already-extracted ContentBundles into the catalog tables:
- content_types: one row per id
- contents: one row per upstream id
- genres / countries / voice_authors: lookup rows, one per id
- content_genres / content_countries / content_voice_authors: replaced wholesale
- ratings: one row per (content_id, source)
- content_seasons: one row per (content_id, season_number)

Design constraints:
- Upsert by stable keys, so replaying the same upstream snapshot is a no-op
  in row counts.
- Join rows mirror the latest snapshot: delete-then-insert per content item.
- The caller owns the transaction (one per content item).

Records arrive already validated (see client/extract.py); run bookkeeping is
the ledger's job.

Log events: CATALOG_DB_UPSERT_START, CATALOG_DB_UPSERT_SUCCESS,
CATALOG_DB_UPSERT_FAILED and CATALOG_DB_RELATION_REPLACED.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Sequence, Type

from sqlalchemy import delete, insert as plain_insert
from sqlalchemy.orm import Session

from cinecatalog.persistence.tables import (
    Base,
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
from cinecatalog.persistence.models import (
    ContentBundle,
    ContentRecord,
    ContentTypeRecord,
    LookupRecord,
    RatingRecord,
    SeasonRecord,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UpsertCounts:
    """
    Input rows written per table for one content item. Driver rowcounts are
    not used: MySQL reports 2 for an updated duplicate, SQLite 1.
    """

    contents: int
    genres: int
    countries: int
    voice_authors: int
    ratings: int
    seasons: int


@dataclass(frozen=True)
class _Relation:
    lookup: Type[Base]
    join: Type[Base]
    fk_column: str
    with_slug: bool


GENRES = _Relation(Genre, ContentGenre, "genre_id", with_slug=True)
COUNTRIES = _Relation(Country, ContentCountry, "country_id", with_slug=True)
VOICE_AUTHORS = _Relation(VoiceAuthor, ContentVoiceAuthor, "voice_author_id", with_slug=False)


class CatalogStore:
    """
    Repository for persisting extracted catalog records.

    Intended use:
        with db.get_session() as session:
            with session.begin():
                store = CatalogStore(session)
                counts = store.upsert_bundle(bundle, synced_at=now, run_id=run_id)
    """

    def __init__(self, session: Session, *, chunk_size: int = 500) -> None:
        """
        Args:
            session: SQLAlchemy Session bound to the catalog database.
            chunk_size: Max rows per upsert statement to avoid parameter limits.
        """
        self._session = session
        self._chunk_size = chunk_size

    def upsert_bundle(
        self,
        bundle: ContentBundle,
        *,
        synced_at: datetime,
        run_id: str | None = None,
    ) -> UpsertCounts:
        """
        Write a content item and all of its relations.

        The content type goes first so the content row never points at a type
        that was not written in this snapshot.
        """
        content_id = bundle.content.id

        self.upsert_content_type(bundle.content_type)
        contents_n = self.upsert_content(bundle.content, synced_at=synced_at, run_id=run_id)

        genres_n = self.replace_relation(content_id, GENRES, bundle.genres)
        countries_n = self.replace_relation(content_id, COUNTRIES, bundle.countries)
        voice_n = self.replace_relation(content_id, VOICE_AUTHORS, bundle.voice_authors)

        ratings_n = self.upsert_ratings(content_id, bundle.ratings)
        seasons_n = self.upsert_seasons(content_id, bundle.seasons)

        return UpsertCounts(
            contents=contents_n,
            genres=genres_n,
            countries=countries_n,
            voice_authors=voice_n,
            ratings=ratings_n,
            seasons=seasons_n,
        )

    def upsert_content_type(self, record: ContentTypeRecord) -> int:
        """
        Upsert a content type by (id).
        """
        return self._bulk_upsert(
            model=ContentType,
            rows=[record.model_dump()],
            conflict_cols=("id",),
        )

    def upsert_content(
        self,
        record: ContentRecord,
        *,
        synced_at: datetime,
        run_id: str | None = None,
    ) -> int:
        """
        Upsert a content row by (id). Every mutable column is refreshed;
        created_at keeps its first value.
        """
        return self._bulk_upsert(
            model=Content,
            rows=[self._row_content(record, synced_at, run_id)],
            conflict_cols=("id",),
            immutable_cols=("created_at",),
        )

    def replace_relation(
        self,
        content_id: int,
        relation: _Relation,
        records: Sequence[LookupRecord] | None,
    ) -> int:
        """
        Replace the join rows of one many-to-many relation.

        None leaves the stored rows untouched (relation not sent upstream);
        an empty list removes them all.
        """
        if records is None:
            return 0

        lookup_rows = [self._row_lookup(r, relation.with_slug) for r in records]
        self._bulk_upsert(model=relation.lookup, rows=lookup_rows, conflict_cols=("id",))

        join_table = relation.join.__table__
        self._session.execute(
            delete(join_table).where(join_table.c.content_id == content_id)
        )

        join_rows = [{"content_id": content_id, relation.fk_column: r.id} for r in records]
        for chunk in _chunks(join_rows, self._chunk_size):
            self._session.execute(plain_insert(join_table).values(chunk))

        logger.debug(
            "CATALOG_DB_RELATION_REPLACED table=%s content_id=%s rows=%d",
            join_table.name,
            content_id,
            len(join_rows),
        )
        return len(join_rows)

    def upsert_ratings(self, content_id: int, records: Sequence[RatingRecord]) -> int:
        """
        Upsert ratings by (content_id, source).
        """
        rows = [{"content_id": content_id, **r.model_dump()} for r in records]
        return self._bulk_upsert(
            model=Rating,
            rows=rows,
            conflict_cols=("content_id", "source"),
        )

    def upsert_seasons(self, content_id: int, records: Sequence[SeasonRecord]) -> int:
        """
        Upsert season episode counts by (content_id, season_number).
        """
        rows = [{"content_id": content_id, **r.model_dump()} for r in records]
        return self._bulk_upsert(
            model=ContentSeason,
            rows=rows,
            conflict_cols=("content_id", "season_number"),
        )

    # -------------------------------------------------------------------------
    # Normalization: Pydantic record -> insert/update row
    # -------------------------------------------------------------------------

    @staticmethod
    def _row_content(
        r: ContentRecord, synced_at: datetime, run_id: str | None
    ) -> dict[str, Any]:
        """
        Convert a content record into a DB row dict.

        Missing upstream timestamps fall back to the sync time so list pages
        sorted by created_at/updated_at stay stable.
        """
        d = r.model_dump()
        d["created_at"] = d["created_at"] or synced_at
        d["updated_at"] = d["updated_at"] or synced_at
        d["synced_at"] = synced_at
        d["last_seen_run_id"] = run_id
        return d

    @staticmethod
    def _row_lookup(r: LookupRecord, with_slug: bool) -> dict[str, Any]:
        d = {"id": r.id, "name": r.name}
        if with_slug:
            d["slug"] = r.slug
        return d

    # -------------------------------------------------------------------------
    # Upsert implementation (with monitoring logs)
    # -------------------------------------------------------------------------

    def _dialect(self) -> str:
        return self._session.get_bind().dialect.name

    def _build_upsert(self, table, chunk, conflict_cols, update_cols):
        """
        Return a dialect-specific INSERT that updates `update_cols` on key conflict.
        """
        dialect = self._dialect()

        if dialect == "mysql":
            from sqlalchemy.dialects.mysql import insert as ins

            stmt = ins(table).values(chunk)
            if not update_cols:
                # ON DUPLICATE KEY UPDATE needs at least one assignment
                return stmt.prefix_with("IGNORE")
            return stmt.on_duplicate_key_update(
                {name: stmt.inserted[name] for name in update_cols}
            )

        if dialect in ("sqlite", "postgresql"):
            if dialect == "sqlite":
                from sqlalchemy.dialects.sqlite import insert as ins
            else:
                from sqlalchemy.dialects.postgresql import insert as ins

            stmt = ins(table).values(chunk)
            conflict_elements = [table.c[c] for c in conflict_cols]
            if not update_cols:
                return stmt.on_conflict_do_nothing(index_elements=conflict_elements)
            return stmt.on_conflict_do_update(
                index_elements=conflict_elements,
                set_={name: getattr(stmt.excluded, name) for name in update_cols},
            )

        raise NotImplementedError(
            f"Upsert is only implemented for MySQL, PostgreSQL and SQLite. dialect={dialect}"
        )

    def _bulk_upsert(
        self,
        *,
        model: Type[Base],
        rows: list[dict[str, Any]],
        conflict_cols: tuple[str, ...],
        immutable_cols: tuple[str, ...] = (),
    ) -> int:
        """
        Bulk upsert rows into the table mapped by `model`.

        Only columns present in the rows are updated, so server-generated
        columns (e.g. ratings.id) are never overwritten.

        Monitoring:
            Emits structured logs with table name, row count, chunk count, dialect,
            and total DB latency.
        """
        if not rows:
            return 0

        table = model.__table__
        table_name = getattr(model, "__tablename__", table.name)
        dialect = self._dialect()

        skip = set(conflict_cols) | set(immutable_cols)
        update_cols = [name for name in rows[0] if name not in skip]

        chunks = list(_chunks(rows, self._chunk_size))
        chunk_count = len(chunks)

        logger.debug(
            "CATALOG_DB_UPSERT_START table=%s rows=%d chunks=%d dialect=%s",
            table_name,
            len(rows),
            chunk_count,
            dialect,
        )

        start = time.perf_counter()
        try:
            total = 0
            for chunk in chunks:
                stmt = self._build_upsert(table, chunk, conflict_cols, update_cols)
                self._session.execute(stmt)
                total += len(chunk)

            latency_ms = (time.perf_counter() - start) * 1000.0
            logger.debug(
                "CATALOG_DB_UPSERT_SUCCESS table=%s rows=%d chunks=%d latency_ms=%.2f dialect=%s",
                table_name,
                total,
                chunk_count,
                latency_ms,
                dialect,
            )
            return total

        except Exception:
            latency_ms = (time.perf_counter() - start) * 1000.0
            logger.error(
                "CATALOG_DB_UPSERT_FAILED table=%s rows=%d chunks=%d latency_ms=%.2f dialect=%s conflict_cols=%s",
                table_name,
                len(rows),
                chunk_count,
                latency_ms,
                dialect,
                conflict_cols,
            )
            raise


def _chunks(items: list[dict[str, Any]], size: int) -> Iterable[list[dict[str, Any]]]:
    """
    Yield list chunks of at most `size` items.
    """
    for i in range(0, len(items), size):
        yield items[i : i + size]
