"""
SQLAlchemy ORM models for the movie/series catalog.

This module provides SQLAlchemy 2.0 typed declarative models that mirror the
normalized records in `models.py`.

Storage notes:
- `contents.id` is the upstream id, never generated locally.
- Cast and crew columns are comma-delimited text.
- Join tables use composite primary keys so a pair can exist only once.
- Upsert keys are represented as primary keys or unique constraints.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    UniqueConstraint,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """
    Declarative base class for all ORM models in this module.

    Subclassing `DeclarativeBase` enables SQLAlchemy 2.0 typed mappings via
    `Mapped[...]` and `mapped_column(...)`.
    """


class ContentType(Base):
    """
    Category of a content item (movie, series, anime, ...).

    Primary key:
    - `id` (upstream id)
    """

    __tablename__ = "content_types"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    # NULL when upstream sends no slug; NULLs do not collide on the unique index
    slug: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)


class Content(Base):
    """
    Catalog item.

    Purpose:
    - Stores everything shown on list and detail pages.
    - Tracks sync recency (`synced_at`) and the last sync run that touched the
      row (`last_seen_run_id`).

    Primary key:
    - `id` (upstream id)
    """

    __tablename__ = "contents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)

    # Not enforced as a foreign key: orphaned type ids are tolerated
    content_type_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    original_title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    poster_url: Mapped[str | None] = mapped_column(String(500), nullable=True)

    year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    end_year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    duration: Mapped[int | None] = mapped_column(Integer, nullable=True)

    age_restriction: Mapped[str | None] = mapped_column(String(20), nullable=True)

    cast: Mapped[str | None] = mapped_column(Text, nullable=True)
    directors: Mapped[str | None] = mapped_column(Text, nullable=True)
    screenwriters: Mapped[str | None] = mapped_column(Text, nullable=True)
    producers: Mapped[str | None] = mapped_column(Text, nullable=True)
    operators: Mapped[str | None] = mapped_column(Text, nullable=True)
    composers: Mapped[str | None] = mapped_column(Text, nullable=True)
    artists: Mapped[str | None] = mapped_column(Text, nullable=True)
    editors: Mapped[str | None] = mapped_column(Text, nullable=True)
    audio_tracks: Mapped[str | None] = mapped_column(Text, nullable=True)

    video_quality: Mapped[str | None] = mapped_column(String(50), nullable=True)
    seasons_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    episodes_count: Mapped[int | None] = mapped_column(Integer, nullable=True)

    kinopoisk_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    imdb_id: Mapped[str | None] = mapped_column(String(50), nullable=True)

    is_lgbt: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    player_url: Mapped[str | None] = mapped_column(String(500), nullable=True)

    premiere_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_season_premiere_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    exclusive_start_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    exclusive_end_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    synced_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_seen_run_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    __table_args__ = (
        Index("ix_contents_content_type_id", "content_type_id"),
        Index("ix_contents_year", "year"),
        Index("ix_contents_title", "title"),
        Index("ix_contents_created_at", "created_at"),
    )


class Genre(Base):
    __tablename__ = "genres"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    slug: Mapped[str | None] = mapped_column(String(255), nullable=True)


class Country(Base):
    __tablename__ = "countries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    slug: Mapped[str | None] = mapped_column(String(255), nullable=True)


class VoiceAuthor(Base):
    __tablename__ = "voice_authors"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")


class ContentGenre(Base):
    __tablename__ = "content_genres"

    content_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("contents.id", ondelete="CASCADE"), primary_key=True
    )
    genre_id: Mapped[int] = mapped_column(Integer, primary_key=True)

    __table_args__ = (Index("ix_content_genres_genre_id", "genre_id"),)


class ContentCountry(Base):
    __tablename__ = "content_countries"

    content_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("contents.id", ondelete="CASCADE"), primary_key=True
    )
    country_id: Mapped[int] = mapped_column(Integer, primary_key=True)

    __table_args__ = (Index("ix_content_countries_country_id", "country_id"),)


class ContentVoiceAuthor(Base):
    __tablename__ = "content_voice_authors"

    content_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("contents.id", ondelete="CASCADE"), primary_key=True
    )
    voice_author_id: Mapped[int] = mapped_column(Integer, primary_key=True)

    __table_args__ = (Index("ix_content_voice_authors_voice_author_id", "voice_author_id"),)


class Rating(Base):
    """
    Rating of a content item from one source (imdb, kinopoisk, tmdb, ...).

    Upsert key:
    - (`content_id`, `source`)
    """

    __tablename__ = "ratings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    content_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("contents.id", ondelete="CASCADE"), nullable=False
    )
    source: Mapped[str] = mapped_column(String(50), nullable=False)
    rating: Mapped[float | None] = mapped_column(Float, nullable=True)
    votes: Mapped[int | None] = mapped_column(Integer, nullable=True)

    __table_args__ = (
        UniqueConstraint("content_id", "source", name="uq_ratings_content_source"),
    )


class ContentSeason(Base):
    """
    Episode count per season.

    Composite primary key (upsert key):
    - (`content_id`, `season_number`)
    """

    __tablename__ = "content_seasons"

    content_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("contents.id", ondelete="CASCADE"), primary_key=True
    )
    season_number: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    episodes_count: Mapped[int | None] = mapped_column(Integer, nullable=True)


class SyncRun(Base):
    """
    Run ledger for catalog synchronization.

    Purpose
    - Persist a single evolving row per sync run.
    - Provide a resumable checkpoint via `last_page`.
    - Track run lifecycle and per-item outcome counters.

    Core invariant
    - `last_page` is advanced only after every item of that page has been
      attempted (each in its own transaction).
    """

    __tablename__ = "sync_runs"

    run_id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        doc="Unique run identifier (primary key).",
    )

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="started",
        doc="Run status string: started | running | completed | failed.",
    )
    started_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        doc="UTC timestamp when the run row was created.",
    )
    ended_at: Mapped[datetime | None] = mapped_column(
        DateTime,
        nullable=True,
        doc="UTC timestamp when the run completed or failed (NULL while active).",
    )
    last_error: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        doc="Last error message captured for the run (NULL if none).",
    )

    total_pages: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
        doc="Page count reported by the first fetched page.",
    )
    last_page: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        doc="Last fully processed page; 0 means start from page 1.",
    )
    pages_processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    items_synced: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    items_skipped: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    items_failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (Index("ix_sync_runs_status_started", "status", "started_at"),)
