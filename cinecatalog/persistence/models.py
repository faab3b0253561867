"""
Normalized catalog records extracted from the upstream catalog API.

These models sit between the raw upstream JSON and the database rows written
by the catalog store.

Design notes:
- Records carry only what the catalog schema stores; unknown upstream fields are dropped.
- Relation lists are Optional: None means "upstream did not send the relation"
  and leaves stored join rows untouched; an empty list clears them.
- Upstream dates arrive either as "DD.MM.YYYY HH:MM:SS" or ISO-8601.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

UPSTREAM_DATE_FORMATS = ("%d.%m.%Y %H:%M:%S", "%d.%m.%Y %H:%M", "%d.%m.%Y")


def parse_upstream_datetime(value):
    """
    Parse an upstream timestamp. Empty values become None.

    Raises ValueError for non-empty strings in an unknown format so the item is
    rejected instead of silently losing the date.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str):
        raise ValueError(f"unsupported datetime value: {value!r}")

    text = value.strip()
    for fmt in UPSTREAM_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue

    parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    # Columns are naive DateTime, keep everything naive
    return parsed.replace(tzinfo=None)


class ContentTypeRecord(BaseModel):
    """
    Upsert key: id
    """

    model_config = ConfigDict(extra="ignore")

    id: int
    name: str = ""
    slug: str | None = None


class LookupRecord(BaseModel):
    """
    Genre, country or voice author. Upsert key: id
    """

    model_config = ConfigDict(extra="ignore")

    id: int
    name: str = ""
    slug: str | None = None


class RatingRecord(BaseModel):
    """
    Upsert key: (content_id, source)
    """

    model_config = ConfigDict(extra="ignore")

    source: str = Field(min_length=1, max_length=50)
    rating: float | None = None
    votes: int | None = None


class SeasonRecord(BaseModel):
    """
    Upsert key: (content_id, season_number)
    """

    model_config = ConfigDict(extra="ignore")

    season_number: int
    episodes_count: int | None = None


class ContentRecord(BaseModel):
    """
    Upsert key: id (external, stable)
    """

    model_config = ConfigDict(extra="forbid")

    id: int
    content_type_id: int

    title: str = Field(min_length=1)
    original_title: str | None = None
    description: str | None = None
    poster_url: str | None = None

    year: int
    end_year: int | None = None
    duration: int

    age_restriction: str | None = None

    # Cast and crew as comma-delimited text
    cast: str | None = None
    directors: str | None = None
    screenwriters: str | None = None
    producers: str | None = None
    operators: str | None = None
    composers: str | None = None
    artists: str | None = None
    editors: str | None = None
    audio_tracks: str | None = None

    video_quality: str | None = None
    seasons_count: int | None = None
    episodes_count: int | None = None

    kinopoisk_id: int | None = None
    imdb_id: str | None = None

    is_lgbt: bool = False
    player_url: str | None = None

    premiere_at: datetime | None = None
    last_season_premiere_at: datetime | None = None
    exclusive_start_at: datetime | None = None
    exclusive_end_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator(
        "premiere_at",
        "last_season_premiere_at",
        "exclusive_start_at",
        "exclusive_end_at",
        "created_at",
        "updated_at",
        mode="before",
    )
    @classmethod
    def _parse_dates(cls, value):
        return parse_upstream_datetime(value)


class ContentBundle(BaseModel):
    """
    Everything written for one content item inside one transaction.
    """

    model_config = ConfigDict(extra="forbid")

    content: ContentRecord
    content_type: ContentTypeRecord

    genres: list[LookupRecord] | None = None
    countries: list[LookupRecord] | None = None
    voice_authors: list[LookupRecord] | None = None

    ratings: list[RatingRecord] = Field(default_factory=list)
    seasons: list[SeasonRecord] = Field(default_factory=list)
