# Deterministic extraction from one raw upstream content item into a ContentBundle:
# ContentRecord + ContentTypeRecord
# genre / country / voice author LookupRecords
# RatingRecords and SeasonRecords
# No persistence. No HTTP. Pure mapping.

from typing import Any

from cinecatalog.persistence.models import (
    ContentBundle,
    ContentRecord,
    ContentTypeRecord,
    LookupRecord,
    RatingRecord,
    SeasonRecord,
)

CREW_FIELDS = {
    "cast": "cast",
    "directors": "directors",
    "screenwriters": "screenwriters",
    "producers": "producers",
    "operators": "operators",
    "composers": "composers",
    "artists": "artists",
    "editors": "editors",
    "audio_tracks": "audioTracks",
}


def validate_content(raw: Any) -> str | None:
    """
    Check the fields an item cannot be stored without.

    Returns:
        A short reason string when the item must be skipped, otherwise None.
    """
    if not isinstance(raw, dict):
        return "not an object"
    if not raw.get("id"):
        return "missing id"
    if not raw.get("title"):
        return "missing title"
    if not raw.get("year"):
        return "missing year"
    # 0 is a legitimate duration for announced titles
    if raw.get("duration") is None:
        return "missing duration"
    content_type = raw.get("contentType")
    if not isinstance(content_type, dict) or not content_type.get("id"):
        return "missing contentType"
    return None


def _join_names(value: Any) -> str | None:
    """
    Collapse a crew/cast value into comma-delimited text.

    Upstream sends either plain strings, lists of strings, or lists of
    {"name": ...} objects depending on the endpoint.
    """
    if value is None:
        return None
    if isinstance(value, str):
        return value or None
    if isinstance(value, list):
        names = []
        for item in value:
            if isinstance(item, dict):
                item = item.get("name")
            if item:
                names.append(str(item).strip())
        return ", ".join(n for n in names if n) or None
    return str(value)


def _map_content(raw: dict) -> ContentRecord:
    """
    Maps the camelCase upstream item onto the contents row.
    """
    crew = {column: _join_names(raw.get(key)) for column, key in CREW_FIELDS.items()}

    return ContentRecord(
        id=raw["id"],
        content_type_id=raw["contentType"]["id"],
        title=raw["title"],
        original_title=raw.get("originalTitle"),
        description=raw.get("description"),
        poster_url=raw.get("posterUrl") or None,
        year=raw["year"],
        end_year=raw.get("endYear"),
        duration=raw["duration"],
        age_restriction=(
            str(raw["ageRestriction"]) if raw.get("ageRestriction") is not None else None
        ),
        video_quality=raw.get("videoQuality"),
        seasons_count=raw.get("seasonsCount"),
        episodes_count=raw.get("episodesCount"),
        kinopoisk_id=raw.get("kinopoiskId") or None,
        imdb_id=raw.get("imdbId") or None,
        is_lgbt=bool(raw.get("isLgbt")),
        player_url=raw.get("playerUrl") or None,
        premiere_at=raw.get("premiereAt"),
        last_season_premiere_at=raw.get("lastSeasonPremiereAt"),
        exclusive_start_at=raw.get("exclusiveStartAt"),
        exclusive_end_at=raw.get("exclusiveEndAt"),
        created_at=raw.get("createdAt"),
        updated_at=raw.get("updatedAt"),
        **crew,
    )


def _map_lookups(items: Any) -> list[LookupRecord] | None:
    """
    Maps a relation list. None stays None (relation absent upstream).

    Duplicated ids are collapsed, first occurrence wins. Anything other than
    a list raises ValueError.
    """
    if items is None:
        return None
    if not isinstance(items, list):
        raise ValueError(f"relation must be a list, got {type(items).__name__}")

    records: dict[int, LookupRecord] = {}
    for item in items:
        if not isinstance(item, dict) or not item.get("id"):
            continue
        record = LookupRecord(
            id=item["id"],
            name=item.get("name") or "",
            slug=item.get("slug"),
        )
        records.setdefault(record.id, record)
    return list(records.values())


def _map_ratings(raw_ratings: Any) -> list[RatingRecord]:
    """
    Accepts both shapes seen upstream:
    - {"imdb": {"rating": 7.4, "votes": 1200}, ...}
    - [{"source": "imdb", "rating": 7.4, "votes": 1200}, ...]
    """
    if not raw_ratings:
        return []

    if isinstance(raw_ratings, dict):
        pairs = raw_ratings.items()
    elif not isinstance(raw_ratings, list):
        raise ValueError(f"ratings must be an object or a list, got {type(raw_ratings).__name__}")
    else:
        pairs = [
            (r.get("source"), r) for r in raw_ratings if isinstance(r, dict)
        ]

    records = {}
    for source, data in pairs:
        if not source or not isinstance(data, dict):
            continue
        records[source] = RatingRecord(
            source=source,
            rating=data.get("rating"),
            votes=data.get("votes"),
        )
    return list(records.values())


def _map_seasons(episodes_by_season: Any) -> list[SeasonRecord]:
    """
    Flattens {"1": 10, "2": 8} into SeasonRecords, skipping non-numeric keys.
    """
    if not isinstance(episodes_by_season, dict):
        return []

    records = []
    for season, episodes in episodes_by_season.items():
        try:
            season_number = int(season)
        except (TypeError, ValueError):
            continue
        if episodes is None:
            continue
        records.append(SeasonRecord(season_number=season_number, episodes_count=episodes))
    return sorted(records, key=lambda r: r.season_number)


def extract_content(raw: dict) -> ContentBundle:
    """
    Primary entry point for transforming one raw upstream item into records.

    The caller is expected to run validate_content() first. Malformed values
    that slip past it raise ValueError (pydantic.ValidationError included).

    Args:
        raw: A single item of the page's "data" list.

    Returns:
        ContentBundle with the content row and all of its relations.
    """
    content_type = raw["contentType"]
    voice_authors = raw.get("voiceAuthorsV2")
    if voice_authors is None:
        voice_authors = raw.get("voiceAuthors")

    return ContentBundle(
        content=_map_content(raw),
        content_type=ContentTypeRecord(
            id=content_type["id"],
            name=content_type.get("name") or "",
            slug=content_type.get("slug") or None,
        ),
        genres=_map_lookups(raw.get("genres")),
        countries=_map_lookups(raw.get("countries")),
        voice_authors=_map_lookups(voice_authors),
        ratings=_map_ratings(raw.get("ratings")),
        seasons=_map_seasons(raw.get("episodesBySeason")),
    )
