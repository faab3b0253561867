"""Request bodies for the filter endpoint."""

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _Body(BaseModel):
    model_config = ConfigDict(extra="ignore")


class YearRange(_Body):
    min: Optional[int] = Field(default=None, ge=1900, le=2100)
    max: Optional[int] = Field(default=None, ge=1900, le=2100)


class DurationRange(_Body):
    min: Optional[int] = Field(default=None, ge=1)
    max: Optional[int] = Field(default=None, ge=1)


class RatingFilter(_Body):
    source: Optional[Literal["imdb", "kinopoisk", "tmdb"]] = None
    min: Optional[float] = Field(default=None, ge=0, le=10)
    max: Optional[float] = Field(default=None, ge=0, le=10)


class Filters(_Body):
    genres: Optional[List[int]] = None
    countries: Optional[List[int]] = None
    voice_authors: Optional[List[int]] = None
    content_types: Optional[List[int]] = None
    years: Optional[YearRange] = None
    duration: Optional[DurationRange] = None
    rating: Optional[RatingFilter] = None
    is_lgbt: Optional[bool] = None


class Search(_Body):
    query: Optional[str] = None
    fields: Optional[List[str]] = None

    @field_validator("query")
    @classmethod
    def _strip(cls, v):
        return v.strip() if v is not None else v


class Sort(_Body):
    field: Literal["year", "created_at", "updated_at", "title"] = "year"
    order: Literal["ASC", "DESC"] = "DESC"


class Pagination(_Body):
    page: int = Field(default=1, ge=1)
    per_page: int = Field(default=20, ge=1, le=100)


class FilterRequest(_Body):
    """
    POST /api/filter body.

        {"filters": {...}, "search": {...}, "sort": {...}, "pagination": {...}}
    """

    filters: Filters = Field(default_factory=Filters)
    search: Optional[Search] = None
    sort: Optional[Sort] = None
    pagination: Optional[Pagination] = None

    def to_service_filters(self) -> dict:
        """Flatten into the dict ContentService.get_filtered_content expects."""
        filters = self.filters.model_dump(exclude_none=True)
        if self.search is not None:
            filters["search"] = self.search.model_dump(exclude_none=True)
        if self.sort is not None:
            filters["sort"] = self.sort.model_dump()
        if self.pagination is not None:
            filters["pagination"] = self.pagination.model_dump()
        return filters
