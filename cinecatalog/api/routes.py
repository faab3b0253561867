"""
HTTP routes under /api.

Handlers are plain `def` so FastAPI runs them in its threadpool; the
service below uses blocking SQLAlchemy sessions.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from cinecatalog.api.errors import NotFoundError, ValidationError
from cinecatalog.api.schemas import FilterRequest
from cinecatalog.services.content import ContentService

router = APIRouter(prefix="/api")


def get_content_service(request: Request) -> ContentService:
    return request.app.state.content_service


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------


@router.get("/search")
def search_by_title(
    title: Optional[str] = None,
    limit: int = Query(20, ge=1),
    offset: int = Query(0, ge=0),
    exact: bool = False,
    service: ContentService = Depends(get_content_service),
):
    if not title or not title.strip():
        raise ValidationError("The title query parameter is required")

    results = service.search_by_title(title, limit=limit, offset=offset, exact=exact)
    if not results:
        return JSONResponse(
            status_code=404,
            content={"success": False, "message": "No content found with this title", "data": []},
        )
    return {"success": True, "count": len(results), "data": results}


@router.get("/search/quick")
def quick_search(
    query: Optional[str] = None,
    limit: int = Query(10, ge=1, le=100),
    service: ContentService = Depends(get_content_service),
):
    results = service.quick_search(query or "", limit=limit)
    return {"success": True, "data": results, "meta": {"total": len(results)}}


@router.get("/advanced-search")
def advanced_search(
    title: Optional[str] = None,
    year: Optional[int] = None,
    min_year: Optional[int] = None,
    max_year: Optional[int] = None,
    content_type_id: Optional[int] = None,
    has_poster: bool = False,
    limit: int = Query(20, ge=1),
    offset: int = Query(0, ge=0),
    service: ContentService = Depends(get_content_service),
):
    results = service.advanced_search(
        title=title,
        year=year,
        min_year=min_year,
        max_year=max_year,
        content_type_id=content_type_id,
        has_poster=has_poster,
        limit=limit,
        offset=offset,
    )
    return {"success": True, "count": len(results), "data": results}


@router.post("/filter")
def filter_content(
    body: FilterRequest,
    service: ContentService = Depends(get_content_service),
):
    result = service.get_filtered_content(body.to_service_filters())
    return {"success": True, "data": result["data"], "meta": result["meta"]}


@router.get("/filters/available")
def available_filters(service: ContentService = Depends(get_content_service)):
    return {"success": True, "data": service.get_available_filters()}


# ---------------------------------------------------------------------------
# Content
# ---------------------------------------------------------------------------


@router.get("/content/{content_id}")
def get_content(content_id: int, service: ContentService = Depends(get_content_service)):
    content = service.get_content_by_id(content_id)
    if content is None:
        raise NotFoundError("Content not found")
    return {"success": True, "data": content}


@router.get("/content/{content_id}/similar")
def get_similar(
    content_id: int,
    limit: int = Query(10, ge=1, le=100),
    service: ContentService = Depends(get_content_service),
):
    similar = service.get_similar_content(content_id, limit=limit)
    return {"success": True, "data": similar, "meta": {"total": len(similar)}}


@router.get("/popular")
def popular(
    limit: int = Query(10, ge=1),
    service: ContentService = Depends(get_content_service),
):
    results = service.get_popular(limit)
    return {"success": True, "count": len(results), "data": results}


@router.get("/stats")
def stats(service: ContentService = Depends(get_content_service)):
    return {"success": True, "data": service.get_content_stats()}


# ---------------------------------------------------------------------------
# Content types
# ---------------------------------------------------------------------------


@router.get("/content-types")
def list_content_types(service: ContentService = Depends(get_content_service)):
    return {"success": True, "data": service.list_content_types()}


@router.get("/content-types/{slug}")
def get_content_type(slug: str, service: ContentService = Depends(get_content_service)):
    content_type = service.get_content_type(slug)
    if content_type is None:
        raise NotFoundError("Content type not found")
    return {"success": True, "data": content_type}


@router.get("/content-types/{slug}/contents")
def get_contents_by_type(
    slug: str,
    limit: int = Query(20, ge=1),
    offset: int = Query(0, ge=0),
    year: Optional[int] = None,
    sort_by: str = "year",
    sort_order: str = "desc",
    service: ContentService = Depends(get_content_service),
):
    result = service.get_contents_by_type(
        slug, limit=limit, offset=offset, year=year, sort_by=sort_by, sort_order=sort_order
    )
    if result is None:
        raise NotFoundError("Content type not found")
    return {
        "success": True,
        "data": result["data"],
        "total": result["total"],
        "contentType": result["content_type"],
    }
