"""Book search and cache maintenance endpoints for the Library Book Finder API."""

from fastapi import APIRouter, HTTPException, Depends, Query, Request
from typing import NoReturn, Optional
import datetime
import logging

from ..config import CacheSettings
from ..core.cache_manager import BookCacheManager, CacheUnavailableError, normalize_query
from ..core.catalog_api import CatalogApiError, search_catalog
from ..core import cache_stats
from ..db.models import MAX_QUERY_LENGTH
from ..schemas import (
    CacheInfo,
    CacheStatusResponse,
    CleanupResponse,
    CleanupStatistics,
    CleanupSummary,
    SearchRequest,
    SearchResponse,
    StatsResponse,
)

router = APIRouter(tags=["books"])

logger = logging.getLogger(__name__)


def get_cache_manager(request: Request) -> BookCacheManager:
    return request.app.state.cache_manager


def get_settings(request: Request) -> CacheSettings:
    return request.app.state.settings


def raise_http_error(e: Exception, action: str) -> NoReturn:
    """Translate a failure into the HTTP error the caller should see."""
    if isinstance(e, HTTPException):
        raise e
    if isinstance(e, CacheUnavailableError):
        logger.error(f"Cache unavailable while {action}: {e}")
        raise HTTPException(status_code=503, detail="Book cache is temporarily unavailable")
    if isinstance(e, CatalogApiError):
        logger.error(f"Catalog error while {action}: {e}")
        raise HTTPException(status_code=502, detail="Library catalog is not reachable")
    logger.error(f"Unexpected error while {action}: {e}", exc_info=True)
    raise HTTPException(status_code=500, detail=f"Internal server error while {action}")


@router.post("/books/search", response_model=SearchResponse)
def search_books(
    payload: SearchRequest,
    cache_manager: BookCacheManager = Depends(get_cache_manager),
    settings: CacheSettings = Depends(get_settings)
):
    """
    Search for books, serving fresh cached results when available.
    On a cache miss the external catalog is queried and its results cached.
    """
    search_term = (payload.search_term or "").strip()
    if not search_term:
        raise HTTPException(status_code=400, detail="Search term is required")
    if len(normalize_query(search_term)) > MAX_QUERY_LENGTH:
        raise HTTPException(
            status_code=400,
            detail=f"Search term must be at most {MAX_QUERY_LENGTH} characters"
        )

    try:
        cached_books = cache_manager.search_in_cache(search_term)
        if cached_books:
            cache_manager.count_search(search_term, len(cached_books))
            return SearchResponse(
                books=cached_books,
                search_term=search_term,
                source="cache",
                cache_hit=True,
                response_time_ms=0
            )

        logger.info(f"Cache miss for '{search_term}', querying external catalog")
        result = search_catalog(search_term, settings)
        if not result.books:
            raise HTTPException(
                status_code=404,
                detail=f"No books found for '{search_term}' at {settings.library_name}"
            )

        cache_manager.record_search(search_term, result.books, source_url=result.search_url)
        return SearchResponse(
            books=result.books,
            search_term=search_term,
            source="external",
            cache_hit=False,
            response_time_ms=result.response_time_ms,
            final_url=result.search_url,
            region=settings.library_region,
            comuna=settings.library_comuna
        )
    except Exception as e:
        raise_http_error(e, f"searching for '{search_term}'")


@router.get("/books/stats", response_model=StatsResponse, response_model_exclude_none=True)
@router.get("/cache/stats", response_model=StatsResponse, response_model_exclude_none=True)
def get_stats(
    include_popular: Optional[str] = Query(None, alias="includePopular"),
    popular_limit: Optional[str] = Query(None, alias="popularLimit"),
    cache_manager: BookCacheManager = Depends(get_cache_manager),
    settings: CacheSettings = Depends(get_settings)
):
    """
    Get cache statistics with health flags and derived metrics.
    With includePopular=true also returns the most popular searches.
    """
    try:
        stats = cache_manager.get_cache_stats()
        response = StatsResponse(
            timestamp=datetime.datetime.now(datetime.timezone.utc),
            cache=cache_stats.build_cache_overview(stats, settings),
            metrics=cache_stats.build_cache_metrics(stats, settings)
        )

        if (include_popular or "").lower() == "true":
            popular = cache_manager.get_popular_searches(popular_limit)
            response.popular_searches = cache_stats.with_average_results(popular)
            response.search_analytics = cache_stats.build_search_analytics(popular)

        return response
    except Exception as e:
        raise_http_error(e, "reading cache statistics")


@router.post("/books/cache/cleanup", response_model=CleanupResponse)
@router.post("/cache/cleanup", response_model=CleanupResponse)
def run_cleanup(cache_manager: BookCacheManager = Depends(get_cache_manager)):
    """Run a cache cleanup and report statistics before and after."""
    try:
        before = cache_manager.get_cache_stats()
        removed = cache_manager.cleanup_cache()
        after = cache_manager.get_cache_stats()
    except Exception as e:
        raise_http_error(e, "cleaning up the cache")

    logger.info(
        f"Cleanup finished: {before.total_books} -> {after.total_books} books "
        f"({removed.removed} expired, {removed.old_removed} old)"
    )
    return CleanupResponse(
        message="Cache cleanup completed",
        statistics=CleanupStatistics(before=before, removed=removed, after=after),
        cleanup_summary=CleanupSummary(
            expired_records_removed=removed.removed,
            old_records_removed=removed.old_removed,
            total_removed=removed.total_removed,
            books_remaining=after.total_books
        )
    )


@router.get("/books/cache/cleanup", response_model=CacheStatusResponse)
@router.get("/cache/cleanup", response_model=CacheStatusResponse)
def get_cleanup_status(
    cache_manager: BookCacheManager = Depends(get_cache_manager),
    settings: CacheSettings = Depends(get_settings)
):
    """Get cache statistics and whether a cleanup is advisable, without cleaning."""
    try:
        stats = cache_manager.get_cache_stats()
    except Exception as e:
        raise_http_error(e, "reading cache status")

    return CacheStatusResponse(
        statistics=stats,
        cache_info=CacheInfo(
            **stats.model_dump(),
            cache_healthy=cache_stats.is_cache_healthy(stats.total_books, settings),
            needs_cleanup=cache_stats.needs_cleanup(stats.total_books, settings)
        )
    )
