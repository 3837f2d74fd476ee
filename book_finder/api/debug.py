"""Diagnostics endpoint for the book cache store."""

from fastapi import APIRouter, Request
from sqlalchemy.exc import SQLAlchemyError
from typing import List
import datetime
import logging

from ..config import DEFAULT_DATABASE_URL
from ..db import crud
from ..db.session import Database
from ..schemas import DebugCache, DebugDatabase, DebugResponse

router = APIRouter(prefix="/debug", tags=["debug"])

logger = logging.getLogger(__name__)


def generate_recommendations(database: DebugDatabase, cache: DebugCache) -> List[str]:
    recommendations = []
    if not database.configured:
        recommendations.append("DATABASE_URL is not set; using the built-in default")
    if not database.connection:
        recommendations.append("Cannot connect to the database")
    if cache.error:
        recommendations.append(f"Cache queries failed: {cache.error}")
    if not recommendations:
        recommendations.append("Everything looks fine")
    return recommendations


@router.get("/cache", response_model=DebugResponse)
def debug_cache(request: Request):
    """Report database reachability and cache row counts."""
    database: Database = request.app.state.database
    db_info = DebugDatabase(
        configured=request.app.state.settings.database_url != DEFAULT_DATABASE_URL,
        connection=database.ping()
    )
    cache_info = DebugCache()

    if db_info.connection:
        try:
            with database.session() as db:
                cache_info.total_books = crud.count_cached_books(db)
                cache_info.total_searches = crud.count_search_queries(db)
        except SQLAlchemyError as e:
            logger.error(f"Debug cache query failed: {e}")
            cache_info.error = str(e)

    return DebugResponse(
        timestamp=datetime.datetime.now(datetime.timezone.utc),
        database=db_info,
        cache=cache_info,
        recommendations=generate_recommendations(db_info, cache_info)
    )
