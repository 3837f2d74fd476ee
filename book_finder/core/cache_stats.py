"""Derived health flags and analytics over cache statistics."""

import math
from datetime import datetime
from typing import List, Optional

from ..config import CacheSettings
from ..schemas import (
    CacheHealth,
    CacheMetrics,
    CacheOverview,
    CacheStats,
    PopularSearch,
    PopularSearchStats,
    SearchAnalytics,
)

SECONDS_PER_DAY = 60 * 60 * 24


def is_cache_healthy(total_books: int, settings: CacheSettings) -> bool:
    return total_books < settings.hard_ceiling


def needs_cleanup(total_books: int, settings: CacheSettings) -> bool:
    return total_books > settings.soft_ceiling


def utilization_percentage(total_books: int, settings: CacheSettings) -> int:
    """Cache size as a rounded percentage of the hard ceiling."""
    return int(round(total_books / settings.hard_ceiling * 100))


def cache_age_in_days(oldest: Optional[datetime], newest: Optional[datetime]) -> int:
    """Whole days spanned by the cache contents, rounded up."""
    if oldest is None or newest is None:
        return 0
    return math.ceil((newest - oldest).total_seconds() / SECONDS_PER_DAY)


def storage_optimization(total_books: int, settings: CacheSettings) -> str:
    if total_books < settings.optimal_size:
        return "optimal"
    if total_books < settings.soft_ceiling:
        return "good"
    return "needs_cleanup"


def build_cache_overview(stats: CacheStats, settings: CacheSettings) -> CacheOverview:
    return CacheOverview(
        total_books=stats.total_books,
        unique_search_terms=stats.unique_search_terms,
        oldest_entry=stats.oldest_entry,
        newest_entry=stats.newest_entry,
        cache_age_in_days=cache_age_in_days(stats.oldest_entry, stats.newest_entry),
        health=CacheHealth(
            is_healthy=is_cache_healthy(stats.total_books, settings),
            needs_cleanup=needs_cleanup(stats.total_books, settings),
            utilization_percentage=utilization_percentage(stats.total_books, settings)
        )
    )


def build_cache_metrics(stats: CacheStats, settings: CacheSettings) -> CacheMetrics:
    average = 0.0
    if stats.unique_search_terms > 0:
        average = round(stats.total_books / stats.unique_search_terms, 2)
    return CacheMetrics(
        average_books_per_search=average,
        cache_efficiency="active" if stats.total_books > 0 else "empty",
        storage_optimization=storage_optimization(stats.total_books, settings)
    )


def with_average_results(searches: List[PopularSearch]) -> List[PopularSearchStats]:
    """Attach the average number of results per use to each ledger entry."""
    return [
        PopularSearchStats(
            **search.model_dump(),
            avg_results_per_search=(
                round(search.result_count / search.search_count, 2)
                if search.search_count > 0 else 0.0
            )
        )
        for search in searches
    ]


def build_search_analytics(searches: List[PopularSearch]) -> SearchAnalytics:
    average_results = 0.0
    if searches:
        average_results = round(sum(s.result_count for s in searches) / len(searches), 2)
    return SearchAnalytics(
        total_searches=sum(s.search_count for s in searches),
        average_results_per_query=average_results,
        most_popular_query=searches[0].query if searches else None,
        top_queries_count=len(searches)
    )
