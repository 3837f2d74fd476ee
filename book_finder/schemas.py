from typing import List, Optional
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base schema serialized with camelCase keys."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True
    )


class BookResult(CamelModel):
    """Schema for a single book returned by a catalog search."""
    title: str = Field(..., description="Book title")
    author: str = Field("Unknown author", description="Book author")
    availability: str = Field("Availability not specified", description="Availability text")
    library: str = Field("Library not specified", description="Holding library")
    detail_url: Optional[str] = Field(None, description="Catalog detail URL")


class CachedBookRecord(BookResult):
    """Schema for a book served from the cache."""
    book_id: int = Field(..., description="Internal cache row ID")
    doc_number: Optional[str] = Field(None, description="Catalog document number")
    cached_at: Optional[datetime] = Field(None, description="When the row was cached or last refreshed")


class CacheStats(CamelModel):
    """Aggregate statistics over the book cache."""
    total_books: int = Field(..., description="Number of cached book rows")
    unique_search_terms: int = Field(..., description="Number of distinct normalized search terms")
    oldest_entry: Optional[datetime] = Field(None, description="Oldest cached_at, absent when empty")
    newest_entry: Optional[datetime] = Field(None, description="Newest cached_at, absent when empty")


class PopularSearch(CamelModel):
    """Ledger entry for one normalized search term."""
    query: str
    search_count: int
    last_searched: Optional[datetime] = None
    result_count: int


class CleanupResult(CamelModel):
    """Counts of rows removed by a cleanup run."""
    removed: int = Field(..., description="Rows removed because they were stale")
    old_removed: int = Field(..., description="Oldest rows trimmed to respect the hard ceiling")

    @property
    def total_removed(self) -> int:
        return self.removed + self.old_removed


# --- HTTP request/response schemas ---

class SearchRequest(CamelModel):
    search_term: Optional[str] = Field(None, description="Free-text search term")


class SearchResponse(CamelModel):
    success: bool = True
    books: List[BookResult]
    search_term: str
    source: str = Field(..., description="'cache' or 'external'")
    cache_hit: bool
    response_time_ms: Optional[int] = None
    final_url: Optional[str] = None
    region: Optional[str] = None
    comuna: Optional[str] = None


class CacheHealth(CamelModel):
    is_healthy: bool
    needs_cleanup: bool
    utilization_percentage: int


class CacheOverview(CamelModel):
    total_books: int
    unique_search_terms: int
    oldest_entry: Optional[datetime] = None
    newest_entry: Optional[datetime] = None
    cache_age_in_days: int
    health: CacheHealth


class CacheMetrics(CamelModel):
    average_books_per_search: float
    cache_efficiency: str
    storage_optimization: str


class PopularSearchStats(PopularSearch):
    avg_results_per_search: float


class SearchAnalytics(CamelModel):
    total_searches: int
    average_results_per_query: float
    most_popular_query: Optional[str] = None
    top_queries_count: int


class StatsResponse(CamelModel):
    success: bool = True
    timestamp: datetime
    cache: CacheOverview
    metrics: CacheMetrics
    popular_searches: Optional[List[PopularSearchStats]] = None
    search_analytics: Optional[SearchAnalytics] = None


class CleanupStatistics(CamelModel):
    before: CacheStats
    removed: CleanupResult
    after: CacheStats


class CleanupSummary(CamelModel):
    expired_records_removed: int
    old_records_removed: int
    total_removed: int
    books_remaining: int


class CleanupResponse(CamelModel):
    success: bool = True
    message: str
    statistics: CleanupStatistics
    cleanup_summary: CleanupSummary


class CacheInfo(CacheStats):
    cache_healthy: bool
    needs_cleanup: bool


class CacheStatusResponse(CamelModel):
    success: bool = True
    statistics: CacheStats
    cache_info: CacheInfo


class DebugDatabase(CamelModel):
    configured: bool
    connection: bool


class DebugCache(CamelModel):
    total_books: int = 0
    total_searches: int = 0
    error: Optional[str] = None


class DebugResponse(CamelModel):
    success: bool = True
    timestamp: datetime
    database: DebugDatabase
    cache: DebugCache
    recommendations: List[str]
