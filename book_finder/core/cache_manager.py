"""Book cache manager: population, lookup, statistics and cleanup."""

from datetime import timedelta
from typing import Any, Dict, List, Optional, Sequence, Union
import hashlib
import logging

from sqlalchemy.exc import DisconnectionError, InterfaceError, OperationalError, SQLAlchemyError, TimeoutError

from ..config import CacheSettings
from ..db import crud
from ..db.models import MAX_QUERY_LENGTH, utcnow
from ..db.session import Database
from ..schemas import BookResult, CachedBookRecord, CacheStats, CleanupResult, PopularSearch
from .catalog_api import DOC_NUMBER_PATTERN

logger = logging.getLogger(__name__)


# Store failures that mean the database cannot be reached right now
UNAVAILABLE_ERRORS = (OperationalError, InterfaceError, DisconnectionError, TimeoutError)


class CacheError(Exception):
    """Base exception for book cache failures."""
    pass


class CacheUnavailableError(CacheError):
    """Raised when the backing store cannot be reached or times out."""
    pass


def normalize_query(term: str) -> str:
    """Lowercase, trim and collapse inner whitespace of a search term."""
    return " ".join((term or "").lower().split())


def validate_query(term: str) -> str:
    """
    Normalize a search term for the ledger.

    Raises:
        ValueError: If the term is empty or longer than MAX_QUERY_LENGTH
    """
    query = normalize_query(term)
    if not query:
        raise ValueError("Search term is required")
    if len(query) > MAX_QUERY_LENGTH:
        raise ValueError(f"Search term must be at most {MAX_QUERY_LENGTH} characters")
    return query


def extract_doc_number(detail_url: Optional[str]) -> Optional[str]:
    """Return the catalog document number embedded in a detail URL, if any."""
    if not detail_url:
        return None
    match = DOC_NUMBER_PATTERN.search(detail_url)
    return match.group(1) if match else None


def compute_source_key(book: BookResult) -> str:
    """Identity of a catalog result: its document number, or a content hash."""
    doc_number = extract_doc_number(book.detail_url)
    if doc_number:
        return f"doc:{doc_number.lstrip('0') or '0'}"
    fingerprint = "|".join(
        normalize_query(value) for value in (book.title, book.author, book.library)
    )
    return hashlib.sha256(fingerprint.encode("utf-8")).hexdigest()


class BookCacheManager:
    """Mediates between search requests and the persistent book cache."""

    def __init__(self, database: Database, settings: CacheSettings):
        self.database = database
        self.settings = settings

    def _store_error(self, action: str, error: SQLAlchemyError) -> CacheError:
        logger.error(f"Database error while {action}: {error}")
        if isinstance(error, UNAVAILABLE_ERRORS):
            return CacheUnavailableError(f"Book cache unavailable while {action}: {error}")
        return CacheError(f"Book cache failed while {action}: {error}")

    def normalize_limit(self, limit: Any) -> int:
        """
        Coerce a caller-supplied popularity limit.
        Missing, non-numeric, boolean and non-positive values fall back to the default;
        larger values are capped at max_popular_limit.
        """
        default = self.settings.default_popular_limit
        if limit is None or isinstance(limit, bool):
            return default
        try:
            value = int(str(limit).strip())
        except (TypeError, ValueError):
            return default
        if value <= 0:
            return default
        return min(value, self.settings.max_popular_limit)

    def get_cache_stats(self) -> CacheStats:
        """Return totals and the age range of the cache. Read-only."""
        try:
            with self.database.session() as db:
                total_books = crud.count_cached_books(db)
                unique_terms = crud.count_search_queries(db)
                oldest, newest = crud.get_cache_time_bounds(db)
        except SQLAlchemyError as e:
            raise self._store_error("reading cache stats", e) from e

        return CacheStats(
            total_books=total_books,
            unique_search_terms=unique_terms,
            oldest_entry=oldest,
            newest_entry=newest
        )

    def get_popular_searches(self, limit: Any = None) -> List[PopularSearch]:
        """Return the most used search terms, most popular first."""
        limit = self.normalize_limit(limit)
        try:
            with self.database.session() as db:
                rows = crud.get_popular_searches(db, limit)
                return [PopularSearch.model_validate(row) for row in rows]
        except SQLAlchemyError as e:
            raise self._store_error("reading popular searches", e) from e

    def cleanup_cache(self) -> CleanupResult:
        """
        Remove stale rows, then trim the oldest rows down to the hard ceiling.

        Both steps work against a timestamp taken once at invocation; rows
        cached after it are never removed. Each step commits separately, so
        two concurrent cleanups may both trim and remove more than needed.
        """
        snapshot = utcnow()
        cutoff = snapshot - timedelta(hours=self.settings.staleness_hours)
        try:
            with self.database.session() as db:
                removed = crud.delete_stale_books(db, cutoff)
                db.commit()

                remaining = crud.count_cached_books(db)
                excess = remaining - self.settings.hard_ceiling
                old_removed = 0
                if excess > 0:
                    old_removed = crud.delete_oldest_books(db, excess, snapshot)
                    db.commit()
        except SQLAlchemyError as e:
            raise self._store_error("cleaning up the cache", e) from e

        logger.info(f"Cache cleanup: {removed} expired, {old_removed} old removed")
        return CleanupResult(removed=removed, old_removed=old_removed)

    def record_search(
        self,
        term: str,
        results: Sequence[Union[BookResult, Dict[str, Any]]],
        source_url: Optional[str] = None
    ) -> PopularSearch:
        """
        Record a completed catalog search.

        Updates the search ledger for the normalized term and caches or
        refreshes one row per distinct result.

        Args:
            term: The raw search term
            results: Books returned for the term
            source_url: Catalog URL the results were fetched from

        Returns:
            The updated ledger entry

        Raises:
            ValueError: If the term is empty or too long
            CacheUnavailableError: If the store cannot be reached
            CacheError: On any other store failure
        """
        query = validate_query(term)
        books = [
            book if isinstance(book, BookResult) else BookResult.model_validate(book)
            for book in results
        ]

        now = utcnow()
        try:
            with self.database.session() as db:
                search_query = crud.upsert_search_query(db, query, len(books), now)
                ledger_entry = PopularSearch.model_validate(search_query)
                rows = [
                    {
                        "source_key": compute_source_key(book),
                        "title": book.title,
                        "author": book.author,
                        "availability": book.availability,
                        "library": book.library,
                        "detail_url": book.detail_url,
                        "doc_number": extract_doc_number(book.detail_url),
                        "search_term": query,
                        "source_url": source_url,
                        "region": self.settings.library_region,
                        "comuna": self.settings.library_comuna,
                        "search_query_id": search_query.query_id,
                        "cached_at": now,
                        "last_accessed": now,
                    }
                    for book in books
                ]
                created = crud.upsert_cached_books(db, rows)
        except SQLAlchemyError as e:
            raise self._store_error(f"recording search '{query}'", e) from e

        logger.info(
            f"Cached {len(books)} books for search term '{query}' "
            f"({created} new, search count {ledger_entry.search_count})"
        )
        return ledger_entry

    def count_search(self, term: str, result_count: int) -> PopularSearch:
        """
        Update the search ledger for a search served from the cache.
        Cached book rows are left untouched.
        """
        query = validate_query(term)
        try:
            with self.database.session() as db:
                search_query = crud.upsert_search_query(db, query, result_count, utcnow())
                return PopularSearch.model_validate(search_query)
        except SQLAlchemyError as e:
            raise self._store_error(f"counting search '{query}'", e) from e

    def search_in_cache(self, term: str) -> List[CachedBookRecord]:
        """
        Look up fresh cached books matching a term.
        Matching rows have their last_accessed timestamp refreshed.
        """
        query = normalize_query(term)
        if not query:
            return []

        now = utcnow()
        cutoff = now - timedelta(hours=self.settings.staleness_hours)
        try:
            with self.database.session() as db:
                books = crud.find_fresh_books(db, query, cutoff, self.settings.max_results)
                records = [CachedBookRecord.model_validate(book) for book in books]
                crud.touch_books(db, [record.book_id for record in records], now)
                db.commit()
        except SQLAlchemyError as e:
            raise self._store_error(f"searching the cache for '{query}'", e) from e

        if records:
            logger.info(f"Cache hit for '{query}': {len(records)} books")
        else:
            logger.debug(f"Cache miss for '{query}'")
        return records
