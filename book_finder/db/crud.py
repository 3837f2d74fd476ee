from sqlalchemy.orm import Session
from sqlalchemy import func, select, update, delete, or_
from sqlalchemy.exc import IntegrityError
from typing import Optional, List, Tuple, Dict, Any, Iterable
import datetime

from .models import CachedBook, SearchQuery


def count_cached_books(db: Session) -> int:
    """Return the number of cached book rows."""
    return db.query(func.count(CachedBook.book_id)).scalar() or 0


def count_search_queries(db: Session) -> int:
    """Return the number of distinct search terms in the ledger."""
    return db.query(func.count(SearchQuery.query_id)).scalar() or 0


def get_cache_time_bounds(
    db: Session
) -> Tuple[Optional[datetime.datetime], Optional[datetime.datetime]]:
    """
    Get the oldest and newest cached_at values.

    Returns:
        Tuple of (oldest, newest); both None when the cache is empty
    """
    oldest, newest = db.query(
        func.min(CachedBook.cached_at),
        func.max(CachedBook.cached_at)
    ).one()
    return oldest, newest


def get_popular_searches(db: Session, limit: int) -> List[SearchQuery]:
    """
    Retrieve the most used search terms.

    Args:
        db: Database session
        limit: Maximum number of rows to return

    Returns:
        SearchQuery rows ordered by search_count desc, then most recent use
    """
    return (
        db.query(SearchQuery)
        .order_by(
            SearchQuery.search_count.desc(),
            SearchQuery.last_searched.desc(),
            SearchQuery.query.asc()
        )
        .limit(limit)
        .all()
    )


def get_search_query(db: Session, query: str) -> Optional[SearchQuery]:
    return db.query(SearchQuery).filter(SearchQuery.query == query).first()


def delete_stale_books(db: Session, cutoff: datetime.datetime) -> int:
    """
    Delete cached books with cached_at strictly before the cutoff.

    Returns:
        Number of rows deleted
    """
    result = db.execute(
        delete(CachedBook)
        .where(CachedBook.cached_at < cutoff)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


def delete_oldest_books(
    db: Session,
    count: int,
    snapshot: datetime.datetime
) -> int:
    """
    Delete up to `count` of the oldest cached books written at or before the snapshot.

    Returns:
        Number of rows deleted
    """
    if count <= 0:
        return 0
    oldest_ids = (
        select(CachedBook.book_id)
        .where(CachedBook.cached_at <= snapshot)
        .order_by(CachedBook.cached_at.asc(), CachedBook.book_id.asc())
        .limit(count)
    )
    result = db.execute(
        delete(CachedBook)
        .where(CachedBook.book_id.in_(oldest_ids))
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


def upsert_search_query(
    db: Session,
    query: str,
    result_count: int,
    now: datetime.datetime
) -> SearchQuery:
    """
    Increment the ledger entry for a normalized query, creating it on first use.
    Commits the change.

    Args:
        db: Database session
        query: Normalized search term
        result_count: Results returned by this search, added to the running total
        now: Timestamp recorded as last_searched

    Returns:
        The up-to-date SearchQuery instance
    """
    increment = (
        update(SearchQuery)
        .where(SearchQuery.query == query)
        .values(
            search_count=SearchQuery.search_count + 1,
            result_count=SearchQuery.result_count + result_count,
            last_searched=now
        )
        .execution_options(synchronize_session=False)
    )
    if db.execute(increment).rowcount:
        db.commit()
    else:
        db.add(SearchQuery(
            query=query,
            search_count=1,
            result_count=result_count,
            first_searched=now,
            last_searched=now
        ))
        try:
            db.commit()
        except IntegrityError:
            # Another request inserted the same query first
            db.rollback()
            db.execute(increment)
            db.commit()

    search_query = get_search_query(db, query)
    db.refresh(search_query)
    return search_query


def _apply_book_rows(db: Session, rows: Dict[str, Dict[str, Any]]) -> int:
    existing = {
        book.source_key: book
        for book in db.query(CachedBook).filter(CachedBook.source_key.in_(list(rows))).all()
    }
    created = 0
    for source_key, values in rows.items():
        book = existing.get(source_key)
        if book is None:
            db.add(CachedBook(source_key=source_key, **values))
            created += 1
        else:
            for field, value in values.items():
                setattr(book, field, value)
    db.commit()
    return created


def upsert_cached_books(db: Session, rows: Iterable[Dict[str, Any]]) -> int:
    """
    Insert or refresh cached books keyed by source_key.
    Rows sharing a source_key collapse to the last one. Commits the change.

    Returns:
        Number of newly created rows
    """
    by_key: Dict[str, Dict[str, Any]] = {}
    for row in rows:
        values = dict(row)
        by_key[values.pop("source_key")] = values
    if not by_key:
        return 0

    try:
        return _apply_book_rows(db, by_key)
    except IntegrityError:
        # A concurrent search cached one of the keys; retry as refresh
        db.rollback()
        return _apply_book_rows(db, by_key)


def find_fresh_books(
    db: Session,
    term: str,
    cutoff: datetime.datetime,
    limit: int
) -> List[CachedBook]:
    """
    Find non-stale cached books whose search term, title or author contains the term.

    Returns:
        CachedBook rows, most recently accessed first
    """
    escaped = term.lower().replace("/", "//").replace("%", "/%").replace("_", "/_")
    pattern = f"%{escaped}%"
    return (
        db.query(CachedBook)
        .filter(
            CachedBook.cached_at >= cutoff,
            or_(
                CachedBook.search_term.ilike(pattern, escape="/"),
                CachedBook.title.ilike(pattern, escape="/"),
                CachedBook.author.ilike(pattern, escape="/"),
            )
        )
        .order_by(CachedBook.last_accessed.desc(), CachedBook.book_id.asc())
        .limit(limit)
        .all()
    )


def touch_books(db: Session, book_ids: List[int], now: datetime.datetime) -> None:
    """Set last_accessed on the given books. Does not commit."""
    if not book_ids:
        return
    db.execute(
        update(CachedBook)
        .where(CachedBook.book_id.in_(book_ids))
        .values(last_accessed=now)
        .execution_options(synchronize_session=False)
    )
